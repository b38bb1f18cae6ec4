"""Write a trained forest to disk.

Every tree is written to ``<output_folder>/tree<i>.json`` together with the
run metadata: package version, export date, training folder, git commit and
the full training configuration.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from imforest import __version__
from imforest.config import TrainingConfiguration
from imforest.model.ensemble import RandomForestEnsemble
from imforest.utils import get_git_commit_hash

logger = logging.getLogger(__name__)


def tree_filename(index: int) -> str:
    return f"tree{index}.json"


def export_ensemble(
    ensemble: RandomForestEnsemble,
    configuration: TrainingConfiguration,
    output_folder: Union[str, Path, None],
    training_folder: Union[str, Path],
    verbose: bool = False,
) -> list[Path]:
    """Export every tree of ``ensemble``.

    Parameters
    ----------
    ensemble : RandomForestEnsemble
        Trained forest.
    configuration : TrainingConfiguration
        Configuration the forest was trained with.
    output_folder : str or pathlib.Path or None
        Destination; created when missing. Empty or ``None`` skips the export.
    training_folder : str or pathlib.Path
        Folder the training images came from, recorded in the metadata.
    verbose : bool, default=False
        Include node ids, sample counts and per-phase timings.

    Returns
    -------
    list[pathlib.Path]
        Written files in tree order.
    """
    if not output_folder:
        logger.warning("No output folder configured; trained trees are not exported")
        return []

    folder = Path(output_folder)
    folder.mkdir(parents=True, exist_ok=True)
    metadata = {
        "version": __version__,
        "date": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "training_folder": str(training_folder),
        "git_commit": get_git_commit_hash(),
        "configuration": configuration.to_dict(),
    }

    written = []
    for index, tree in enumerate(ensemble):
        path = folder / tree_filename(index)
        with open(path, "w") as f:
            json.dump({**metadata, "tree": tree.to_dict(verbose=verbose)}, f, indent=2)
        written.append(path)
    logger.info("Exported %d trees to %s", len(written), folder)
    return written


__all__ = ["export_ensemble", "tree_filename"]
