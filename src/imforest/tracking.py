"""Shared helpers for MLflow logging."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

import mlflow


def _clean_key(part: Any) -> str:
    return re.sub(r"[^0-9A-Za-z_.-]", "_", str(part))


def flatten_params(obj: Any, prefix: str = "") -> Dict[str, Any]:
    """Flatten nested config objects into a dict suitable for mlflow.log_params."""

    flat: Dict[str, Any] = {}
    if isinstance(obj, dict):
        for key, value in obj.items():
            key_part = _clean_key(key)
            new_prefix = f"{prefix}.{key_part}" if prefix else key_part
            flat.update(flatten_params(value, new_prefix))
    elif isinstance(obj, (list, tuple)):
        if not obj and prefix:
            flat[prefix] = "[]"
        for idx, value in enumerate(obj):
            new_prefix = f"{prefix}.{idx}" if prefix else str(idx)
            flat.update(flatten_params(value, new_prefix))
    else:
        if prefix:
            flat[prefix] = "null" if obj is None else obj
    return flat


def set_mlflow_tracking(tracking_uri: Optional[str], experiment_name: Optional[str]) -> None:
    """Set MLflow tracking URI and experiment name.

    Args:
        tracking_uri: MLflow tracking URI (e.g., file:///path/to/mlruns)
        experiment_name: Name of the MLflow experiment
    """
    if tracking_uri:
        mlflow.set_tracking_uri(tracking_uri)
    if experiment_name:
        mlflow.set_experiment(experiment_name)


def log_training_run(
    params: Dict[str, Any],
    feature_usage: Dict[str, int],
    duration_seconds: float,
    status: str,
) -> None:
    """Log one training run to the active tracking server.

    Parameters are flattened with :func:`flatten_params`; feature usage is
    logged as ``features.<type>`` metrics.
    """
    with mlflow.start_run():
        mlflow.log_params(flatten_params(params))
        mlflow.log_metric("duration_seconds", float(duration_seconds))
        for feature_type, count in feature_usage.items():
            mlflow.log_metric(f"features.{_clean_key(feature_type)}", float(count))
        mlflow.set_tag("status", status)


__all__ = ["flatten_params", "set_mlflow_tracking", "log_training_run"]
