"""Tests for the device memory budget."""

from __future__ import annotations

import logging

import pytest

from imforest.budget import (
    MAX_SAMPLES_PER_BATCH,
    MIN_SAMPLES_PER_BATCH,
    ResourceBudget,
    compute_resource_budget,
    resolve_cache_bytes,
)
from imforest.errors import InfeasibleResourceBudgetError
from imforest.utils import BYTES_PER_MB


def test_auto_cache_uses_66_percent_of_free_memory():
    assert resolve_cache_bytes(3_000_000_000, 0) == 1_980_000_000


def test_explicit_cache_size_in_mebibytes():
    assert resolve_cache_bytes(3_000_000_000, 512) == 512 * 1024 * 1024


def test_auto_cache_scenario():
    budget = compute_resource_budget(
        min_free=3_000_000_000,
        image_cache_size_mb=0,
        image_count=200,
        image_size=20_000_000,
        feature_count=500,
        num_thresholds=20,
    )
    assert budget.image_cache_count == 99
    assert budget.max_samples_per_batch == MAX_SAMPLES_PER_BATCH


def test_cache_count_capped_by_dataset_size():
    budget = compute_resource_budget(3_000_000_000, 0, 5, 1_000_000, 500, 20)
    assert budget.image_cache_count == 5


def test_cache_equal_to_free_memory_fails():
    min_free = 2048 * BYTES_PER_MB
    with pytest.raises(InfeasibleResourceBudgetError, match="image cache size too large") as excinfo:
        compute_resource_budget(min_free, 2048, 10, 1_000_000, 500, 20)
    assert excinfo.value.min_free == min_free
    assert excinfo.value.cache_bytes == min_free
    assert excinfo.value.max_samples_per_batch is None


def test_cache_larger_than_free_memory_fails():
    with pytest.raises(InfeasibleResourceBudgetError):
        compute_resource_budget(1024 * BYTES_PER_MB, 4096, 10, 1_000_000, 500, 20)


def test_negative_remaining_memory_fails():
    with pytest.raises(InfeasibleResourceBudgetError, match="memory headroom on device too low") as excinfo:
        compute_resource_budget(1_000_000, 0, 10, 1000, 500, 20)
    assert excinfo.value.max_samples_per_batch < 0


def test_minimum_batch_size_boundary():
    # remaining = (min_free - 1 MB) // 3 - 80; per sample = 8 bytes
    cache_bytes = BYTES_PER_MB
    failing = cache_bytes + 3 * (80 + 8 * (MIN_SAMPLES_PER_BATCH - 1))
    passing = cache_bytes + 3 * (80 + 8 * MIN_SAMPLES_PER_BATCH)

    with pytest.raises(InfeasibleResourceBudgetError) as excinfo:
        compute_resource_budget(failing, 1, 1, 1000, 1, 1)
    assert excinfo.value.max_samples_per_batch == MIN_SAMPLES_PER_BATCH - 1

    budget = compute_resource_budget(passing, 1, 1, 1000, 1, 1)
    assert budget == ResourceBudget(image_cache_count=1, max_samples_per_batch=MIN_SAMPLES_PER_BATCH)


def test_batch_size_uses_type_sizes():
    # 1 GiB free, 512 MiB cache: remaining = 178956970 - 10 * 2 * 2 * 100 * 10
    budget = compute_resource_budget(
        1024 * BYTES_PER_MB, 512, 10, 1000, 100, 10, weight_size=2, feature_response_size=100
    )
    assert budget.max_samples_per_batch == (178_956_970 - 40_000) // (2 * 100 * 100)


def test_budget_is_deterministic():
    args = (4_000_000_000, 0, 50, 30_000_000, 200, 10)
    assert compute_resource_budget(*args) == compute_resource_budget(*args)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"min_free": 0},
        {"image_size": 0},
        {"image_cache_size_mb": -1},
        {"feature_count": 0},
    ],
)
def test_invalid_inputs_raise_value_error(kwargs):
    args = {
        "min_free": 3_000_000_000,
        "image_cache_size_mb": 0,
        "image_count": 10,
        "image_size": 1000,
        "feature_count": 10,
        "num_thresholds": 10,
    }
    args.update(kwargs)
    with pytest.raises(ValueError):
        compute_resource_budget(**args)


def test_budget_logs_cache_and_batch_size(caplog):
    with caplog.at_level(logging.INFO, logger="imforest.budget"):
        compute_resource_budget(3_000_000_000, 0, 200, 20_000_000, 500, 20)
    assert "image cache size: 99 images" in caplog.text
    assert "max samples per batch: 50000" in caplog.text
