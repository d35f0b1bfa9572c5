"""Unit tests for core.sampling_engine."""
import pandas as pd
import pytest

from core.exceptions import SamplingError
from core.sampling_engine import compute_sample_size, get_stage_config, sample_dataset
from Schemas.sampling import SamplingMethod
from Schemas.workflow import WorkflowConfig


def _frame(n: int) -> pd.DataFrame:
    return pd.DataFrame({"id": [str(i) for i in range(n)], "v": [str(i % 7) for i in range(n)]})


# ---------------------------------------------------------------------------
# Stage schedule
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("total,stage,expected", [
    (100_000, 1, 100),
    (100_000, 2, 500),
    (100_000, 3, 1500),
    (100_000, 4, 2500),
    (1_000_000, 1, 1000),
    (1_000_000, 4, 25_000),
    (50, 1, 50),
    (2_000, 4, 2_000),
    (100_000, 5, 100_000),
])
def test_compute_sample_size(total, stage, expected):
    assert compute_sample_size(total, stage) == expected


def test_fractions_increase_to_full_dataset():
    fractions = [get_stage_config(stage).fraction for stage in range(1, 6)]
    assert all(a < b for a, b in zip(fractions, fractions[1:]))
    assert fractions[-1] == 1.0


def test_stage_purposes():
    assert get_stage_config(1).purpose == "Initial Exploration"
    assert get_stage_config(3).purpose == "HITL Decision"
    assert get_stage_config(5).fraction == 1.0


def test_unknown_stage_raises():
    with pytest.raises(SamplingError):
        get_stage_config(6)


# ---------------------------------------------------------------------------
# Random sampling
# ---------------------------------------------------------------------------

def test_same_seed_same_rows():
    df = _frame(10_000)
    a, _ = sample_dataset(df, 2, seed=42)
    b, _ = sample_dataset(df, 2, seed=42)
    assert list(a.index) == list(b.index)


def test_stages_draw_independent_rows():
    df = _frame(10_000)
    s1, _ = sample_dataset(df, 2, seed=42)
    s2, _ = sample_dataset(df, 3, seed=42)
    assert list(s1.index) != list(s2.index[: len(s1)])


def test_sample_has_unique_rows_in_original_order():
    df = _frame(10_000)
    sample, meta = sample_dataset(df, 3, seed=1)
    assert len(sample) == meta.sample_size == 1500
    assert sample.index.is_unique
    assert sample.index.is_monotonic_increasing
    assert meta.method == SamplingMethod.RANDOM
    assert not meta.covers_full_dataset


def test_input_is_not_modified():
    df = _frame(1_000)
    before = df.copy()
    sample_dataset(df, 1, seed=3)
    pd.testing.assert_frame_equal(df, before)


def test_small_dataset_covers_full_population():
    df = _frame(60)
    sample, meta = sample_dataset(df, 1, seed=3)
    assert len(sample) == 60
    assert meta.covers_full_dataset


def test_bulk_stage_is_whole_dataset():
    df = _frame(5_000)
    sample, meta = sample_dataset(df, 5)
    assert len(sample) == 5_000
    assert meta.covers_full_dataset


# ---------------------------------------------------------------------------
# Stratified sampling
# ---------------------------------------------------------------------------

def test_stratified_preserves_shares():
    df = pd.DataFrame({"id": [str(i) for i in range(1_000)],
                       "region": ["A"] * 900 + ["B"] * 100})
    sample, meta = sample_dataset(df, 1, seed=7, stratify_column="region")
    assert meta.method == SamplingMethod.STRATIFIED
    assert meta.strata_counts == {"A": 90, "B": 10}
    assert (sample["region"] == "B").sum() == 10


def test_stratified_keeps_tiny_stratum():
    df = pd.DataFrame({"id": [str(i) for i in range(10_000)],
                       "region": ["A"] * 9_999 + ["rare"]})
    sample, meta = sample_dataset(df, 1, seed=7, stratify_column="region")
    assert meta.strata_counts["rare"] == 1
    assert "rare" in set(sample["region"])


def test_stratify_column_missing_raises():
    with pytest.raises(SamplingError):
        sample_dataset(_frame(1_000), 1, seed=1, stratify_column="nope")


def test_random_method_ignores_stratify_column():
    df = pd.DataFrame({"id": [str(i) for i in range(1_000)],
                       "region": ["A"] * 900 + ["B"] * 100})
    sample, meta = sample_dataset(df, 1, seed=7, stratify_column="region", method=SamplingMethod.RANDOM)
    assert meta.method == SamplingMethod.RANDOM
    assert meta.stratify_column is None
    assert meta.strata_counts == {}
    assert len(sample) == 100


def test_stratified_method_requires_column():
    with pytest.raises(SamplingError):
        sample_dataset(_frame(1_000), 1, seed=1, method=SamplingMethod.STRATIFIED)


def test_config_method_follows_stratification_column():
    assert WorkflowConfig(stratification_column="region").sampling_method == SamplingMethod.STRATIFIED
    explicit = WorkflowConfig(sampling_method=SamplingMethod.RANDOM, stratification_column="region")
    assert explicit.sampling_method == SamplingMethod.RANDOM
    with pytest.raises(ValueError):
        WorkflowConfig(sampling_method=SamplingMethod.STRATIFIED)
