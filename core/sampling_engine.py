"""
FILE: core/sampling_engine.py
-------------------------------
Pure sampling logic for the progressive stage schedule.
No LangChain or LLM dependencies, no stored state.

  Stage 1-4: max(fraction * N, minimum rows), capped at N
  Stage 5:   the entire dataset

Sampling is seeded per (seed, stage), so the same call always returns the
same rows. When a stage's size reaches the dataset size the sample
degenerates to the full dataset and metadata.covers_full_dataset tells the
caller that the remaining progressive stages are redundant.
"""

import logging
import math

import numpy as np
import pandas as pd

from constants.sampling import BULK_STAGE, STAGE_SCHEDULE
from core.exceptions import SamplingError
from Schemas.sampling import SamplingMetadata, SamplingMethod, StageConfig

logger = logging.getLogger(__name__)


STAGE_CONFIGS: tuple[StageConfig, ...] = tuple(
    StageConfig(stage=stage, fraction=fraction, min_sample_size=min_size, purpose=purpose)
    for stage, fraction, min_size, purpose in STAGE_SCHEDULE
)


def get_stage_config(stage: int) -> StageConfig:
    for config in STAGE_CONFIGS:
        if config.stage == stage:
            return config
    raise SamplingError(f"Unknown stage {stage}; expected 1-{len(STAGE_CONFIGS)}.")


def compute_sample_size(total_rows: int, stage: int) -> int:
    config = get_stage_config(stage)
    if stage == BULK_STAGE:
        return total_rows
    size = max(int(total_rows * config.fraction), config.min_sample_size)
    return min(size, total_rows)


# ─────────────────────────────────────────────
# HELPER — RNG
# ─────────────────────────────────────────────

def _stage_rng(seed: int | None, stage: int) -> np.random.Generator:
    """Independent stream per stage; unseeded calls draw fresh OS entropy."""
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng([seed, stage])


# ─────────────────────────────────────────────
# HELPER — STRATIFIED POSITIONS
# ─────────────────────────────────────────────

def _stratified_positions(
    column: pd.Series,
    size: int,
    rng: np.random.Generator,
) -> tuple[np.ndarray, dict[str, int]]:
    """
    Per distinct value: ceil(size * share) rows, at least one, at most the
    group size. Groups are visited in sorted value order so the draw is
    deterministic for a given generator.
    """
    total = len(column)
    codes, uniques = pd.factorize(column, sort=True)
    picked: list[np.ndarray] = []
    strata_counts: dict[str, int] = {}

    for code, value in enumerate(uniques):
        group = np.flatnonzero(codes == code)
        n_group = min(len(group), max(1, math.ceil(size * len(group) / total)))
        picked.append(rng.choice(group, size=n_group, replace=False))
        strata_counts[str(value)] = n_group

    return np.concatenate(picked), strata_counts


# ─────────────────────────────────────────────
# MAIN ENTRY POINT
# ─────────────────────────────────────────────

def sample_dataset(
    dataset: pd.DataFrame,
    stage: int,
    seed: int | None = None,
    stratify_column: str | None = None,
    method: SamplingMethod | None = None,
) -> tuple[pd.DataFrame, SamplingMetadata]:
    """
    Draws the sample for one stage.

    Args:
        dataset:         Full dataset (string cells, RangeIndex).
        stage:           1-5.
        seed:            Random seed; same (seed, stage) → same rows.
        stratify_column: Column whose value shares a stratified sample keeps.
        method:          RANDOM or STRATIFIED. Defaults to STRATIFIED when a
                         stratify_column is given; RANDOM ignores the column.

    Returns:
        (sample, metadata). The sample keeps the original row order and
        index labels. The input DataFrame is never modified.
    """
    config = get_stage_config(stage)
    total = len(dataset)
    if method is None:
        method = SamplingMethod.STRATIFIED if stratify_column else SamplingMethod.RANDOM
    if method == SamplingMethod.RANDOM:
        stratify_column = None
    elif not stratify_column:
        raise SamplingError("Stratified sampling requires a stratification column.")

    if stratify_column and stratify_column not in dataset.columns:
        raise SamplingError(f"Stratification column '{stratify_column}' not found in dataset.")

    size = compute_sample_size(total, stage)
    metadata = SamplingMetadata(
        stage=stage,
        fraction=config.fraction,
        purpose=config.purpose,
        method=method,
        total_rows=total,
        requested_size=size,
        sample_size=size,
        seed=seed,
        stratify_column=stratify_column,
    )

    if size >= total:
        if stage != BULK_STAGE:
            logger.info(
                "Stage %d sample covers the full dataset (%d rows); later progressive stages are redundant",
                stage, total,
            )
        metadata.sample_size = total
        metadata.covers_full_dataset = True
        return dataset, metadata

    rng = _stage_rng(seed, stage)
    if stratify_column:
        positions, strata_counts = _stratified_positions(dataset[stratify_column], size, rng)
        metadata.strata_counts = strata_counts
    else:
        positions = rng.choice(total, size=size, replace=False)

    positions = np.sort(positions)
    sample = dataset.iloc[positions]
    metadata.sample_size = len(sample)
    metadata.covers_full_dataset = len(sample) >= total
    return sample, metadata
