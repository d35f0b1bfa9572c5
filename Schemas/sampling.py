"""
FILE: Schemas/sampling.py
---------------------------
Stage schedule and sampling metadata contracts.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SamplingMethod(str, Enum):
    RANDOM     = "random"       # uniform, without replacement
    STRATIFIED = "stratified"   # preserves each value's share of a column


class StageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: int = Field(ge=1, le=5)
    fraction: float = Field(gt=0.0, le=1.0)
    min_sample_size: int = 0
    purpose: str


class SamplingMetadata(BaseModel):
    stage: int
    fraction: float
    purpose: str
    method: SamplingMethod
    total_rows: int
    requested_size: int          # size from the schedule before stratified rounding
    sample_size: int             # rows actually returned
    seed: int | None = None
    stratify_column: str | None = None
    strata_counts: dict[str, int] = Field(default_factory=dict)
    covers_full_dataset: bool = False   # later progressive stages are redundant
