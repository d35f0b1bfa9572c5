"""
FILE: Schemas/workflow.py
---------------------------
Configuration, per-stage records and the terminal WorkflowResult.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from constants.convergence import CONFIDENCE_THRESHOLD, SAMPLING_STAGE_BUDGET, STABILITY_WINDOW
from constants.hitl import DEFAULT_RESPONDER, MAX_HITL_ROUNDS
from constants.rule_discovery import (
    DATE_FORMAT_FLOOR,
    DEFAULT_CATEGORY_LABEL,
    IQR_MULTIPLIER,
    MAX_CATEGORY_CARDINALITY,
    MAX_OUTLIER_RATIO,
    MIN_NUMERIC_VALUES,
    MISSING_VALUE_FLOOR,
    NUMERIC_COERCION_THRESHOLD,
    OUTLIER_FLOOR,
    TYPE_MIX_FLOOR,
    TYPE_MIX_MAX_NUMERIC_RATIO,
    TYPE_MIX_MIN_NUMERIC_RATIO,
    VALIDATION_BLOCK_SIZE,
    WHITESPACE_FLOOR,
)
from Schemas.convergence import ConvergenceReport
from Schemas.hitl import HITLDecision, HITLQuestion
from Schemas.preprocessing_rule import DiscoveryIssue, PreprocessingRule, RuleType
from Schemas.sampling import SamplingMethod


# ─────────────────────────────────────────────
# PHASES
# ─────────────────────────────────────────────

class WorkflowPhase(str, Enum):
    NOT_STARTED       = "not_started"
    STAGE_1           = "stage_1"
    STAGE_2           = "stage_2"
    STAGE_3           = "stage_3"
    STAGE_4           = "stage_4"
    CONVERGENCE_CHECK = "convergence_check"
    HITL_PENDING      = "hitl_pending"
    READY_FOR_BULK    = "ready_for_bulk"
    BULK_APPLY        = "bulk_apply"
    COMPLETED         = "completed"
    HALTED            = "halted"
    CANCELLED         = "cancelled"
    FAILED            = "failed"


SAMPLING_PHASES: dict[int, WorkflowPhase] = {
    1: WorkflowPhase.STAGE_1,
    2: WorkflowPhase.STAGE_2,
    3: WorkflowPhase.STAGE_3,
    4: WorkflowPhase.STAGE_4,
}


# ─────────────────────────────────────────────
# CONFIGURATION
# ─────────────────────────────────────────────

class RuleDiscoveryOptions(BaseModel):
    # ── Detector switches ──
    detect_missing_values: bool = True
    detect_outliers: bool = True
    detect_date_formats: bool = True
    detect_type_inconsistencies: bool = True
    ignore_columns: list[str] = Field(default_factory=list)   # never analysed, never reported

    # ── Floors and thresholds ──
    missing_value_floor: float = Field(default=MISSING_VALUE_FLOOR, ge=0.0, le=1.0)
    outlier_floor: float = Field(default=OUTLIER_FLOOR, ge=0.0, le=1.0)
    whitespace_floor: float = Field(default=WHITESPACE_FLOOR, ge=0.0, le=1.0)
    date_format_floor: float = Field(default=DATE_FORMAT_FLOOR, ge=0.0, le=1.0)
    type_mix_floor: float = Field(default=TYPE_MIX_FLOOR, ge=0.0, le=1.0)
    type_mix_min_numeric_ratio: float = Field(default=TYPE_MIX_MIN_NUMERIC_RATIO, ge=0.0, le=1.0)
    type_mix_max_numeric_ratio: float = Field(default=TYPE_MIX_MAX_NUMERIC_RATIO, ge=0.0, le=1.0)
    iqr_multiplier: float = Field(default=IQR_MULTIPLIER, gt=0.0)
    max_outlier_ratio: float = Field(default=MAX_OUTLIER_RATIO, gt=0.0, le=1.0)
    min_numeric_values: int = Field(default=MIN_NUMERIC_VALUES, ge=4)
    numeric_coercion_threshold: float = Field(default=NUMERIC_COERCION_THRESHOLD, gt=0.0, le=1.0)
    max_category_cardinality: int = Field(default=MAX_CATEGORY_CARDINALITY, ge=1)
    validation_block_size: int = Field(default=VALIDATION_BLOCK_SIZE, ge=1)
    default_category_label: str = DEFAULT_CATEGORY_LABEL


class WorkflowConfig(BaseModel):
    # ── Sampling ──
    sampling_method: SamplingMethod = SamplingMethod.RANDOM
    stratification_column: str | None = None
    random_seed: int | None = Field(default=None, ge=0)

    # ── Convergence ──
    confidence_threshold: float = Field(default=CONFIDENCE_THRESHOLD, gt=0.0, le=1.0)
    stability_window: int = Field(default=STABILITY_WINDOW, ge=0)
    stage_budget: int = Field(default=SAMPLING_STAGE_BUDGET, ge=1, le=4)

    # ── HITL ──
    interactive: bool = True
    require_bulk_confirmation: bool = True
    deferred_rule_types: list[RuleType] = Field(default_factory=list)
    max_hitl_rounds: int = Field(default=MAX_HITL_ROUNDS, ge=1)
    responder: str = DEFAULT_RESPONDER

    # ── Output ──
    output_dir: str | None = None

    discovery: RuleDiscoveryOptions = Field(default_factory=RuleDiscoveryOptions)

    @model_validator(mode="after")
    def _stratification_consistent(self) -> "WorkflowConfig":
        # A column alone implies stratified sampling; an explicit "random" keeps it off
        if self.stratification_column and "sampling_method" not in self.model_fields_set:
            self.sampling_method = SamplingMethod.STRATIFIED
        if self.sampling_method == SamplingMethod.STRATIFIED and not self.stratification_column:
            raise ValueError("Stratified sampling requires stratification_column.")
        return self


# ─────────────────────────────────────────────
# STAGE RECORDS
# ─────────────────────────────────────────────

class StageResult(BaseModel):
    stage: int
    purpose: str
    sample_size: int
    sample_fraction: float
    new_rule_count: int = 0
    validated_rule_count: int = 0
    total_rule_count: int = 0
    average_confidence: float = 0.0
    discovery_issue_count: int = 0
    hitl_required: bool = False
    pending_questions: list[str] = Field(default_factory=list)   # question ids still open
    recommendation: str | None = None
    covers_full_dataset: bool = False
    duration_seconds: float = 0.0


class RuleApplicationLog(BaseModel):
    rule_id: str
    rule_type: RuleType
    columns: list[str]
    action: str
    rows_affected: int = 0
    note: str = ""


class ExceptionRecord(BaseModel):
    row_index: int
    values: dict[str, str]
    reasons: list[str]


class BulkApplicationOutput(BaseModel):
    total_records: int
    processed_records: int
    output_records: int
    rows_removed: int = 0
    columns_dropped: list[str] = Field(default_factory=list)
    application_log: list[RuleApplicationLog] = Field(default_factory=list)
    exception_records: list[ExceptionRecord] = Field(default_factory=list)


# ─────────────────────────────────────────────
# TERMINAL RESULT
# ─────────────────────────────────────────────

class WorkflowResult(BaseModel):
    run_id: str = ""
    success: bool
    phase: WorkflowPhase
    halt_reason: str | None = None
    failure_reason: str | None = None
    effective_seed: int | None = None

    total_records: int = 0
    processed_records: int = 0

    rules: list[PreprocessingRule] = Field(default_factory=list)
    decisions: list[HITLDecision] = Field(default_factory=list)
    outstanding_questions: list[HITLQuestion] = Field(default_factory=list)
    convergence_report: ConvergenceReport | None = None
    stage_results: list[StageResult] = Field(default_factory=list)

    exception_records: list[ExceptionRecord] = Field(default_factory=list)
    discovery_issues: list[DiscoveryIssue] = Field(default_factory=list)
    application_log: list[RuleApplicationLog] = Field(default_factory=list)

    output_path: str | None = None
    artifacts_dir: str | None = None
    artifact_paths: dict[str, str] = Field(default_factory=dict)
    summary: str = ""

    # Graph state for resume(); not part of any serialized artifact
    state: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
