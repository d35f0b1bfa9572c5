"""
FILE: Schemas/convergence.py
------------------------------
Confidence bookkeeping and the convergence verdict.

ConfidenceLedger is the calculator's persistent state; it lives inside
the workflow state so a run can be inspected or resumed.
ConvergenceReport is rebuilt from the ledger at every checkpoint.
"""

from enum import Enum

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────

class Recommendation(str, Enum):
    REVIEW_STRATEGY           = "ReviewStrategy"          # noisy data / wrong sampling; halt
    PROCEED_TO_HITL           = "ProceedToHITL"           # unanswered HITL rules remain
    READY_FOR_BULK_PROCESSING = "ReadyForBulkProcessing"  # stable and fully resolved
    CONTINUE_SAMPLING         = "ContinueSampling"        # not stable yet, budget left


class ConfidenceTrend(str, Enum):
    INCREASING = "increasing"
    STABLE     = "stable"
    DECREASING = "decreasing"
    VOLATILE   = "volatile"


# ─────────────────────────────────────────────
# LEDGER
# ─────────────────────────────────────────────

class ConfidenceLedger(BaseModel):
    hits: dict[str, int] = Field(default_factory=dict)
    misses: dict[str, int] = Field(default_factory=dict)
    history: dict[str, list[float]] = Field(default_factory=dict)
    samples_since_last_new_rule: int = 0
    stages_observed: int = 0
    population_observed: bool = False     # a stage sampled every row


# ─────────────────────────────────────────────
# REPORT
# ─────────────────────────────────────────────

class RuleConfidenceDetail(BaseModel):
    rule_id: str
    rule_name: str
    confidence: float
    hits: int
    misses: int
    credible_interval: tuple[float, float]   # Beta(hits+1, misses+1)
    trend: ConfidenceTrend
    requires_hitl: bool
    status: str


class ConvergenceReport(BaseModel):
    is_stable: bool
    overall_confidence: float
    samples_since_last_new_rule: int
    recommendation: Recommendation
    confidence_threshold: float
    stability_window: int
    stages_observed: int
    total_rules: int = 0
    pending_hitl_rules: list[str] = Field(default_factory=list)
    low_confidence_rules: list[str] = Field(default_factory=list)
    rule_details: list[RuleConfidenceDetail] = Field(default_factory=list)
    summary: str = ""
