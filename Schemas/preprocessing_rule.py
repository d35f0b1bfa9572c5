"""
FILE: Schemas/preprocessing_rule.py
-------------------------------------
Pydantic contracts for discovered preprocessing rules.

PreprocessingRule is a tagged union over the closed set of rule kinds,
discriminated on rule_type. Each variant carries only the evidence that
belongs to it (IQR bounds for outliers, value sets for category drift,
the constant value for zero-variance columns, the format mix of date
columns, the numeric/text split of mixed-type columns).

Rule identity is derived from (rule_type, columns) so the same issue
discovered at two different stages always maps to the same id.
"""

import hashlib
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from constants.rule_discovery import INITIAL_RULE_CONFIDENCE


# ─────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────

class RuleType(str, Enum):
    MISSING_VALUE_STRATEGY      = "MissingValueStrategy"
    OUTLIER_HANDLING            = "OutlierHandling"
    UNKNOWN_CATEGORY_MAPPING    = "UnknownCategoryMapping"
    DUPLICATE_ROWS              = "DuplicateRows"
    CONSTANT_COLUMN             = "ConstantColumn"
    WHITESPACE_NORMALIZATION    = "WhitespaceNormalization"
    DATE_FORMAT_STANDARDIZATION = "DateFormatStandardization"
    TYPE_INCONSISTENCY          = "TypeInconsistency"


class RuleStatus(str, Enum):
    PENDING       = "pending"         # waiting on a human decision
    APPROVED      = "approved"        # approved through a recorded HITLDecision
    REJECTED      = "rejected"        # answered "no"; never applied
    DEFERRED      = "deferred"        # deferred by policy; never applied, never blocks
    AUTO_APPROVED = "auto_approved"   # deterministic low-risk fix


class IssueSeverity(str, Enum):
    INFO     = "info"
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class ColumnKind(str, Enum):
    NUMERIC     = "numeric"
    CATEGORICAL = "categorical"


# ─────────────────────────────────────────────
# RULE IDENTITY
# ─────────────────────────────────────────────

_TYPE_SLUGS: dict[RuleType, str] = {
    RuleType.MISSING_VALUE_STRATEGY:      "missing",
    RuleType.OUTLIER_HANDLING:            "outlier",
    RuleType.UNKNOWN_CATEGORY_MAPPING:    "category",
    RuleType.DUPLICATE_ROWS:              "duplicates",
    RuleType.CONSTANT_COLUMN:             "constant",
    RuleType.WHITESPACE_NORMALIZATION:    "whitespace",
    RuleType.DATE_FORMAT_STANDARDIZATION: "dateformat",
    RuleType.TYPE_INCONSISTENCY:          "mixedtype",
}


def make_rule_id(rule_type: RuleType | str, columns: list[str]) -> str:
    """Stable id for a (type, columns) pair. Column order does not matter."""
    rule_type = RuleType(rule_type)
    key = f"{rule_type.value}|{','.join(sorted(columns))}"
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"{_TYPE_SLUGS[rule_type]}-{digest}"


# ─────────────────────────────────────────────
# RULE VARIANTS
# ─────────────────────────────────────────────

class RuleBase(BaseModel):
    id: str
    name: str
    description: str
    columns: list[str]

    # ── Evidence (latest sample that exhibited the condition) ──
    match_count: int = 0
    sample_size: int = 0
    affected_pct: float = 0.0          # 0-100
    severity: IssueSeverity = IssueSeverity.LOW
    discovered_at_stage: int
    last_seen_stage: int

    # ── Confidence (written by the ConfidenceCalculator after every stage) ──
    confidence: float = Field(default=INITIAL_RULE_CONFIDENCE, ge=0.0, le=1.0)

    # ── Resolution ──
    requires_hitl: bool = False
    is_auto_resolvable: bool = False
    is_approved: bool = False
    status: RuleStatus = RuleStatus.PENDING
    approved_by: str | None = None
    transformation: str = ""           # human-readable chosen remediation
    action: str | None = None          # machine action applied in stage 5
    action_params: dict = Field(default_factory=dict)

    @property
    def is_pending_decision(self) -> bool:
        return self.requires_hitl and self.status == RuleStatus.PENDING

    @property
    def column(self) -> str:
        return self.columns[0]

    def merge_evidence(self, other: "RuleBase") -> None:
        """Folds evidence from a rediscovery of the same rule into this one."""
        self.match_count = other.match_count
        self.sample_size = other.sample_size
        self.affected_pct = other.affected_pct
        self.severity = other.severity
        self.last_seen_stage = max(self.last_seen_stage, other.last_seen_stage)


class MissingValueRule(RuleBase):
    rule_type: Literal[RuleType.MISSING_VALUE_STRATEGY] = RuleType.MISSING_VALUE_STRATEGY
    column_kind: ColumnKind = ColumnKind.CATEGORICAL
    missing_tokens: list[str] = Field(default_factory=list)   # as observed, lower-cased

    def merge_evidence(self, other: "RuleBase") -> None:
        super().merge_evidence(other)
        if isinstance(other, MissingValueRule):
            self.missing_tokens = sorted(set(self.missing_tokens) | set(other.missing_tokens))


class OutlierRule(RuleBase):
    rule_type: Literal[RuleType.OUTLIER_HANDLING] = RuleType.OUTLIER_HANDLING
    lower_bound: float
    upper_bound: float
    observed_min: float
    observed_max: float

    def merge_evidence(self, other: "RuleBase") -> None:
        # Bounds from the larger, later sample replace the earlier estimate
        super().merge_evidence(other)
        if isinstance(other, OutlierRule):
            self.lower_bound = other.lower_bound
            self.upper_bound = other.upper_bound
            self.observed_min = min(self.observed_min, other.observed_min)
            self.observed_max = max(self.observed_max, other.observed_max)


class CategoryDriftRule(RuleBase):
    rule_type: Literal[RuleType.UNKNOWN_CATEGORY_MAPPING] = RuleType.UNKNOWN_CATEGORY_MAPPING
    baseline_categories: list[str] = Field(default_factory=list)  # known before first sighting
    drifted_categories: list[str] = Field(default_factory=list)   # seen after the baseline
    known_categories: list[str] = Field(default_factory=list)     # full vocabulary from samples

    def merge_evidence(self, other: "RuleBase") -> None:
        super().merge_evidence(other)
        if isinstance(other, CategoryDriftRule):
            drifted = set(self.drifted_categories) | set(other.drifted_categories)
            self.drifted_categories = sorted(drifted - set(self.baseline_categories))
            self.known_categories = sorted(set(self.known_categories) | set(other.known_categories))


class DuplicateRowsRule(RuleBase):
    rule_type: Literal[RuleType.DUPLICATE_ROWS] = RuleType.DUPLICATE_ROWS


class ConstantColumnRule(RuleBase):
    rule_type: Literal[RuleType.CONSTANT_COLUMN] = RuleType.CONSTANT_COLUMN
    constant_value: str


class WhitespaceRule(RuleBase):
    rule_type: Literal[RuleType.WHITESPACE_NORMALIZATION] = RuleType.WHITESPACE_NORMALIZATION


class DateFormatRule(RuleBase):
    rule_type: Literal[RuleType.DATE_FORMAT_STANDARDIZATION] = RuleType.DATE_FORMAT_STANDARDIZATION
    format_counts: dict[str, int] = Field(default_factory=dict)   # format label → sampled cells

    def merge_evidence(self, other: "RuleBase") -> None:
        super().merge_evidence(other)
        if isinstance(other, DateFormatRule):
            self.format_counts = dict(other.format_counts)


class TypeInconsistencyRule(RuleBase):
    rule_type: Literal[RuleType.TYPE_INCONSISTENCY] = RuleType.TYPE_INCONSISTENCY
    majority_kind: ColumnKind
    numeric_count: int = 0
    text_count: int = 0

    def merge_evidence(self, other: "RuleBase") -> None:
        # majority_kind stays fixed: it decides which cells are the minority
        super().merge_evidence(other)
        if isinstance(other, TypeInconsistencyRule):
            self.numeric_count = other.numeric_count
            self.text_count = other.text_count


PreprocessingRule = Annotated[
    Union[
        MissingValueRule,
        OutlierRule,
        CategoryDriftRule,
        DuplicateRowsRule,
        ConstantColumnRule,
        WhitespaceRule,
        DateFormatRule,
        TypeInconsistencyRule,
    ],
    Field(discriminator="rule_type"),
]


# ─────────────────────────────────────────────
# DISCOVERY / VALIDATION OUTPUTS
# ─────────────────────────────────────────────

class DiscoveryIssue(BaseModel):
    row_index: int
    column: str
    value: str
    reason: str                 # e.g. "non-numeric value in numeric column"


class DiscoveryOutput(BaseModel):
    stage: int
    sample_size: int
    candidates: list[PreprocessingRule] = Field(default_factory=list)
    category_snapshot: dict[str, list[str]] = Field(default_factory=dict)
    issues: list[DiscoveryIssue] = Field(default_factory=list)   # capped
    issue_count: int = 0                                         # uncapped


class ValidationResult(BaseModel):
    rule_id: str
    is_valid: bool
    hits: int = 0               # validation blocks that still exhibit the condition
    misses: int = 0             # validation blocks that contradict it
    match_count: int = 0
    sample_size: int = 0
    message: str = ""
