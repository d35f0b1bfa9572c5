"""
FILE: Utils/hitl_options_registry.py
--------------------------------------
Central registry mapping rule types to the remediation options offered
to the reviewer, plus the deterministic action of auto-resolvable rules.

Each option entry has:
  key:          Letter shown to the reviewer ("A", "B", ...)
  label:        Short name, stored on the rule as its transformation
  action:       Machine action applied in stage 5:
                  "fill_median" | "fill_mean" | "fill_mode" | "fill_constant"
                  "drop_rows"   | "cap"       | "log_transform"
                  "map_to_default" | "coerce_numeric" | "as_text"
                  "split_column"   | "keep"
  description:  Plain English description shown to the reviewer
  trade_off:    What the reviewer gives up by picking it
  applies_to:   "numeric" | "categorical" | "any" (column kind filter)
"""

from Schemas.preprocessing_rule import ColumnKind, RuleType


HITL_OPTIONS_REGISTRY: dict[RuleType, list[dict]] = {

    # ─────────────────────────────────────────────
    # MISSING VALUES
    # ─────────────────────────────────────────────
    RuleType.MISSING_VALUE_STRATEGY: [
        {
            "label":       "Fill with median",
            "action":      "fill_median",
            "description": "Replace missing values with the column median computed over the full dataset.",
            "trade_off":   "Robust to outliers; shrinks variance and hides that the value was missing.",
            "applies_to":  "numeric",
        },
        {
            "label":       "Fill with mean",
            "action":      "fill_mean",
            "description": "Replace missing values with the column mean computed over the full dataset.",
            "trade_off":   "Preserves the mean; pulled by outliers and skew.",
            "applies_to":  "numeric",
        },
        {
            "label":       "Fill with mode",
            "action":      "fill_mode",
            "description": "Replace missing values with the most frequent value.",
            "trade_off":   "Keeps values inside the observed set; over-represents the majority value.",
            "applies_to":  "any",
        },
        {
            "label":       "Fill with constant",
            "action":      "fill_constant",
            "description": "Replace missing values with a fixed placeholder (0 for numeric, 'Other' for text, or the reviewer's value).",
            "trade_off":   "Explicit and reversible; the placeholder becomes a real value downstream.",
            "applies_to":  "any",
        },
        {
            "label":       "Drop affected rows",
            "action":      "drop_rows",
            "description": "Remove every row with a missing value in this column.",
            "trade_off":   "No imputed values; loses data and may bias the remaining rows.",
            "applies_to":  "any",
        },
        {
            "label":       "Keep as-is",
            "action":      "keep",
            "description": "Leave missing values untouched.",
            "trade_off":   "No distortion; downstream consumers must handle missing values.",
            "applies_to":  "any",
        },
    ],

    # ─────────────────────────────────────────────
    # OUTLIERS
    # ─────────────────────────────────────────────
    RuleType.OUTLIER_HANDLING: [
        {
            "label":       "Cap at IQR bounds",
            "action":      "cap",
            "description": "Clip values below the lower bound or above the upper bound to the bound itself.",
            "trade_off":   "Keeps every row; extreme but genuine values are flattened.",
            "applies_to":  "numeric",
        },
        {
            "label":       "Drop outlier rows",
            "action":      "drop_rows",
            "description": "Remove rows whose value falls outside the IQR bounds.",
            "trade_off":   "Removes the extremes entirely; loses rows and any signal they carry.",
            "applies_to":  "numeric",
        },
        {
            "label":       "Log transform column",
            "action":      "log_transform",
            "description": "Apply log1p to the whole column to compress the right tail.",
            "trade_off":   "Keeps rows and ordering; changes the column's scale for every consumer.",
            "applies_to":  "numeric",
        },
        {
            "label":       "Keep as-is",
            "action":      "keep",
            "description": "Leave outliers untouched; they may be legitimate values.",
            "trade_off":   "No distortion; extreme values stay in downstream statistics.",
            "applies_to":  "numeric",
        },
    ],

    # ─────────────────────────────────────────────
    # UNKNOWN CATEGORIES (yes / no)
    # ─────────────────────────────────────────────
    RuleType.UNKNOWN_CATEGORY_MAPPING: [
        {
            "key":         "Y",
            "label":       "Approve default mapping",
            "action":      "map_to_default",
            "description": "Map values outside the learned vocabulary to the default category label.",
            "trade_off":   "Downstream sees a closed category set; rare genuine categories are merged.",
            "applies_to":  "any",
        },
        {
            "key":         "N",
            "label":       "Reject mapping",
            "action":      None,
            "description": "Leave unseen categories as they are; rows carrying them are reported as exceptions.",
            "trade_off":   "Nothing is merged; unseen values need manual handling.",
            "applies_to":  "any",
        },
    ],

    # ─────────────────────────────────────────────
    # MIXED NUMERIC / TEXT COLUMNS
    # ─────────────────────────────────────────────
    RuleType.TYPE_INCONSISTENCY: [
        {
            "label":       "Convert to numeric",
            "action":      "coerce_numeric",
            "description": "Keep the numeric values; text values become empty (missing).",
            "trade_off":   "The column becomes usable as a number; text entries are lost.",
            "applies_to":  "any",
        },
        {
            "label":       "Convert to text",
            "action":      "as_text",
            "description": "Treat every value, numbers included, as a categorical string.",
            "trade_off":   "Nothing is lost; numeric meaning of the column is given up.",
            "applies_to":  "any",
        },
        {
            "label":       "Split column",
            "action":      "split_column",
            "description": "Replace the column with <column>_numeric and <column>_text, each holding one kind of value.",
            "trade_off":   "Both kinds survive; consumers must read two sparse columns.",
            "applies_to":  "any",
        },
        {
            "label":       "Keep mixed",
            "action":      "keep",
            "description": "Leave the column as it is.",
            "trade_off":   "No change; downstream consumers must handle both kinds of value.",
            "applies_to":  "any",
        },
    ],
}


# ─────────────────────────────────────────────
# RECOMMENDED DEFAULTS
# (rule type, column kind) → action
# ─────────────────────────────────────────────

RECOMMENDED_ACTIONS: dict[tuple[RuleType, ColumnKind | None], tuple[str, str]] = {
    (RuleType.MISSING_VALUE_STRATEGY, ColumnKind.NUMERIC):
        ("fill_median", "Median imputation is robust to skew and outliers."),
    (RuleType.MISSING_VALUE_STRATEGY, ColumnKind.CATEGORICAL):
        ("fill_mode", "Mode imputation keeps the column inside its observed categories."),
    (RuleType.OUTLIER_HANDLING, None):
        ("keep", "Outliers may be legitimate; keep them unless they are known errors."),
    (RuleType.UNKNOWN_CATEGORY_MAPPING, None):
        ("map_to_default", "A closed category set is safer for downstream encoders."),
    (RuleType.TYPE_INCONSISTENCY, ColumnKind.NUMERIC):
        ("coerce_numeric", "Most values are numeric."),
    (RuleType.TYPE_INCONSISTENCY, ColumnKind.CATEGORICAL):
        ("as_text", "Most values are text."),
}


# ─────────────────────────────────────────────
# AUTO-RESOLUTION
# Deterministic low-risk fixes applied without a question.
# ─────────────────────────────────────────────

AUTO_RESOLUTIONS: dict[RuleType, dict] = {
    RuleType.DUPLICATE_ROWS: {
        "label":  "Remove exact duplicate rows",
        "action": "drop_duplicates",
    },
    RuleType.CONSTANT_COLUMN: {
        "label":  "Drop constant column",
        "action": "drop_column",
    },
    RuleType.WHITESPACE_NORMALIZATION: {
        "label":  "Trim and collapse whitespace",
        "action": "normalize_whitespace",
    },
    RuleType.DATE_FORMAT_STANDARDIZATION: {
        "label":  "Convert all dates to ISO-8601 (yyyy-MM-dd)",
        "action": "standardize_dates",
    },
}


def get_options(rule_type: RuleType, column_kind: ColumnKind | None = None) -> list[dict]:
    """
    Options for a rule type, filtered by column kind, with keys assigned
    in order ("A", "B", ...) unless the entry fixes its own key.
    """
    options = []
    for entry in HITL_OPTIONS_REGISTRY.get(rule_type, []):
        applies_to = entry["applies_to"]
        if column_kind is not None and applies_to not in ("any", column_kind.value):
            continue
        options.append(dict(entry))
    for i, option in enumerate(options):
        option.setdefault("key", chr(ord("A") + i))
    return options


def get_recommended_action(rule_type: RuleType, column_kind: ColumnKind | None = None) -> tuple[str, str] | None:
    return RECOMMENDED_ACTIONS.get((rule_type, column_kind)) or RECOMMENDED_ACTIONS.get((rule_type, None))
