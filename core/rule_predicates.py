"""
FILE: core/rule_predicates.py
-------------------------------
Row-level predicates shared by discovery, validation and bulk application.

Every cell is a string. A cell is "missing" when its trimmed, lower-cased
text is in MISSING_VALUE_TOKENS. Numeric interpretation is per column:
a column is numeric when enough of its non-missing cells parse.
"""

import numpy as np
import pandas as pd

from constants.rule_discovery import (
    DATE_FORMATS,
    ISO_DATE_LABEL,
    MISSING_VALUE_TOKENS,
    NUMERIC_COERCION_THRESHOLD,
)
from Schemas.preprocessing_rule import (
    CategoryDriftRule,
    ColumnKind,
    ConstantColumnRule,
    DateFormatRule,
    DuplicateRowsRule,
    MissingValueRule,
    OutlierRule,
    RuleBase,
    TypeInconsistencyRule,
    WhitespaceRule,
)


# ─────────────────────────────────────────────
# CELL-LEVEL MASKS
# ─────────────────────────────────────────────

def missing_mask(series: pd.Series) -> pd.Series:
    normalized = series.astype(str).str.strip().str.lower()
    return normalized.isin(MISSING_VALUE_TOKENS)


def numeric_view(series: pd.Series) -> pd.Series:
    """Float view of a column; missing and non-parseable cells are NaN."""
    present = series.where(~missing_mask(series))
    return pd.to_numeric(present.str.strip(), errors="coerce")


def malformed_numeric_mask(series: pd.Series) -> pd.Series:
    """Non-missing cells that do not parse as numbers."""
    return ~missing_mask(series) & numeric_view(series).isna()


def whitespace_mask(series: pd.Series) -> pd.Series:
    """Non-missing cells with leading/trailing or repeated inner whitespace."""
    text = series.astype(str)
    irregular = (text != text.str.strip()) | text.str.contains(r"\s{2,}", regex=True)
    return irregular & ~missing_mask(series)


def normalize_whitespace(series: pd.Series) -> pd.Series:
    return series.astype(str).str.strip().str.replace(r"\s+", " ", regex=True)


def unseen_category_mask(series: pd.Series, categories: list[str]) -> pd.Series:
    """Non-missing cells whose value is outside `categories`."""
    return ~missing_mask(series) & ~series.isin(categories)


def minority_type_mask(series: pd.Series, majority_kind: ColumnKind) -> pd.Series:
    """
    Non-missing cells of the minority kind: text cells in a mostly numeric
    column, numeric cells in a mostly text column.
    """
    parsed = numeric_view(series).notna()
    if majority_kind == ColumnKind.NUMERIC:
        return ~missing_mask(series) & ~parsed
    return parsed


def date_format_view(series: pd.Series) -> tuple[pd.Series, pd.Series]:
    """
    Per cell: the label of the first DATE_FORMATS entry that matches and
    parses (None otherwise), and the parsed timestamp (NaT otherwise).
    """
    text = series.astype(str).str.strip()
    labels = pd.Series(None, index=series.index, dtype=object)
    parsed = pd.Series(pd.NaT, index=series.index, dtype="datetime64[ns]")

    for pattern, fmt, label in DATE_FORMATS:
        todo = labels.isna() & text.str.match(pattern)
        if not todo.any():
            continue
        values = pd.to_datetime(text[todo], format=fmt, errors="coerce")
        ok = values.index[values.notna()]
        labels.loc[ok] = label
        parsed.loc[ok] = values.loc[ok]
    return labels, parsed


def non_iso_date_mask(series: pd.Series) -> pd.Series:
    """Cells holding a recognised date written in a format other than ISO-8601."""
    labels, _ = date_format_view(series)
    return labels.notna() & (labels != ISO_DATE_LABEL)


def is_constant_column(series: pd.Series, value: str) -> bool:
    """True when every cell is present and equals `value` after stripping."""
    if missing_mask(series).any():
        return False
    return bool((series.astype(str).str.strip() == value).all())


def classify_column(
    series: pd.Series,
    threshold: float = NUMERIC_COERCION_THRESHOLD,
) -> ColumnKind:
    """Numeric when at least `threshold` of the non-missing cells parse."""
    present = ~missing_mask(series)
    n_present = int(present.sum())
    if n_present == 0:
        return ColumnKind.CATEGORICAL
    parsed = int(numeric_view(series).notna().sum())
    return ColumnKind.NUMERIC if parsed / n_present >= threshold else ColumnKind.CATEGORICAL


def format_number(value: float) -> str:
    """Renders a float the way the input would have written it (no trailing .0)."""
    if np.isfinite(value) and float(value).is_integer():
        return str(int(value))
    return format(float(value), ".10g")


# ─────────────────────────────────────────────
# RULE APPLICABILITY
# ─────────────────────────────────────────────

def condition_mask(rule: RuleBase, frame: pd.DataFrame) -> pd.Series:
    """
    Rows of `frame` that exhibit the condition a rule targets.
    Used as the stage-5 applicability predicate and for exception records.
    Rules whose columns are absent from the frame match nothing.

    Category drift matches values outside the full learned vocabulary
    (known_categories). Validation judges drift against the rule's
    baseline instead; see RuleDiscoveryEngine.validation_mask.
    """
    empty = pd.Series(False, index=frame.index)
    if any(col not in frame.columns for col in rule.columns):
        return empty

    if isinstance(rule, MissingValueRule):
        return missing_mask(frame[rule.column])

    if isinstance(rule, WhitespaceRule):
        return whitespace_mask(frame[rule.column])

    if isinstance(rule, OutlierRule):
        values = numeric_view(frame[rule.column])
        return ((values < rule.lower_bound) | (values > rule.upper_bound)).fillna(False)

    if isinstance(rule, CategoryDriftRule):
        return unseen_category_mask(frame[rule.column], rule.known_categories)

    if isinstance(rule, DuplicateRowsRule):
        return frame[rule.columns].duplicated(keep="first")

    if isinstance(rule, ConstantColumnRule):
        # Column-level rule: every row carries the column that will be dropped
        return pd.Series(True, index=frame.index)

    if isinstance(rule, DateFormatRule):
        return non_iso_date_mask(frame[rule.column])

    if isinstance(rule, TypeInconsistencyRule):
        return minority_type_mask(frame[rule.column], rule.majority_kind)

    return empty
