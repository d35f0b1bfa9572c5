"""
FILE: core/rule_application_engine.py
---------------------------------------
Stage 5: applies approved rules to the entire dataset.
No LangChain or LLM dependencies.

Only rules with is_approved=True are applied, in this order:
  1. Whitespace normalisation
  2. Date format standardisation (ISO-8601)
  3. Mixed-type resolution (to numeric / to text / split / keep)
  4. Missing values (fill / drop rows / keep)
  5. Unknown-category mapping
  6. Outliers (cap / drop rows / log1p / keep)
  7. Duplicate rows
  8. Constant columns, only when the full column really is constant

Exception records are rows of the ORIGINAL dataset that carry an issue no
approved rule covers: a missing cell, a non-numeric cell in a numeric
column, a cell that breaks an approved constant-column rule, or the
condition of a rule that was rejected, deferred or left pending. They are
reported, never silently altered or dropped. Columns listed in
options.ignore_columns are neither transformed nor reported.
"""

import logging

import numpy as np
import pandas as pd

from constants.rule_discovery import ISO_DATE_LABEL
from core.rule_predicates import (
    classify_column,
    condition_mask,
    date_format_view,
    format_number,
    is_constant_column,
    malformed_numeric_mask,
    missing_mask,
    normalize_whitespace,
    numeric_view,
)
from Schemas.preprocessing_rule import (
    CategoryDriftRule,
    ColumnKind,
    ConstantColumnRule,
    DateFormatRule,
    DuplicateRowsRule,
    MissingValueRule,
    OutlierRule,
    RuleType,
    TypeInconsistencyRule,
    WhitespaceRule,
)
from Schemas.workflow import (
    BulkApplicationOutput,
    ExceptionRecord,
    RuleApplicationLog,
    RuleDiscoveryOptions,
)

logger = logging.getLogger(__name__)

_APPLICATION_ORDER = (
    WhitespaceRule,
    DateFormatRule,
    TypeInconsistencyRule,
    MissingValueRule,
    CategoryDriftRule,
    OutlierRule,
    DuplicateRowsRule,
    ConstantColumnRule,
)


# ─────────────────────────────────────────────
# HELPER — FILL VALUES
# ─────────────────────────────────────────────

def _fill_value(series: pd.Series, rule: MissingValueRule, default_label: str) -> str | None:
    """Computes the replacement for missing cells from the full column."""
    action = rule.action
    present = series[~missing_mask(series)]

    if action == "fill_constant":
        if "value" in rule.action_params:
            return str(rule.action_params["value"])
        return "0" if rule.column_kind == ColumnKind.NUMERIC else default_label

    if action in ("fill_median", "fill_mean"):
        values = numeric_view(series).dropna()
        if values.empty:
            return None
        stat = values.median() if action == "fill_median" else values.mean()
        return format_number(float(stat))

    if action == "fill_mode":
        if present.empty:
            return None
        return str(present.value_counts().index[0])

    return None


# ─────────────────────────────────────────────
# HELPER — PER-RULE APPLICATION
# Each returns (df, rows_affected, note).
# ─────────────────────────────────────────────

def _apply_whitespace(df: pd.DataFrame, rule: WhitespaceRule) -> tuple[pd.DataFrame, int, str]:
    mask = condition_mask(rule, df)
    df.loc[mask, rule.column] = normalize_whitespace(df.loc[mask, rule.column])
    return df, int(mask.sum()), ""


def _apply_date_format(df: pd.DataFrame, rule: DateFormatRule) -> tuple[pd.DataFrame, int, str]:
    labels, parsed = date_format_view(df[rule.column])
    mask = labels.notna() & (labels != ISO_DATE_LABEL)
    df.loc[mask, rule.column] = parsed[mask].dt.strftime("%Y-%m-%d")
    return df, int(mask.sum()), "dates rewritten as yyyy-MM-dd"


def _apply_type_resolution(df: pd.DataFrame, rule: TypeInconsistencyRule) -> tuple[pd.DataFrame, int, str]:
    col = rule.column
    series = df[col]

    if rule.action == "coerce_numeric":
        mask = malformed_numeric_mask(series)
        df.loc[mask, col] = ""
        return df, int(mask.sum()), "text values cleared"

    if rule.action == "split_column":
        numeric_col, text_col = f"{col}_numeric", f"{col}_text"
        if numeric_col in df.columns or text_col in df.columns:
            return df, 0, f"split skipped: '{numeric_col}' or '{text_col}' already exists"
        parsed = numeric_view(series).notna()
        text = ~missing_mask(series) & ~parsed
        numeric_part = series.where(parsed, "")
        text_part = series.where(text, "")
        position = df.columns.get_loc(col)
        df = df.drop(columns=[col])
        df.insert(position, numeric_col, numeric_part)
        df.insert(position + 1, text_col, text_part)
        return df, len(df), f"split into '{numeric_col}' and '{text_col}'"

    if rule.action in ("as_text", "keep"):
        return df, 0, "left as-is"
    return df, 0, f"unknown action '{rule.action}'"


def _apply_missing(
    df: pd.DataFrame,
    rule: MissingValueRule,
    options: RuleDiscoveryOptions,
) -> tuple[pd.DataFrame, int, str]:
    mask = condition_mask(rule, df)
    n = int(mask.sum())
    if rule.action == "keep" or n == 0:
        return df, 0, "left as-is"
    if rule.action == "drop_rows":
        return df.loc[~mask].copy(), n, "rows dropped"

    value = _fill_value(df[rule.column], rule, options.default_category_label)
    if value is None:
        return df, 0, f"no value available for {rule.action}; column left as-is"
    df.loc[mask, rule.column] = value
    return df, n, f"filled with '{value}'"


def _apply_category_mapping(
    df: pd.DataFrame,
    rule: CategoryDriftRule,
    options: RuleDiscoveryOptions,
) -> tuple[pd.DataFrame, int, str]:
    label = rule.action_params.get("label", options.default_category_label)
    mask = condition_mask(rule, df)
    df.loc[mask, rule.column] = label
    return df, int(mask.sum()), f"unseen values mapped to '{label}'"


def _apply_outliers(df: pd.DataFrame, rule: OutlierRule) -> tuple[pd.DataFrame, int, str]:
    mask = condition_mask(rule, df)
    n = int(mask.sum())
    if rule.action == "keep":
        return df, 0, "left as-is"
    if rule.action == "drop_rows":
        return df.loc[~mask].copy(), n, "rows dropped"

    values = numeric_view(df[rule.column])
    if rule.action == "cap":
        capped = values[mask].clip(lower=rule.lower_bound, upper=rule.upper_bound)
        df.loc[mask, rule.column] = [format_number(v) for v in capped]
        return df, n, f"capped to [{rule.lower_bound:.4g}, {rule.upper_bound:.4g}]"

    if rule.action == "log_transform":
        parsed = values.notna()
        if (values[parsed] <= -1).any():
            return df, 0, "log1p skipped: column has values <= -1"
        df.loc[parsed, rule.column] = [format_number(v) for v in np.log1p(values[parsed])]
        return df, int(parsed.sum()), "log1p applied to the column"

    return df, 0, f"unknown action '{rule.action}'"


def _apply_rule(
    df: pd.DataFrame,
    rule,
    options: RuleDiscoveryOptions,
    unverified_constants: set[str],
) -> tuple[pd.DataFrame, int, str]:
    if any(col not in df.columns for col in rule.columns):
        return df, 0, "columns no longer present"
    if isinstance(rule, WhitespaceRule):
        return _apply_whitespace(df, rule)
    if isinstance(rule, DateFormatRule):
        return _apply_date_format(df, rule)
    if isinstance(rule, TypeInconsistencyRule):
        return _apply_type_resolution(df, rule)
    if isinstance(rule, MissingValueRule):
        return _apply_missing(df, rule, options)
    if isinstance(rule, CategoryDriftRule):
        return _apply_category_mapping(df, rule, options)
    if isinstance(rule, OutlierRule):
        return _apply_outliers(df, rule)
    if isinstance(rule, DuplicateRowsRule):
        mask = df.duplicated(subset=rule.columns, keep="first")
        return df.loc[~mask].copy(), int(mask.sum()), "duplicates removed"
    if isinstance(rule, ConstantColumnRule):
        if rule.id in unverified_constants:
            logger.warning("Column '%s' is not constant in the full dataset; kept", rule.column)
            return df, 0, "not constant in full dataset; column kept"
        return df.drop(columns=[rule.column]), len(df), "column dropped"
    return df, 0, "no applicator"


def _unverified_constants(dataset: pd.DataFrame, rules: list) -> set[str]:
    """Ids of approved constant-column rules the full dataset contradicts."""
    return {
        rule.id for rule in rules
        if isinstance(rule, ConstantColumnRule) and rule.is_approved
        and rule.column in dataset.columns
        and not is_constant_column(dataset[rule.column], rule.constant_value)
    }


# ─────────────────────────────────────────────
# HELPER — EXCEPTION RECORDS
# ─────────────────────────────────────────────

def _collect_exceptions(
    dataset: pd.DataFrame,
    rules: list,
    options: RuleDiscoveryOptions,
    unverified_constants: set[str],
) -> list[ExceptionRecord]:
    """Rows of the original dataset with at least one uncovered issue."""
    reasons: dict[int, list[str]] = {}

    def flag(mask: pd.Series, reason: str) -> None:
        for idx in mask.index[mask.to_numpy(dtype=bool)]:
            reasons.setdefault(int(idx), []).append(reason)

    approved = [rule for rule in rules if rule.is_approved]
    dropped_columns = {
        rule.column for rule in approved
        if isinstance(rule, ConstantColumnRule) and rule.id not in unverified_constants
    }
    covered_missing = dropped_columns | {rule.column for rule in approved if isinstance(rule, MissingValueRule)}
    covered_types = dropped_columns | {rule.column for rule in approved if isinstance(rule, TypeInconsistencyRule)}
    ignored = set(options.ignore_columns)

    for col in dataset.columns:
        if col in ignored:
            continue
        series = dataset[col]
        if col not in covered_missing:
            flag(missing_mask(series), f"missing value in '{col}'")
        if col not in covered_types and classify_column(series, options.numeric_coercion_threshold) == ColumnKind.NUMERIC:
            flag(malformed_numeric_mask(series), f"non-numeric value in numeric column '{col}'")

    for rule in approved:
        if rule.id in unverified_constants:
            series = dataset[rule.column]
            breaks = ~missing_mask(series) & (series.astype(str).str.strip() != rule.constant_value)
            flag(breaks, f"'{rule.column}' differs from constant '{rule.constant_value}'; column kept")

    for rule in rules:
        if rule.is_approved or rule.rule_type in (RuleType.MISSING_VALUE_STRATEGY, RuleType.CONSTANT_COLUMN):
            continue
        flag(condition_mask(rule, dataset), f"{rule.name} ({rule.status.value}, not applied)")

    records = []
    for idx in sorted(reasons):
        row = dataset.loc[idx]
        records.append(ExceptionRecord(
            row_index=idx,
            values={str(k): str(v) for k, v in row.items()},
            reasons=reasons[idx],
        ))
    return records


# ─────────────────────────────────────────────
# MAIN ENTRY POINT
# ─────────────────────────────────────────────

def apply_rules(
    dataset: pd.DataFrame,
    rules: list,
    options: RuleDiscoveryOptions | None = None,
) -> tuple[pd.DataFrame, BulkApplicationOutput]:
    """
    Applies every approved rule to the full dataset.

    Args:
        dataset: Full dataset (string cells). Not modified.
        rules:   All discovered rules; unapproved ones only feed exception records.
        options: Discovery options (numeric threshold, default category label,
                 ignored columns).

    Returns:
        (processed DataFrame, BulkApplicationOutput)
    """
    options = options or RuleDiscoveryOptions()
    unverified = _unverified_constants(dataset, rules)
    exceptions = _collect_exceptions(dataset, rules, options, unverified)

    df = dataset.copy()
    log: list[RuleApplicationLog] = []
    columns_dropped: list[str] = []

    for rule_class in _APPLICATION_ORDER:
        for rule in rules:
            if not isinstance(rule, rule_class) or not rule.is_approved:
                continue
            df, affected, note = _apply_rule(df, rule, options, unverified)
            if isinstance(rule, ConstantColumnRule) and rule.column not in df.columns:
                columns_dropped.append(rule.column)
            log.append(RuleApplicationLog(
                rule_id=rule.id,
                rule_type=rule.rule_type,
                columns=list(rule.columns),
                action=rule.action or "none",
                rows_affected=affected,
                note=note,
            ))
            logger.info("Applied %s (%s): %d rows affected", rule.id, rule.action, affected)

    output = BulkApplicationOutput(
        total_records=len(dataset),
        processed_records=len(dataset),
        output_records=len(df),
        rows_removed=len(dataset) - len(df),
        columns_dropped=columns_dropped,
        application_log=log,
        exception_records=exceptions,
    )
    return df, output
