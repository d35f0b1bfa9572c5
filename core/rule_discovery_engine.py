"""
FILE: core/rule_discovery_engine.py
-------------------------------------
Pure rule discovery and re-validation for one sample.
No LangChain or LLM dependencies.

Discovery, per column not listed in options.ignore_columns, in order:
  1. Missing values        → MissingValueStrategy  (HITL: mean/median/mode/...)
  2. Irregular whitespace  → WhitespaceNormalization (auto-resolvable)
  3. Mixed date formats    → DateFormatStandardization (auto-resolvable, ISO-8601)
  4. Mixed numeric/text    → TypeInconsistency (HITL: target type)
  5a. Numeric columns      → OutlierHandling via IQR bounds (HITL)
  5b. Categorical columns  → UnknownCategoryMapping when values unseen in
                             earlier samples appear (HITL)
  6. Zero variance         → ConstantColumn (auto-resolvable)
Then across the analysed columns:
  7. Exact duplicate rows  → DuplicateRows (auto-resolvable)

Detectors 1, 3, 4 and 5a can be switched off through RuleDiscoveryOptions.
Malformed cells (non-numeric text in a numeric column) are recorded as
DiscoveryIssue entries; a failing column never aborts the stage.

Validation splits the sample into fixed-size blocks; each block is one
trial for the ConfidenceCalculator.
"""

import logging

import numpy as np
import pandas as pd

from constants.rule_discovery import ISO_DATE_LABEL, MAX_RECORDED_ISSUES
from core.rule_predicates import (
    classify_column,
    condition_mask,
    date_format_view,
    is_constant_column,
    malformed_numeric_mask,
    missing_mask,
    numeric_view,
    unseen_category_mask,
    whitespace_mask,
)
from Schemas.preprocessing_rule import (
    CategoryDriftRule,
    ColumnKind,
    ConstantColumnRule,
    DateFormatRule,
    DiscoveryIssue,
    DiscoveryOutput,
    DuplicateRowsRule,
    IssueSeverity,
    MissingValueRule,
    OutlierRule,
    RuleBase,
    RuleType,
    TypeInconsistencyRule,
    ValidationResult,
    WhitespaceRule,
    make_rule_id,
)
from Schemas.workflow import RuleDiscoveryOptions

logger = logging.getLogger(__name__)

_SET_CONDITION_RULES = (CategoryDriftRule, DuplicateRowsRule, ConstantColumnRule)


# ─────────────────────────────────────────────
# HELPER — SEVERITY
# ─────────────────────────────────────────────

def _missing_severity(affected_pct: float) -> IssueSeverity:
    if affected_pct > 20:
        return IssueSeverity.HIGH
    if affected_pct > 5:
        return IssueSeverity.MEDIUM
    return IssueSeverity.LOW


def _pct(count: int, total: int) -> float:
    return round(100.0 * count / total, 4) if total else 0.0


# ─────────────────────────────────────────────
# HELPER — IQR BOUNDS
# ─────────────────────────────────────────────

def _iqr_bounds(values: pd.Series, multiplier: float) -> tuple[float, float] | None:
    """Returns (lower, upper) or None when the spread is zero."""
    q1 = float(values.quantile(0.25))
    q3 = float(values.quantile(0.75))
    iqr = q3 - q1
    if iqr <= 0:
        return None
    return q1 - multiplier * iqr, q3 + multiplier * iqr


class RuleDiscoveryEngine:

    def __init__(self, options: RuleDiscoveryOptions | None = None):
        self.options = options or RuleDiscoveryOptions()

    # ─────────────────────────────────────────
    # DISCOVERY
    # ─────────────────────────────────────────

    def discover_rules(
        self,
        sample: pd.DataFrame,
        stage: int,
        category_vocabulary: dict[str, list[str]] | None = None,
    ) -> DiscoveryOutput:
        """
        Proposes candidate rules for one sample.

        Args:
            sample:              Rows of this stage (string cells).
            stage:               Stage number, recorded on each candidate.
            category_vocabulary: {column: values seen in earlier samples}.
                                 Columns absent here only get a snapshot.

        Returns:
            DiscoveryOutput with candidates in discovery order, this sample's
            category snapshot and the malformed-cell issues.
        """
        vocabulary = category_vocabulary or {}
        output = DiscoveryOutput(stage=stage, sample_size=len(sample))
        if sample.empty:
            return output

        columns = self.analysed_columns(sample)
        for col in columns:
            try:
                self._discover_column(sample, col, stage, vocabulary, output)
            except (TypeError, ValueError) as e:
                logger.warning("Discovery failed for column '%s' at stage %d: %s", col, stage, e)
                self._record_issue(output, DiscoveryIssue(
                    row_index=-1, column=col, value="", reason=f"column check failed: {e}",
                ))

        duplicate_rule = self._detect_duplicates(sample[columns], stage) if columns else None
        if duplicate_rule is not None:
            output.candidates.append(duplicate_rule)

        logger.info(
            "Stage %d discovery: %d candidate(s), %d issue(s) in %d rows",
            stage, len(output.candidates), output.issue_count, len(sample),
        )
        return output

    def analysed_columns(self, frame: pd.DataFrame) -> list[str]:
        ignored = set(self.options.ignore_columns)
        return [col for col in frame.columns if col not in ignored]

    def _discover_column(
        self,
        sample: pd.DataFrame,
        col: str,
        stage: int,
        vocabulary: dict[str, list[str]],
        output: DiscoveryOutput,
    ) -> None:
        series = sample[col]
        n = len(series)
        missing = missing_mask(series)
        kind = classify_column(series, self.options.numeric_coercion_threshold)

        # ── 1. Missing values ──
        n_missing = int(missing.sum())
        if self.options.detect_missing_values and n_missing and n_missing / n >= self.options.missing_value_floor:
            tokens = sorted(set(series[missing].str.strip().str.lower()))
            pct = _pct(n_missing, n)
            output.candidates.append(MissingValueRule(
                id=make_rule_id(RuleType.MISSING_VALUE_STRATEGY, [col]),
                name=f"Missing values in '{col}'",
                description=f"{n_missing} of {n} sampled values ({pct:.2f}%) in '{col}' are missing.",
                columns=[col],
                column_kind=kind,
                missing_tokens=tokens,
                match_count=n_missing,
                sample_size=n,
                affected_pct=pct,
                severity=_missing_severity(pct),
                requires_hitl=True,
                discovered_at_stage=stage,
                last_seen_stage=stage,
            ))

        # ── 2. Irregular whitespace ──
        irregular = whitespace_mask(series)
        n_irregular = int(irregular.sum())
        if n_irregular and n_irregular / n >= self.options.whitespace_floor:
            pct = _pct(n_irregular, n)
            output.candidates.append(WhitespaceRule(
                id=make_rule_id(RuleType.WHITESPACE_NORMALIZATION, [col]),
                name=f"Irregular whitespace in '{col}'",
                description=f"{n_irregular} values ({pct:.2f}%) have leading, trailing or repeated spaces.",
                columns=[col],
                match_count=n_irregular,
                sample_size=n,
                affected_pct=pct,
                severity=IssueSeverity.INFO,
                is_auto_resolvable=True,
                discovered_at_stage=stage,
                last_seen_stage=stage,
            ))

        # ── 3. Mixed date formats ──
        date_labels, _ = date_format_view(series)
        n_dates = int(date_labels.notna().sum())
        if self.options.detect_date_formats and n_dates:
            date_rule = self._detect_date_formats(date_labels, col, stage)
            if date_rule is not None:
                output.candidates.append(date_rule)

        # ── 4. Mixed numeric / text ──
        # Mostly-date columns are left out: yyyyMMdd cells also parse as numbers
        n_present = n - n_missing
        if self.options.detect_type_inconsistencies and n_present and n_dates * 2 < n_present:
            type_rule = self._detect_type_inconsistency(series, col, stage)
            if type_rule is not None:
                output.candidates.append(type_rule)

        # ── 5a / 5b. Type-specific checks ──
        if kind == ColumnKind.NUMERIC:
            malformed = malformed_numeric_mask(series)
            for idx, value in series[malformed].items():
                self._record_issue(output, DiscoveryIssue(
                    row_index=int(idx), column=col, value=str(value),
                    reason="non-numeric value in numeric column",
                ))
            if self.options.detect_outliers:
                outlier_rule = self._detect_outliers(series, col, stage)
                if outlier_rule is not None:
                    output.candidates.append(outlier_rule)
        else:
            drift_rule = self._detect_category_drift(series, col, stage, vocabulary, output)
            if drift_rule is not None:
                output.candidates.append(drift_rule)

        # ── 6. Zero variance ──
        present = series[~missing].str.strip()
        if len(present) >= 2 and present.nunique() == 1 and n_missing == 0:
            value = str(present.iloc[0])
            output.candidates.append(ConstantColumnRule(
                id=make_rule_id(RuleType.CONSTANT_COLUMN, [col]),
                name=f"Constant column '{col}'",
                description=f"Every sampled value of '{col}' is '{value}'; the column carries no information.",
                columns=[col],
                constant_value=value,
                match_count=n,
                sample_size=n,
                affected_pct=100.0,
                severity=IssueSeverity.INFO,
                is_auto_resolvable=True,
                discovered_at_stage=stage,
                last_seen_stage=stage,
            ))

    def _detect_date_formats(self, labels: pd.Series, col: str, stage: int) -> DateFormatRule | None:
        """Two or more recognised date formats in one column → convert to ISO-8601."""
        counts = labels.dropna().value_counts()
        n = len(labels)
        if len(counts) < 2 or counts.sum() / n < self.options.date_format_floor:
            return None

        n_convert = int(counts.drop(ISO_DATE_LABEL, errors="ignore").sum())
        pct = _pct(n_convert, n)
        format_counts = {str(label): int(count) for label, count in sorted(counts.items())}
        listed = ", ".join(f"{label} ({count})" for label, count in format_counts.items())
        return DateFormatRule(
            id=make_rule_id(RuleType.DATE_FORMAT_STANDARDIZATION, [col]),
            name=f"Mixed date formats in '{col}'",
            description=f"Found {len(format_counts)} date formats: {listed}.",
            columns=[col],
            format_counts=format_counts,
            match_count=n_convert,
            sample_size=n,
            affected_pct=pct,
            severity=IssueSeverity.LOW,
            is_auto_resolvable=True,
            discovered_at_stage=stage,
            last_seen_stage=stage,
        )

    def _detect_type_inconsistency(
        self,
        series: pd.Series,
        col: str,
        stage: int,
    ) -> TypeInconsistencyRule | None:
        present = ~missing_mask(series)
        n_present = int(present.sum())
        n_numeric = int(numeric_view(series).notna().sum())
        n_text = n_present - n_numeric
        ratio = n_numeric / n_present
        if not self.options.type_mix_min_numeric_ratio < ratio < self.options.type_mix_max_numeric_ratio:
            return None

        n_minority = min(n_numeric, n_text)
        if n_minority / len(series) < self.options.type_mix_floor:
            return None

        majority = ColumnKind.NUMERIC if n_numeric > n_text else ColumnKind.CATEGORICAL
        pct = _pct(n_minority, len(series))
        return TypeInconsistencyRule(
            id=make_rule_id(RuleType.TYPE_INCONSISTENCY, [col]),
            name=f"Mixed types in '{col}'",
            description=f"'{col}' mixes types: {n_numeric} numeric and {n_text} text values.",
            columns=[col],
            majority_kind=majority,
            numeric_count=n_numeric,
            text_count=n_text,
            match_count=n_minority,
            sample_size=len(series),
            affected_pct=pct,
            severity=IssueSeverity.HIGH,
            requires_hitl=True,
            discovered_at_stage=stage,
            last_seen_stage=stage,
        )

    def _detect_outliers(self, series: pd.Series, col: str, stage: int) -> OutlierRule | None:
        values = numeric_view(series).dropna()
        if len(values) < self.options.min_numeric_values:
            return None
        bounds = _iqr_bounds(values, self.options.iqr_multiplier)
        if bounds is None:
            return None

        lower, upper = bounds
        outside = (values < lower) | (values > upper)
        n_out = int(outside.sum())
        ratio = n_out / len(series)
        if n_out == 0 or ratio < self.options.outlier_floor or ratio > self.options.max_outlier_ratio:
            return None

        pct = _pct(n_out, len(series))
        return OutlierRule(
            id=make_rule_id(RuleType.OUTLIER_HANDLING, [col]),
            name=f"Outliers in '{col}'",
            description=(
                f"{n_out} values ({pct:.2f}%) in '{col}' fall outside the IQR bounds "
                f"[{lower:.4g}, {upper:.4g}]."
            ),
            columns=[col],
            lower_bound=lower,
            upper_bound=upper,
            observed_min=float(values.min()),
            observed_max=float(values.max()),
            match_count=n_out,
            sample_size=len(series),
            affected_pct=pct,
            severity=IssueSeverity.MEDIUM,
            requires_hitl=True,
            discovered_at_stage=stage,
            last_seen_stage=stage,
        )

    def _detect_category_drift(
        self,
        series: pd.Series,
        col: str,
        stage: int,
        vocabulary: dict[str, list[str]],
        output: DiscoveryOutput,
    ) -> CategoryDriftRule | None:
        present = series[~missing_mask(series)]
        categories = set(present.unique())
        if not categories or len(categories) > self.options.max_category_cardinality:
            return None
        output.category_snapshot[col] = sorted(categories)

        if col not in vocabulary:
            return None
        baseline = set(vocabulary[col])
        drifted = categories - baseline
        if not drifted:
            return None

        n_drifted = int(present.isin(drifted).sum())
        pct = _pct(n_drifted, len(series))
        return CategoryDriftRule(
            id=make_rule_id(RuleType.UNKNOWN_CATEGORY_MAPPING, [col]),
            name=f"Unseen categories in '{col}'",
            description=(
                f"{len(drifted)} value(s) of '{col}' absent from earlier samples appeared "
                f"in {n_drifted} rows ({pct:.2f}%)."
            ),
            columns=[col],
            baseline_categories=sorted(baseline),
            drifted_categories=sorted(drifted),
            known_categories=sorted(baseline | categories),
            match_count=n_drifted,
            sample_size=len(series),
            affected_pct=pct,
            severity=IssueSeverity.MEDIUM,
            requires_hitl=True,
            discovered_at_stage=stage,
            last_seen_stage=stage,
        )

    def _detect_duplicates(self, sample: pd.DataFrame, stage: int) -> DuplicateRowsRule | None:
        columns = list(sample.columns)
        n_dup = int(sample.duplicated(keep="first").sum())
        if n_dup == 0:
            return None
        pct = _pct(n_dup, len(sample))
        return DuplicateRowsRule(
            id=make_rule_id(RuleType.DUPLICATE_ROWS, columns),
            name="Exact duplicate rows",
            description=f"{n_dup} sampled rows ({pct:.2f}%) repeat an earlier row exactly.",
            columns=columns,
            match_count=n_dup,
            sample_size=len(sample),
            affected_pct=pct,
            severity=IssueSeverity.LOW,
            is_auto_resolvable=True,
            discovered_at_stage=stage,
            last_seen_stage=stage,
        )

    @staticmethod
    def _record_issue(output: DiscoveryOutput, issue: DiscoveryIssue) -> None:
        output.issue_count += 1
        if len(output.issues) < MAX_RECORDED_ISSUES:
            output.issues.append(issue)

    # ─────────────────────────────────────────
    # DEDUPLICATION
    # ─────────────────────────────────────────

    @staticmethod
    def merge_rules(existing: list, candidates: list) -> list:
        """
        Folds candidates into `existing` (in place) keyed by rule id.
        A rediscovered rule updates the evidence of the rule already held;
        only genuinely new rules are appended. Returns the new rules.
        """
        by_id: dict[str, RuleBase] = {rule.id: rule for rule in existing}
        new_rules = []
        for candidate in candidates:
            current = by_id.get(candidate.id)
            if current is None:
                existing.append(candidate)
                by_id[candidate.id] = candidate
                new_rules.append(candidate)
            else:
                current.merge_evidence(candidate)
        return new_rules

    @staticmethod
    def update_vocabulary(
        vocabulary: dict[str, list[str]],
        snapshot: dict[str, list[str]],
        rules: list,
    ) -> None:
        """
        Adds this sample's categories to the running vocabulary (in place)
        and to the learned vocabulary of any drift rule on the same column.
        Must run after discover_rules so the current sample is compared
        against earlier samples only.
        """
        for col, values in snapshot.items():
            vocabulary[col] = sorted(set(vocabulary.get(col, [])) | set(values))
        for rule in rules:
            if isinstance(rule, CategoryDriftRule) and rule.column in snapshot:
                rule.known_categories = sorted(set(rule.known_categories) | set(snapshot[rule.column]))

    # ─────────────────────────────────────────
    # VALIDATION
    # ─────────────────────────────────────────

    def _blocks(self, n_rows: int) -> list[np.ndarray]:
        n_blocks = max(1, n_rows // self.options.validation_block_size)
        return np.array_split(np.arange(n_rows), n_blocks)

    def _rate_floor(self, rule: RuleBase) -> float:
        if isinstance(rule, MissingValueRule):
            return self.options.missing_value_floor
        if isinstance(rule, OutlierRule):
            return self.options.outlier_floor
        if isinstance(rule, DateFormatRule):
            return self.options.date_format_floor
        if isinstance(rule, TypeInconsistencyRule):
            return self.options.type_mix_floor
        return self.options.whitespace_floor

    @staticmethod
    def validation_mask(rule: RuleBase, sample: pd.DataFrame) -> pd.Series:
        """
        Rows that count as evidence for a rule. Same as condition_mask except
        for category drift, which is evidenced by values outside the baseline
        the rule was discovered against. The learned vocabulary absorbs every
        sampled value, so it cannot serve as evidence.
        """
        if isinstance(rule, CategoryDriftRule):
            return unseen_category_mask(sample[rule.column], rule.baseline_categories)
        return condition_mask(rule, sample)

    @staticmethod
    def _sample_condition_holds(rule: RuleBase, sample: pd.DataFrame, mask: np.ndarray) -> bool:
        """Set-valued conditions, judged on the whole sample."""
        if isinstance(rule, ConstantColumnRule):
            return is_constant_column(sample[rule.column], rule.constant_value)
        return bool(mask.any())

    def validate_rules(self, rules: list, sample: pd.DataFrame) -> list[ValidationResult]:
        """
        Re-checks every rule against the sample.

        Rate conditions (missing, outliers, whitespace, date formats, mixed
        types): each block is a hit when its affected ratio reaches the
        rule's floor, else a miss.
        Set conditions (category drift, duplicates, constant column): the
        whole-sample verdict counts once per block.
        match_count always comes from the same mask the verdict uses.
        """
        results: list[ValidationResult] = []
        if sample.empty:
            return results
        blocks = self._blocks(len(sample))

        for rule in rules:
            if any(col not in sample.columns for col in rule.columns):
                results.append(ValidationResult(
                    rule_id=rule.id, is_valid=False, misses=len(blocks),
                    sample_size=len(sample), message="rule columns absent from sample",
                ))
                continue

            mask = self.validation_mask(rule, sample).to_numpy(dtype=bool)
            match_count = int(mask.sum())

            if isinstance(rule, _SET_CONDITION_RULES):
                holds = self._sample_condition_holds(rule, sample, mask)
                hits = len(blocks) if holds else 0
            else:
                floor = self._rate_floor(rule)
                hits = sum(1 for block in blocks if mask[block].mean() >= floor and mask[block].any())

            misses = len(blocks) - hits
            results.append(ValidationResult(
                rule_id=rule.id,
                is_valid=hits >= misses,
                hits=hits,
                misses=misses,
                match_count=match_count,
                sample_size=len(sample),
                message=f"{hits}/{len(blocks)} blocks exhibit the condition",
            ))
        return results
