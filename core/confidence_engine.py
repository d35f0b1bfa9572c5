"""
FILE: core/confidence_engine.py
---------------------------------
Per-rule confidence tracking and the convergence verdict.
No LangChain or LLM dependencies.

Confidence is the Laplace-smoothed hit rate over validation trials,
  (hits + 1) / (hits + misses + 2)
which is the posterior mean of Beta(hits + 1, misses + 1); the same
posterior gives each rule a credible interval.

Recommendation priority:
  1. ReviewStrategy         : rules exist, stage budget spent, overall < threshold
  2. ProceedToHITL          : a RequiresHITL rule is still pending
  3. ReadyForBulkProcessing : overall >= threshold
                            and the stability window has passed with no new rule
  4. ContinueSampling       : none of the above yet
"""

import logging

import numpy as np
from scipy import stats

from constants.convergence import (
    CONFIDENCE_THRESHOLD,
    CREDIBLE_INTERVAL_LEVEL,
    HISTORY_WINDOW,
    SAMPLING_STAGE_BUDGET,
    STABILITY_WINDOW,
    TREND_TOLERANCE,
    VOLATILE_STD,
)
from Schemas.convergence import (
    ConfidenceLedger,
    ConfidenceTrend,
    ConvergenceReport,
    Recommendation,
    RuleConfidenceDetail,
)
from Schemas.preprocessing_rule import RuleBase, ValidationResult

logger = logging.getLogger(__name__)


class ConfidenceCalculator:

    def __init__(
        self,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        stability_window: int = STABILITY_WINDOW,
        stage_budget: int = SAMPLING_STAGE_BUDGET,
        ledger: ConfidenceLedger | None = None,
    ):
        self.confidence_threshold = confidence_threshold
        self.stability_window = stability_window
        self.stage_budget = stage_budget
        self.ledger = ledger if ledger is not None else ConfidenceLedger()

    # ─────────────────────────────────────────
    # UPDATE
    # ─────────────────────────────────────────

    def update(
        self,
        validation_results: list[ValidationResult],
        new_rule_count: int,
        sample_size: int,
        covers_full_dataset: bool = False,
    ) -> None:
        """Folds one stage's validation trials into the ledger."""
        ledger = self.ledger
        for result in validation_results:
            ledger.hits[result.rule_id] = ledger.hits.get(result.rule_id, 0) + result.hits
            ledger.misses[result.rule_id] = ledger.misses.get(result.rule_id, 0) + result.misses
            ledger.history.setdefault(result.rule_id, []).append(
                self.calculate_rule_confidence(result.rule_id)
            )

        if new_rule_count > 0:
            ledger.samples_since_last_new_rule = 0
        else:
            ledger.samples_since_last_new_rule += sample_size

        ledger.stages_observed += 1
        if covers_full_dataset:
            ledger.population_observed = True

    # ─────────────────────────────────────────
    # PER-RULE CONFIDENCE
    # ─────────────────────────────────────────

    def _counts(self, rule: RuleBase | str) -> tuple[int, int]:
        rule_id = rule if isinstance(rule, str) else rule.id
        return self.ledger.hits.get(rule_id, 0), self.ledger.misses.get(rule_id, 0)

    def calculate_rule_confidence(self, rule: RuleBase | str) -> float:
        hits, misses = self._counts(rule)
        return (hits + 1) / (hits + misses + 2)

    def credible_interval(self, rule: RuleBase | str) -> tuple[float, float]:
        hits, misses = self._counts(rule)
        low, high = stats.beta.interval(CREDIBLE_INTERVAL_LEVEL, hits + 1, misses + 1)
        return round(float(low), 4), round(float(high), 4)

    def refresh_rule_confidences(self, rules: list) -> None:
        for rule in rules:
            rule.confidence = self.calculate_rule_confidence(rule)

    def _trend(self, rule_id: str) -> ConfidenceTrend:
        recent = self.ledger.history.get(rule_id, [])[-HISTORY_WINDOW:]
        if len(recent) < 2:
            return ConfidenceTrend.STABLE
        if float(np.std(recent)) > VOLATILE_STD:
            return ConfidenceTrend.VOLATILE
        slope = float(np.polyfit(np.arange(len(recent)), recent, 1)[0])
        if slope > TREND_TOLERANCE:
            return ConfidenceTrend.INCREASING
        if slope < -TREND_TOLERANCE:
            return ConfidenceTrend.DECREASING
        return ConfidenceTrend.STABLE

    # ─────────────────────────────────────────
    # CONVERGENCE REPORT
    # ─────────────────────────────────────────

    def get_convergence_report(self, rules: list) -> ConvergenceReport:
        """Builds a fresh report from the ledger and the current rule list."""
        ledger = self.ledger
        confidences = [self.calculate_rule_confidence(rule) for rule in rules]
        overall = float(np.mean(confidences)) if confidences else 0.0

        confident = not rules or overall >= self.confidence_threshold
        window_passed = (
            ledger.population_observed
            or ledger.samples_since_last_new_rule > self.stability_window
        )
        is_stable = confident and window_passed

        pending = [rule.id for rule in rules if rule.is_pending_decision]
        budget_spent = ledger.stages_observed >= self.stage_budget and not ledger.population_observed

        if rules and budget_spent and overall < self.confidence_threshold:
            recommendation = Recommendation.REVIEW_STRATEGY
        elif pending:
            recommendation = Recommendation.PROCEED_TO_HITL
        elif is_stable:
            recommendation = Recommendation.READY_FOR_BULK_PROCESSING
        else:
            recommendation = Recommendation.CONTINUE_SAMPLING

        details = []
        for rule, confidence in zip(rules, confidences):
            hits, misses = self._counts(rule)
            details.append(RuleConfidenceDetail(
                rule_id=rule.id,
                rule_name=rule.name,
                confidence=round(confidence, 4),
                hits=hits,
                misses=misses,
                credible_interval=self.credible_interval(rule),
                trend=self._trend(rule.id),
                requires_hitl=rule.requires_hitl,
                status=rule.status.value,
            ))

        low_confidence = [d.rule_id for d in details if d.confidence < self.confidence_threshold]
        report = ConvergenceReport(
            is_stable=is_stable,
            overall_confidence=round(overall, 4),
            samples_since_last_new_rule=ledger.samples_since_last_new_rule,
            recommendation=recommendation,
            confidence_threshold=self.confidence_threshold,
            stability_window=self.stability_window,
            stages_observed=ledger.stages_observed,
            total_rules=len(rules),
            pending_hitl_rules=pending,
            low_confidence_rules=low_confidence,
            rule_details=details,
        )
        report.summary = _summarize(report)
        logger.info(
            "Convergence: overall=%.3f stable=%s since_new=%d → %s",
            report.overall_confidence, is_stable,
            report.samples_since_last_new_rule, recommendation.value,
        )
        return report


def _summarize(report: ConvergenceReport) -> str:
    lines = [
        f"Recommendation: {report.recommendation.value}",
        f"Overall confidence: {report.overall_confidence:.1%} "
        f"(threshold {report.confidence_threshold:.0%})",
        f"Stable: {'yes' if report.is_stable else 'no'} "
        f"({report.samples_since_last_new_rule} rows sampled since the last new rule, "
        f"window {report.stability_window})",
        f"Rules: {report.total_rules} total, {len(report.pending_hitl_rules)} awaiting a decision, "
        f"{len(report.low_confidence_rules)} below threshold",
    ]
    return "\n".join(lines)
