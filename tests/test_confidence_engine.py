"""Unit tests for core.confidence_engine.ConfidenceCalculator."""
import pytest

from core.confidence_engine import ConfidenceCalculator
from Schemas.convergence import ConfidenceTrend, Recommendation
from Schemas.preprocessing_rule import MissingValueRule, RuleStatus, ValidationResult


def _make_rule(rule_id: str = "r1", requires_hitl: bool = False, status: RuleStatus = RuleStatus.APPROVED):
    return MissingValueRule(
        id=rule_id,
        name=f"rule {rule_id}",
        description="",
        columns=["a"],
        discovered_at_stage=1,
        last_seen_stage=1,
        requires_hitl=requires_hitl,
        status=status,
    )


def _trial(rule_id: str, hits: int, misses: int) -> ValidationResult:
    return ValidationResult(rule_id=rule_id, is_valid=hits >= misses, hits=hits, misses=misses)


# ---------------------------------------------------------------------------
# Per-rule confidence
# ---------------------------------------------------------------------------

def test_unseen_rule_has_neutral_confidence():
    assert ConfidenceCalculator().calculate_rule_confidence("r1") == 0.5


def test_laplace_smoothed_hit_rate():
    calc = ConfidenceCalculator()
    calc.update([_trial("r1", 9, 1)], new_rule_count=1, sample_size=100)
    assert calc.calculate_rule_confidence("r1") == pytest.approx(10 / 12)


def test_confidence_stays_inside_open_unit_interval():
    calc = ConfidenceCalculator()
    calc.update([_trial("all", 1000, 0), _trial("none", 0, 1000)], new_rule_count=2, sample_size=100)
    assert 0 < calc.calculate_rule_confidence("none") < calc.calculate_rule_confidence("all") < 1


def test_credible_interval_brackets_confidence():
    calc = ConfidenceCalculator()
    calc.update([_trial("r1", 30, 5)], new_rule_count=1, sample_size=100)
    low, high = calc.credible_interval("r1")
    assert 0.0 <= low < calc.calculate_rule_confidence("r1") < high <= 1.0


def test_refresh_writes_confidence_onto_rules():
    calc = ConfidenceCalculator()
    rule = _make_rule()
    calc.update([_trial(rule.id, 3, 1)], new_rule_count=1, sample_size=100)
    calc.refresh_rule_confidences([rule])
    assert rule.confidence == pytest.approx(4 / 6)


def test_increasing_trend():
    calc = ConfidenceCalculator()
    for hits in (1, 3, 6, 10):
        calc.update([_trial("r1", hits, 0)], new_rule_count=0, sample_size=100)
    report = calc.get_convergence_report([_make_rule()])
    assert report.rule_details[0].trend == ConfidenceTrend.INCREASING


# ---------------------------------------------------------------------------
# Convergence report
# ---------------------------------------------------------------------------

def test_no_rules_waits_for_stability_window():
    calc = ConfidenceCalculator(stability_window=500)
    calc.update([], new_rule_count=0, sample_size=100)
    report = calc.get_convergence_report([])
    assert report.overall_confidence == 0.0
    assert report.recommendation == Recommendation.CONTINUE_SAMPLING

    calc.update([], new_rule_count=0, sample_size=500)
    assert calc.get_convergence_report([]).recommendation == Recommendation.READY_FOR_BULK_PROCESSING


def test_new_rule_resets_stability_counter():
    calc = ConfidenceCalculator()
    calc.update([], new_rule_count=0, sample_size=400)
    calc.update([], new_rule_count=1, sample_size=400)
    assert calc.ledger.samples_since_last_new_rule == 0


def test_ready_when_confident_and_window_passed():
    calc = ConfidenceCalculator(stability_window=500)
    rule = _make_rule()
    calc.update([_trial(rule.id, 20, 0)], new_rule_count=1, sample_size=100)
    calc.update([_trial(rule.id, 30, 0)], new_rule_count=0, sample_size=600)
    report = calc.get_convergence_report([rule])
    assert report.is_stable
    assert report.recommendation == Recommendation.READY_FOR_BULK_PROCESSING


def test_pending_hitl_rule_blocks_bulk():
    calc = ConfidenceCalculator()
    rule = _make_rule(requires_hitl=True, status=RuleStatus.PENDING)
    calc.update([_trial(rule.id, 50, 0)], new_rule_count=1, sample_size=100)
    report = calc.get_convergence_report([rule])
    assert report.recommendation == Recommendation.PROCEED_TO_HITL
    assert report.pending_hitl_rules == [rule.id]


def test_review_strategy_after_budget_with_low_confidence():
    calc = ConfidenceCalculator(stage_budget=2)
    rule = _make_rule(requires_hitl=True, status=RuleStatus.PENDING)
    calc.update([_trial(rule.id, 1, 9)], new_rule_count=1, sample_size=100)
    assert calc.get_convergence_report([rule]).recommendation == Recommendation.PROCEED_TO_HITL

    calc.update([_trial(rule.id, 1, 9)], new_rule_count=0, sample_size=500)
    report = calc.get_convergence_report([rule])
    assert report.recommendation == Recommendation.REVIEW_STRATEGY
    assert report.low_confidence_rules == [rule.id]


def test_full_population_is_stable_without_window():
    calc = ConfidenceCalculator(stability_window=500, stage_budget=1)
    rule = _make_rule()
    calc.update([_trial(rule.id, 0, 1)], new_rule_count=1, sample_size=60, covers_full_dataset=True)
    report = calc.get_convergence_report([rule])
    assert calc.ledger.population_observed
    # low confidence but every row was seen: no strategy review, not confident either
    assert report.recommendation == Recommendation.CONTINUE_SAMPLING

    calc2 = ConfidenceCalculator(stability_window=500, confidence_threshold=0.6)
    calc2.update([_trial(rule.id, 1, 0)], new_rule_count=1, sample_size=60, covers_full_dataset=True)
    assert calc2.get_convergence_report([rule]).recommendation == Recommendation.READY_FOR_BULK_PROCESSING
