"""End-to-end tests for the LangGraph orchestrator in main.py."""
import threading

import pandas as pd
import pytest

import main
from core.deliverables_engine import CONVERGENCE_FILE, DATASET_FILE
from core.hitl_engine import recommended_default_port
from main import IncrementalPreprocessingWorkflow, run_incremental_preprocessing
from Schemas.convergence import Recommendation
from Schemas.hitl import HITLAnswer, HITLQuestionType
from Schemas.preprocessing_rule import CategoryDriftRule, MissingValueRule, RuleStatus, RuleType
from Schemas.sampling import SamplingMethod
from Schemas.workflow import RuleDiscoveryOptions, WorkflowConfig, WorkflowPhase


def _stages(result) -> list[int]:
    return [s.stage for s in result.stage_results]


# ---------------------------------------------------------------------------
# Happy path: 100k records, 5% missing in one column
# ---------------------------------------------------------------------------

def test_missing_values_resolved_and_bulk_applied(make_missing_frame, tmp_path):
    data = make_missing_frame(100_000, missing_every=20)
    config = WorkflowConfig(random_seed=2024, confidence_threshold=0.9, output_dir=str(tmp_path))
    result = run_incremental_preprocessing(data, config, answer_port=recommended_default_port)

    assert result.success, result.summary
    assert result.phase == WorkflowPhase.COMPLETED
    assert _stages(result) == [1, 2, 3, 4, 5]

    assert len(result.rules) == 1
    rule = result.rules[0]
    assert isinstance(rule, MissingValueRule)
    assert rule.columns == ["amount"]
    assert rule.discovered_at_stage <= 2
    assert rule.confidence >= 0.9
    assert rule.action == "fill_median"
    assert rule.approved_by == "system:recommended-default"

    assert result.convergence_report.recommendation == Recommendation.READY_FOR_BULK_PROCESSING
    assert result.processed_records == 100_000
    assert result.application_log[0].rows_affected == 5_000
    assert result.exception_records == []
    assert [d.question.id for d in result.decisions] == [f"q-{rule.id}", "q-bulk-confirmation"]
    for approved in (r for r in result.rules if r.requires_hitl and r.is_approved):
        assert any(d.related_rule_id == approved.id for d in result.decisions)

    written = pd.read_csv(result.output_path, dtype=str, keep_default_na=False)
    assert len(written) == 100_000
    assert (written["amount"] == "").sum() == 0


def test_clean_small_dataset_skips_redundant_stages(clean_rows):
    result = run_incremental_preprocessing(clean_rows, WorkflowConfig(random_seed=1))
    assert result.success
    assert _stages(result) == [1, 5]
    assert result.stage_results[0].covers_full_dataset
    assert result.rules == []


# ---------------------------------------------------------------------------
# Category drift gates bulk processing until answered
# ---------------------------------------------------------------------------

def test_drift_blocks_until_answered_then_resumes(drift_frame):
    workflow = IncrementalPreprocessingWorkflow(
        drift_frame, WorkflowConfig(random_seed=11, interactive=False),
    )
    result = workflow.run()

    assert not result.success
    assert result.phase == WorkflowPhase.HITL_PENDING
    assert 5 not in _stages(result)
    assert result.processed_records == 0
    assert len(result.outstanding_questions) == 1
    question = result.outstanding_questions[0]
    assert question.question_type == HITLQuestionType.YES_NO
    drift = next(r for r in result.rules if r.id == question.related_rule_id)
    assert isinstance(drift, CategoryDriftRule)
    assert drift.columns == ["product"]
    assert drift.status == RuleStatus.PENDING

    decision = workflow.answer_question(
        result.state, question.id, HITLAnswer(question_id=question.id, boolean_value=True),
    )
    assert decision.outcome == "approved"

    resumed = workflow.resume(result.state)
    assert resumed.success, resumed.summary
    assert _stages(resumed) == [1, 2, 3, 4, 5]
    approved = next(r for r in resumed.rules if r.rule_type == RuleType.UNKNOWN_CATEGORY_MAPPING)
    assert approved.is_approved
    assert approved.action == "map_to_default"
    assert [d.question.id for d in resumed.decisions] == [question.id]


# ---------------------------------------------------------------------------
# Noise: rules never stabilise
# ---------------------------------------------------------------------------

def test_noise_halts_with_review_strategy(noise_frame, tmp_path):
    config = WorkflowConfig(
        random_seed=5,
        output_dir=str(tmp_path),
        discovery=RuleDiscoveryOptions(missing_value_floor=0.05),
    )
    result = run_incremental_preprocessing(noise_frame, config)

    assert not result.success
    assert result.phase == WorkflowPhase.HALTED
    assert result.halt_reason.startswith("ReviewStrategy")
    assert result.convergence_report.recommendation == Recommendation.REVIEW_STRATEGY
    assert result.convergence_report.overall_confidence < 0.95
    assert max(_stages(result)) == 4
    assert not (tmp_path / DATASET_FILE).exists()
    assert (tmp_path / CONVERGENCE_FILE).exists()
    assert "output_dataset" not in result.artifact_paths


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------

def _fingerprint(result):
    return (
        [rule.model_dump() for rule in result.rules],
        result.convergence_report,
        [(s.stage, s.sample_size, s.new_rule_count, s.average_confidence) for s in result.stage_results],
    )


def test_same_seed_same_outcome(make_missing_frame):
    data = make_missing_frame(5_000, missing_every=10)
    config = WorkflowConfig(random_seed=99, interactive=False)
    first = run_incremental_preprocessing(data, config)
    second = run_incremental_preprocessing(data, config)
    assert _fingerprint(first) == _fingerprint(second)


def test_unseeded_run_reports_replayable_seed(make_missing_frame):
    data = make_missing_frame(5_000, missing_every=10)
    first = run_incremental_preprocessing(data, WorkflowConfig(interactive=False))
    assert first.effective_seed is not None
    replay = run_incremental_preprocessing(data, WorkflowConfig(random_seed=first.effective_seed, interactive=False))
    assert _fingerprint(first) == _fingerprint(replay)


# ---------------------------------------------------------------------------
# Cancellation and failure
# ---------------------------------------------------------------------------

def test_cancellation_keeps_partial_state_and_resumes(make_missing_frame):
    cancel = threading.Event()

    def progress(message):
        if message.startswith("Stage 2/"):
            cancel.set()

    workflow = IncrementalPreprocessingWorkflow(
        make_missing_frame(5_000, missing_every=10),
        WorkflowConfig(random_seed=3),
        answer_port=recommended_default_port,
        progress=progress,
        cancel_event=cancel,
    )
    result = workflow.run()
    assert result.phase == WorkflowPhase.CANCELLED
    assert _stages(result) == [1, 2]
    assert result.state["resume_phase"] == WorkflowPhase.STAGE_3
    assert len(result.rules) == 1

    cancel.clear()
    resumed = workflow.resume(result.state)
    assert resumed.success, resumed.summary
    assert _stages(resumed) == [1, 2, 3, 4, 5]


def test_answer_given_as_cancellation_arrives_is_kept(make_missing_frame):
    cancel = threading.Event()
    asked = []

    def port(question):
        asked.append(question.id)
        if len(asked) == 1:
            cancel.set()
        return recommended_default_port(question)

    workflow = IncrementalPreprocessingWorkflow(
        make_missing_frame(5_000, missing_every=10),
        WorkflowConfig(random_seed=3),
        answer_port=port,
        cancel_event=cancel,
    )
    result = workflow.run()
    assert result.phase == WorkflowPhase.CANCELLED
    assert [d.question.id for d in result.decisions] == asked
    assert result.rules[0].is_approved
    assert result.outstanding_questions == []
    assert result.state["resume_phase"] == WorkflowPhase.STAGE_4

    cancel.clear()
    resumed = workflow.resume(result.state)
    assert resumed.success, resumed.summary
    assert [d.question.id for d in resumed.decisions] == [asked[0], "q-bulk-confirmation"]


def test_cancel_after_bulk_confirmation_resumes_at_bulk_apply(make_missing_frame):
    cancel = threading.Event()

    def port(question):
        if question.question_type == HITLQuestionType.CONFIRMATION:
            cancel.set()
        return recommended_default_port(question)

    workflow = IncrementalPreprocessingWorkflow(
        make_missing_frame(5_000, missing_every=10),
        WorkflowConfig(random_seed=3),
        answer_port=port,
        cancel_event=cancel,
    )
    result = workflow.run()
    assert result.phase == WorkflowPhase.CANCELLED
    assert result.state["resume_phase"] == WorkflowPhase.BULK_APPLY
    assert result.decisions[-1].outcome == "confirmed"

    cancel.clear()
    resumed = workflow.resume(result.state)
    assert resumed.success, resumed.summary
    assert [d.question.id for d in resumed.decisions].count("q-bulk-confirmation") == 1


def test_port_failure_cancels_with_decisions_intact(make_missing_frame):
    calls = []

    def flaky_port(question):
        calls.append(question.id)
        raise RuntimeError("socket closed")

    workflow = IncrementalPreprocessingWorkflow(
        make_missing_frame(5_000, missing_every=10),
        WorkflowConfig(random_seed=3),
        answer_port=flaky_port,
    )
    result = workflow.run()
    assert result.phase == WorkflowPhase.CANCELLED
    assert "socket closed" in result.halt_reason
    assert result.decisions == []
    assert len(calls) == 1
    assert _stages(result) == [1, 2, 3]

    workflow.answer_port = recommended_default_port
    resumed = workflow.resume(result.state)
    assert resumed.success, resumed.summary
    assert _stages(resumed) == [1, 2, 3, 4, 5]


def test_bulk_declined_halts_without_output(make_missing_frame, tmp_path):
    def port(question):
        if question.question_type == HITLQuestionType.CONFIRMATION:
            return HITLAnswer(question_id=question.id, boolean_value=False)
        return recommended_default_port(question)

    result = run_incremental_preprocessing(
        make_missing_frame(5_000, missing_every=10),
        WorkflowConfig(random_seed=3, output_dir=str(tmp_path)),
        answer_port=port,
    )
    assert result.phase == WorkflowPhase.HALTED
    assert result.decisions[-1].outcome == "declined"
    assert not (tmp_path / DATASET_FILE).exists()


def test_unexpected_error_becomes_failed_result(clean_rows, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(main, "apply_rules", boom)
    result = run_incremental_preprocessing(clean_rows, WorkflowConfig(random_seed=1))
    assert not result.success
    assert result.phase == WorkflowPhase.FAILED
    assert "disk on fire" in result.failure_reason
    assert _stages(result) == [1]


def test_broken_progress_sink_is_ignored(clean_rows):
    def sink(_message):
        raise ValueError("sink down")

    result = run_incremental_preprocessing(clean_rows, WorkflowConfig(random_seed=1), progress=sink)
    assert result.success


# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("data,message", [
    ([], "Dataset is empty."),
    (pd.DataFrame(index=range(3)), "Dataset has no columns."),
    ([1, 2, 3], "could not be read as row records"),
])
def test_invalid_input_fails_before_stage_one(data, message, tmp_path):
    out = tmp_path / "out"
    result = run_incremental_preprocessing(data, WorkflowConfig(output_dir=str(out)))
    assert result.phase == WorkflowPhase.FAILED
    assert message in result.failure_reason
    assert result.stage_results == []
    assert not out.exists()


def test_missing_stratification_column_fails(clean_rows):
    result = run_incremental_preprocessing(clean_rows, WorkflowConfig(stratification_column="region"))
    assert result.phase == WorkflowPhase.FAILED
    assert "region" in result.failure_reason


def test_stratified_run(make_missing_frame):
    result = run_incremental_preprocessing(
        make_missing_frame(5_000, missing_every=10),
        WorkflowConfig(random_seed=8, stratification_column="region", interactive=False),
    )
    assert result.phase == WorkflowPhase.HITL_PENDING
    assert all(s.sample_size >= 100 for s in result.stage_results)


def test_resume_with_unreadable_input_fails_cleanly():
    workflow = IncrementalPreprocessingWorkflow([1, 2, 3])
    result = workflow.resume({"phase": WorkflowPhase.HITL_PENDING})
    assert result.phase == WorkflowPhase.FAILED
    assert "row records" in result.failure_reason


def test_explicit_random_method_ignores_stratification_column(make_missing_frame):
    result = run_incremental_preprocessing(
        make_missing_frame(5_000, missing_every=10),
        WorkflowConfig(random_seed=8, sampling_method=SamplingMethod.RANDOM,
                       stratification_column="not_a_column", interactive=False),
    )
    assert result.phase == WorkflowPhase.HITL_PENDING
    assert all(s.sample_size >= 100 for s in result.stage_results)
