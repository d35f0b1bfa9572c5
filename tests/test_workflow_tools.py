"""Tests for the LangChain tools in Tools.incremental_preprocessing."""
import json

from main import IncrementalPreprocessingWorkflow
from Schemas.workflow import WorkflowConfig, WorkflowPhase
from Tools.incremental_preprocessing import (
    WORKFLOW_TOOLS,
    answer_pending_decision,
    get_convergence_status,
    get_pending_decisions,
    get_rule_summary,
    init_workflow_store,
)


def _halted_run(make_missing_frame):
    workflow = IncrementalPreprocessingWorkflow(
        make_missing_frame(5_000, missing_every=10),
        WorkflowConfig(random_seed=4, interactive=False),
    )
    result = workflow.run()
    assert result.phase == WorkflowPhase.HITL_PENDING
    init_workflow_store(workflow, result)
    return workflow, result


def test_tools_exported():
    assert [t.name for t in WORKFLOW_TOOLS] == [
        "get_convergence_status",
        "get_pending_decisions",
        "get_rule_summary",
        "answer_pending_decision",
    ]


def test_empty_store_returns_errors():
    assert get_convergence_status.invoke({}).startswith("ERROR")
    assert get_pending_decisions.invoke({}).startswith("ERROR")
    assert get_rule_summary.invoke({}).startswith("ERROR")
    assert answer_pending_decision.invoke({"question_id": "q-1", "response": "y"}).startswith("ERROR")


def test_status_and_pending_decisions(make_missing_frame):
    _, result = _halted_run(make_missing_frame)

    status = json.loads(get_convergence_status.invoke({}))
    assert status["phase"] == "hitl_pending"
    assert status["convergence"]["recommendation"] == "ProceedToHITL"

    pending = json.loads(get_pending_decisions.invoke({}))
    assert [p["question_id"] for p in pending] == [q.id for q in result.outstanding_questions]
    assert pending[0]["recommended"] == "A"

    rules = json.loads(get_rule_summary.invoke({}))
    assert rules[0]["rule_type"] == "MissingValueStrategy"
    assert rules[0]["status"] == "pending"


def test_answer_then_resume(make_missing_frame):
    workflow, result = _halted_run(make_missing_frame)
    question_id = result.outstanding_questions[0].id

    reply = json.loads(answer_pending_decision.invoke({"question_id": question_id, "response": "B"}))
    assert reply["outcome"] == "approved"
    assert reply["resulting_action"] == "fill_mean"
    assert reply["remaining"] == []
    assert get_pending_decisions.invoke({}) == "No pending decisions."

    resumed = workflow.resume(result.state)
    assert resumed.success, resumed.summary


def test_bad_answers_return_errors(make_missing_frame):
    _, result = _halted_run(make_missing_frame)
    question_id = result.outstanding_questions[0].id

    assert answer_pending_decision.invoke({"question_id": "q-nope", "response": "A"}).startswith("ERROR")
    assert answer_pending_decision.invoke({"question_id": question_id, "response": "zzz"}).startswith("ERROR")
    assert len(result.state["pending_questions"]) == 1
    assert result.state["decisions"] == []
