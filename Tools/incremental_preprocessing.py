"""
FILE: Tools/incremental_preprocessing.py
------------------------------------------
LangChain tools over a halted or finished preprocessing run, so a chat
front-end can inspect convergence and answer outstanding decisions.
"""

import json

from langchain_core.tools import tool

from core.exceptions import IncrementalPreprocessingError
from core.hitl_engine import build_prompt, parse_answer_text


# ─────────────────────────────────────────────
# SESSION STORE
# ─────────────────────────────────────────────

_workflow_store: dict = {
    "workflow": None,
    "result":   None,
}


def init_workflow_store(workflow, result) -> None:
    """Called after IncrementalPreprocessingWorkflow.run() or resume()."""
    _workflow_store["workflow"] = workflow
    _workflow_store["result"]   = result


def get_workflow_store() -> dict:
    """Expose store to the caller."""
    return _workflow_store


def _state():
    result = _workflow_store.get("result")
    if result is None or not result.state:
        return None
    return result.state


# ─────────────────────────────────────────────
# TOOLS
# ─────────────────────────────────────────────

@tool
def get_convergence_status() -> str:
    """
    Returns the run phase and the latest convergence verdict: overall
    confidence, stability, recommendation and the rules below threshold.
    Call this first to see whether the run is waiting on decisions.
    """
    result = _workflow_store.get("result")
    if result is None:
        return "ERROR: No workflow run in store."

    report = result.convergence_report
    return json.dumps({
        "phase":          result.phase.value,
        "success":        result.success,
        "halt_reason":    result.halt_reason,
        "failure_reason": result.failure_reason,
        "convergence":    report.model_dump(mode="json", exclude={"rule_details"}) if report else None,
    }, indent=2)


@tool
def get_pending_decisions() -> str:
    """
    Returns every outstanding question in the order it must be answered,
    with its options, the recommended option and the evidence behind it.
    """
    state = _state()
    if state is None:
        return "ERROR: No workflow state in store."

    pending = state.get("pending_questions", [])
    if not pending:
        return "No pending decisions."

    return json.dumps([
        {
            "question_id": q.id,
            "rule_id":     q.related_rule_id,
            "prompt":      build_prompt(q),
            "options":     [{"key": o.key, "label": o.label} for o in q.options],
            "recommended": q.recommended_option,
        }
        for q in pending
    ], indent=2)


@tool
def get_rule_summary() -> str:
    """
    Returns every discovered rule with its confidence, status and the
    transformation it will apply in bulk processing.
    """
    state = _state()
    if state is None:
        return "ERROR: No workflow state in store."

    return json.dumps([
        {
            "rule_id":        rule.id,
            "rule_type":      rule.rule_type.value,
            "columns":        rule.columns,
            "confidence":     round(rule.confidence, 4),
            "status":         rule.status.value,
            "requires_hitl":  rule.requires_hitl,
            "transformation": rule.transformation,
        }
        for rule in state.get("rules", [])
    ], indent=2)


@tool
def answer_pending_decision(question_id: str, response: str) -> str:
    """
    Answers one outstanding question. The response is an option letter,
    a 1-based option number, yes/no, or blank for the recommended option.
    The run is not resumed; call resume on the workflow once all
    decisions are answered.
    Args:
        question_id: Id from get_pending_decisions (e.g. 'q-missing-1a2b3c4d5e').
        response:    Reviewer's answer text.
    """
    workflow = _workflow_store.get("workflow")
    state = _state()
    if workflow is None or state is None:
        return "ERROR: No workflow run in store."

    question = next((q for q in state.get("pending_questions", []) if q.id == question_id), None)
    if question is None:
        return f"ERROR: No pending question with id '{question_id}'."

    try:
        answer = parse_answer_text(question, response, answered_by=workflow.config.responder)
        decision = workflow.answer_question(state, question_id, answer)
    except (ValueError, IncrementalPreprocessingError) as e:
        return f"ERROR: {e}"

    return json.dumps({
        "question_id":      question_id,
        "outcome":          decision.outcome,
        "resulting_action": decision.resulting_action,
        "remaining":        [q.id for q in state.get("pending_questions", [])],
    }, indent=2)


# ─────────────────────────────────────────────
# EXPORTED TOOL LIST
# ─────────────────────────────────────────────

WORKFLOW_TOOLS = [
    get_convergence_status,
    get_pending_decisions,
    get_rule_summary,
    answer_pending_decision,
]
