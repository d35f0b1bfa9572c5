"""
FILE: main.py
--------------
LangGraph orchestrator for the incremental preprocessing workflow.
Wires the sampling, discovery, confidence and HITL engines into a
StateGraph with conditional edges.

Pipeline flow:
  sampling_stage  (stage 1 → 2 → 3 → 4, loops on itself)
      ↓ stage 3 drains pending questions when an answer port is present
      ↓ a sample covering the full dataset skips the remaining stages
  convergence_check
      ↓ ReviewStrategy / not converged → END (halted, dataset untouched)
      ↓ ProceedToHITL → hitl_review
            ↓ questions answered → convergence_check
            ↓ no port / rounds exhausted → END (hitl_pending, resumable)
      ↓ ReadyForBulkProcessing → bulk_confirmation
  bulk_confirmation
      ↓ [optional HITL confirmation; declined → END (halted)]
  bulk_apply  (stage 5, entire dataset)
      ↓ END (completed)

State:
  WorkflowState TypedDict, passed through the graph and returned inside
  the WorkflowResult. The DataFrame stays on the workflow instance, so a
  state can be inspected, answered offline and handed back to resume().

Human-in-the-loop:
  The answer port is a synchronous callable HITLQuestion -> HITLAnswer.
  Port failures and the caller's cancel_event both end the run as
  "cancelled" with every recorded decision kept.
"""

import logging
import secrets
import threading
import time
import uuid
from typing import Any, Callable, TypedDict

import pandas as pd
from langgraph.graph import END, START, StateGraph

from constants.sampling import BULK_STAGE, HITL_DECISION_STAGE, LAST_SAMPLING_STAGE, TOTAL_STAGES
from core.confidence_engine import ConfidenceCalculator
from core.dataset_loader import load_csv_dataset, normalize_dataset
from core.deliverables_engine import build_processing_summary, write_artifacts
from core.exceptions import (
    HITLPortError,
    InvalidDatasetError,
    WorkflowCancelledError,
    WorkflowStateError,
)
from core.hitl_engine import AnswerPort, HITLWorkflowService, build_prompt, parse_answer_text
from core.rule_application_engine import apply_rules
from core.rule_discovery_engine import RuleDiscoveryEngine
from core.sampling_engine import get_stage_config, sample_dataset
from Schemas.convergence import ConfidenceLedger, ConvergenceReport, Recommendation
from Schemas.hitl import HITLAnswer, HITLDecision, HITLQuestion
from Schemas.sampling import SamplingMethod
from Schemas.workflow import (
    SAMPLING_PHASES,
    BulkApplicationOutput,
    StageResult,
    WorkflowConfig,
    WorkflowPhase,
    WorkflowResult,
)

logger = logging.getLogger(__name__)

GRAPH_RECURSION_LIMIT = 50


# ─────────────────────────────────────────────
# STATE SCHEMA
# TypedDict, all fields optional, populated as the run progresses
# ─────────────────────────────────────────────

class WorkflowState(TypedDict, total=False):
    # ── Identity ──
    run_id:               str
    effective_seed:       int
    total_records:        int

    # ── Progress ──
    phase:                WorkflowPhase
    current_stage:        int                     # next sampling stage to run
    resume_phase:         WorkflowPhase | None    # phase interrupted by cancellation
    hitl_rounds:          int
    halt_reason:          str | None
    failure_reason:       str | None

    # ── Rules and decisions ──
    rules:                list                    # PreprocessingRule variants, discovery order
    pending_questions:    list                    # HITLQuestion, discovery order
    decisions:            list                    # HITLDecision, append-only
    category_vocabulary:  dict                    # {column: categories seen in earlier samples}
    confidence:           ConfidenceLedger
    convergence_report:   ConvergenceReport | None

    # ── Records ──
    stage_results:        list                    # StageResult
    discovery_issues:     list                    # DiscoveryIssue
    bulk_output:          BulkApplicationOutput | None


# ─────────────────────────────────────────────
# ROUTING
# ─────────────────────────────────────────────

def route_entry(state: WorkflowState) -> str:
    """Starts a fresh run at stage 1 and re-enters a resumed run where it stopped."""
    phase = state.get("phase", WorkflowPhase.NOT_STARTED)
    if phase == WorkflowPhase.NOT_STARTED or phase in SAMPLING_PHASES.values():
        return "sampling_stage"
    if phase in (WorkflowPhase.CONVERGENCE_CHECK, WorkflowPhase.HITL_PENDING):
        return "convergence_check"
    if phase == WorkflowPhase.READY_FOR_BULK:
        return "bulk_confirmation"
    if phase == WorkflowPhase.BULK_APPLY:
        return "bulk_apply"
    return END


def route_after_sampling_stage(state: WorkflowState) -> str:
    if state.get("phase") == WorkflowPhase.CONVERGENCE_CHECK:
        return "convergence_check"
    return "sampling_stage"


def route_after_convergence_check(state: WorkflowState) -> str:
    phase = state.get("phase")
    if phase == WorkflowPhase.HITL_PENDING:
        return "hitl_review"
    if phase == WorkflowPhase.READY_FOR_BULK:
        return "bulk_confirmation"
    return END


def route_after_hitl_review(state: WorkflowState) -> str:
    if state.get("phase") == WorkflowPhase.CONVERGENCE_CHECK:
        return "convergence_check"
    return END


def route_after_bulk_confirmation(state: WorkflowState) -> str:
    if state.get("phase") == WorkflowPhase.BULK_APPLY:
        return "bulk_apply"
    return END


# ─────────────────────────────────────────────
# WORKFLOW
# ─────────────────────────────────────────────

class IncrementalPreprocessingWorkflow:
    """
    One instance owns one dataset for the lifetime of a run.

    Args:
        dataset:      Row records (column → value) or a DataFrame.
        config:       WorkflowConfig; defaults apply when omitted.
        answer_port:  HITLQuestion -> HITLAnswer; None keeps questions pending.
        progress:     Best-effort sink for human-readable progress strings.
        cancel_event: Set by the caller to cancel cooperatively.
    """

    def __init__(
        self,
        dataset: pd.DataFrame | list[dict],
        config: WorkflowConfig | None = None,
        answer_port: AnswerPort | None = None,
        progress: Callable[[str], None] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.config = config or WorkflowConfig()
        self.answer_port = answer_port
        self.progress = progress
        self.cancel_event = cancel_event or threading.Event()

        self.discovery_engine = RuleDiscoveryEngine(self.config.discovery)
        self.hitl_service = HITLWorkflowService(
            responder=self.config.responder,
            default_category_label=self.config.discovery.default_category_label,
        )

        self._raw_dataset = dataset
        self._dataset: pd.DataFrame | None = None
        self._processed: pd.DataFrame | None = None
        self._live_state: WorkflowState | None = None
        self.graph = build_graph(self)

    # ─────────────────────────────────────────
    # PUBLIC API
    # ─────────────────────────────────────────

    def run(self) -> WorkflowResult:
        """Runs stages 1-5. Input errors fail here, before stage 1, with no artifacts."""
        try:
            self._prepare_dataset()
        except InvalidDatasetError as e:
            return self._input_failure(e)
        return self._execute(self._initial_state())

    def resume(self, state: WorkflowState) -> WorkflowResult:
        """
        Continues a run from a state returned in an earlier WorkflowResult,
        typically after answering its outstanding questions with
        answer_question(). Cancelled runs continue from the phase they were in.
        """
        try:
            self._prepare_dataset()
        except InvalidDatasetError as e:
            return self._input_failure(e)
        state = dict(state)
        if state.get("phase") == WorkflowPhase.CANCELLED and state.get("resume_phase"):
            state.update(phase=state["resume_phase"], resume_phase=None, halt_reason=None)
        if state.get("phase") == WorkflowPhase.HITL_PENDING:
            state.update(hitl_rounds=0, halt_reason=None)
        return self._execute(state)

    def answer_question(
        self,
        state: WorkflowState,
        question_id: str,
        answer: HITLAnswer,
    ) -> HITLDecision:
        """Answers one outstanding question of a halted run, outside the graph."""
        return self.hitl_service.answer_question(
            question_id, answer, state["rules"], state["pending_questions"], state["decisions"],
        )

    # ─────────────────────────────────────────
    # HELPERS
    # ─────────────────────────────────────────

    @staticmethod
    def _input_failure(error: InvalidDatasetError) -> WorkflowResult:
        logger.error("Input error: %s", error)
        return WorkflowResult(success=False, phase=WorkflowPhase.FAILED, failure_reason=str(error))

    def _prepare_dataset(self) -> None:
        if self._dataset is not None:
            return
        dataset = normalize_dataset(self._raw_dataset)
        column = self.config.stratification_column
        stratified = self.config.sampling_method == SamplingMethod.STRATIFIED
        if stratified and column not in dataset.columns:
            raise InvalidDatasetError(f"Stratification column '{column}' not found in dataset.")
        self._dataset = dataset

    def _initial_state(self) -> WorkflowState:
        seed = self.config.random_seed
        if seed is None:
            seed = secrets.randbits(32)
        return {
            "run_id":              uuid.uuid4().hex[:12],
            "effective_seed":      seed,
            "total_records":       len(self._dataset),
            "phase":               WorkflowPhase.NOT_STARTED,
            "current_stage":       1,
            "resume_phase":        None,
            "hitl_rounds":         0,
            "halt_reason":         None,
            "failure_reason":      None,
            "rules":               [],
            "pending_questions":   [],
            "decisions":           [],
            "category_vocabulary": {},
            "confidence":          ConfidenceLedger(),
            "convergence_report":  None,
            "stage_results":       [],
            "discovery_issues":    [],
            "bulk_output":         None,
        }

    def _calculator(self, state: WorkflowState) -> ConfidenceCalculator:
        return ConfidenceCalculator(
            confidence_threshold=self.config.confidence_threshold,
            stability_window=self.config.stability_window,
            stage_budget=self.config.stage_budget,
            ledger=state["confidence"],
        )

    def _can_ask(self) -> bool:
        return self.config.interactive and self.answer_port is not None

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise WorkflowCancelledError("Run cancelled by caller.")

    def _notify(self, message: str) -> None:
        logger.info(message)
        if self.progress is None:
            return
        try:
            self.progress(message)
        except Exception as e:
            logger.warning("Progress sink raised %s: %s", type(e).__name__, e)

    def _drain(self, state: WorkflowState) -> int:
        return self.hitl_service.drain(
            state["pending_questions"],
            state["rules"],
            state["decisions"],
            self.answer_port,
            cancel_check=self._check_cancelled,
            progress=self._notify,
        )

    # ─────────────────────────────────────────
    # NODE FUNCTIONS
    # Lists in the state are mutated in place so decisions recorded before
    # a cancellation survive in the live state.
    # ─────────────────────────────────────────

    def node_sampling_stage(self, state: WorkflowState) -> WorkflowState:
        self._live_state = state
        self._check_cancelled()

        stage = state["current_stage"]
        stage_config = get_stage_config(stage)
        state["phase"] = SAMPLING_PHASES[stage]
        started = time.perf_counter()

        # ── Sample → discover → validate → update confidence ──
        sample, metadata = sample_dataset(
            self._dataset, stage, state["effective_seed"],
            self.config.stratification_column, self.config.sampling_method,
        )
        discovery = self.discovery_engine.discover_rules(sample, stage, state["category_vocabulary"])
        new_rules = self.discovery_engine.merge_rules(state["rules"], discovery.candidates)
        self.discovery_engine.update_vocabulary(
            state["category_vocabulary"], discovery.category_snapshot, state["rules"],
        )
        self.hitl_service.admit_rules(new_rules, state["pending_questions"], self.config.deferred_rule_types)
        state["discovery_issues"].extend(discovery.issues)

        results = self.discovery_engine.validate_rules(state["rules"], sample)
        calculator = self._calculator(state)
        calculator.update(results, len(new_rules), len(sample), metadata.covers_full_dataset)
        calculator.refresh_rule_confidences(state["rules"])
        report = calculator.get_convergence_report(state["rules"])

        # ── Advance ──
        last_stage = stage >= LAST_SAMPLING_STAGE or metadata.covers_full_dataset
        state["current_stage"] = stage + 1
        state["phase"] = WorkflowPhase.CONVERGENCE_CHECK if last_stage else SAMPLING_PHASES[stage + 1]

        state["stage_results"].append(StageResult(
            stage=stage,
            purpose=stage_config.purpose,
            sample_size=len(sample),
            sample_fraction=len(sample) / max(state["total_records"], 1),
            new_rule_count=len(new_rules),
            validated_rule_count=len(results),
            total_rule_count=len(state["rules"]),
            average_confidence=report.overall_confidence,
            discovery_issue_count=discovery.issue_count,
            hitl_required=bool(state["pending_questions"]),
            pending_questions=[q.id for q in state["pending_questions"]],
            recommendation=report.recommendation.value,
            covers_full_dataset=metadata.covers_full_dataset,
            duration_seconds=round(time.perf_counter() - started, 4),
        ))
        self._notify(
            f"Stage {stage}/{TOTAL_STAGES}: {stage_config.purpose} | sample={len(sample)} "
            f"({len(sample) / max(state['total_records'], 1):.2%}) | rules: {len(new_rules)} new, "
            f"{len(state['rules'])} total | confidence: {report.overall_confidence:.1%}"
        )
        if metadata.covers_full_dataset and stage < LAST_SAMPLING_STAGE:
            self._notify(
                f"Stage {stage}/{TOTAL_STAGES}: sample covers the full dataset; "
                f"stages {stage + 1}-{LAST_SAMPLING_STAGE} skipped"
            )

        # ── Stage 3 asks pending questions when someone can answer ──
        if stage == HITL_DECISION_STAGE and state["pending_questions"] and self._can_ask():
            self._drain(state)

        return {**state}

    def node_convergence_check(self, state: WorkflowState) -> WorkflowState:
        self._live_state = state
        state["phase"] = WorkflowPhase.CONVERGENCE_CHECK

        report = self._calculator(state).get_convergence_report(state["rules"])
        state["convergence_report"] = report
        recommendation = report.recommendation

        if recommendation == Recommendation.REVIEW_STRATEGY:
            state["phase"] = WorkflowPhase.HALTED
            state["halt_reason"] = (
                f"ReviewStrategy: overall confidence {report.overall_confidence:.1%} stayed below "
                f"{report.confidence_threshold:.0%} through {report.stages_observed} sampling stage(s); "
                f"low-confidence rules: {', '.join(report.low_confidence_rules)}"
            )
        elif recommendation == Recommendation.PROCEED_TO_HITL:
            state["phase"] = WorkflowPhase.HITL_PENDING
        elif recommendation == Recommendation.READY_FOR_BULK_PROCESSING:
            state["phase"] = WorkflowPhase.READY_FOR_BULK
        else:
            state["phase"] = WorkflowPhase.HALTED
            state["halt_reason"] = (
                f"Rules did not stabilise within the sampling budget: "
                f"{report.samples_since_last_new_rule} rows sampled since the last new rule "
                f"(window {report.stability_window})"
            )

        self._notify(
            f"Convergence check: {recommendation.value} | confidence {report.overall_confidence:.1%} "
            f"| stable: {'yes' if report.is_stable else 'no'}"
        )
        return {**state}

    def node_hitl_review(self, state: WorkflowState) -> WorkflowState:
        self._live_state = state
        pending = state["pending_questions"]

        if self._can_ask() and pending and state["hitl_rounds"] < self.config.max_hitl_rounds:
            state["hitl_rounds"] += 1
            answered = self._drain(state)
            self._notify(f"HITL: {answered} question(s) answered, {len(pending)} still pending")
            state["phase"] = WorkflowPhase.CONVERGENCE_CHECK
        else:
            ids = ", ".join(q.id for q in pending)
            state["halt_reason"] = f"{len(pending)} decision(s) outstanding: {ids}"
            self._notify(f"HITL: bulk stage gated on {len(pending)} outstanding decision(s)")
        return {**state}

    def node_bulk_confirmation(self, state: WorkflowState) -> WorkflowState:
        self._live_state = state
        report = state["convergence_report"]

        if self._can_ask() and self.config.require_bulk_confirmation:
            question = self.hitl_service.create_bulk_confirmation(
                state["rules"], state["total_records"], report.overall_confidence,
            )
            self._check_cancelled()
            answer = self.hitl_service.ask(question, self.answer_port)
            if not self.hitl_service.record_confirmation(question, answer, state["decisions"]):
                state["phase"] = WorkflowPhase.HALTED
                state["halt_reason"] = "Bulk processing declined by reviewer."
                return {**state}

        # Confirmation is recorded; a cancellation from here resumes at bulk_apply
        state["phase"] = WorkflowPhase.BULK_APPLY
        self._check_cancelled()
        return {**state}

    def node_bulk_apply(self, state: WorkflowState) -> WorkflowState:
        self._live_state = state
        self._check_cancelled()

        report = state.get("convergence_report")
        if report is None or report.recommendation != Recommendation.READY_FOR_BULK_PROCESSING:
            raise WorkflowStateError("Bulk apply requires a ReadyForBulkProcessing verdict.")

        stage_config = get_stage_config(BULK_STAGE)
        started = time.perf_counter()
        approved = [rule for rule in state["rules"] if rule.is_approved]
        self._notify(
            f"Stage {BULK_STAGE}/{TOTAL_STAGES}: {stage_config.purpose} | applying "
            f"{len(approved)} approved rule(s) to {state['total_records']} records"
        )

        processed, output = apply_rules(self._dataset, state["rules"], self.config.discovery)
        self._processed = processed
        state["bulk_output"] = output
        state["stage_results"].append(StageResult(
            stage=BULK_STAGE,
            purpose=stage_config.purpose,
            sample_size=state["total_records"],
            sample_fraction=1.0,
            validated_rule_count=len(approved),
            total_rule_count=len(state["rules"]),
            average_confidence=report.overall_confidence,
            covers_full_dataset=True,
            duration_seconds=round(time.perf_counter() - started, 4),
        ))
        state["phase"] = WorkflowPhase.COMPLETED
        self._notify(
            f"Stage {BULK_STAGE}/{TOTAL_STAGES}: done | {output.output_records} rows out, "
            f"{len(output.exception_records)} exception record(s)"
        )
        return {**state}

    # ─────────────────────────────────────────
    # EXECUTION BOUNDARY
    # ─────────────────────────────────────────

    def _execute(self, state: WorkflowState) -> WorkflowResult:
        self._live_state = state
        try:
            final = self.graph.invoke(state, config={"recursion_limit": GRAPH_RECURSION_LIMIT})
        except (WorkflowCancelledError, HITLPortError) as e:
            live = self._live_state
            logger.warning("Run %s cancelled: %s", live.get("run_id"), e)
            final = {
                **live,
                "resume_phase": live.get("phase"),
                "phase": WorkflowPhase.CANCELLED,
                "halt_reason": str(e),
            }
        except Exception as e:
            live = self._live_state
            logger.exception("Run %s failed", live.get("run_id"))
            final = {**live, "phase": WorkflowPhase.FAILED, "failure_reason": f"{type(e).__name__}: {e}"}

        result = self._build_result(final)
        self._persist(result)
        return result

    def _build_result(self, final: dict[str, Any]) -> WorkflowResult:
        bulk: BulkApplicationOutput | None = final.get("bulk_output")
        result = WorkflowResult(
            run_id=final.get("run_id", ""),
            success=final.get("phase") == WorkflowPhase.COMPLETED,
            phase=final.get("phase", WorkflowPhase.FAILED),
            halt_reason=final.get("halt_reason"),
            failure_reason=final.get("failure_reason"),
            effective_seed=final.get("effective_seed"),
            total_records=final.get("total_records", 0),
            processed_records=bulk.processed_records if bulk else 0,
            rules=list(final.get("rules", [])),
            decisions=list(final.get("decisions", [])),
            outstanding_questions=list(final.get("pending_questions", [])),
            convergence_report=final.get("convergence_report"),
            stage_results=list(final.get("stage_results", [])),
            exception_records=bulk.exception_records if bulk else [],
            discovery_issues=list(final.get("discovery_issues", [])),
            application_log=bulk.application_log if bulk else [],
            artifacts_dir=self.config.output_dir,
            state=final,
        )
        result.summary = build_processing_summary(result)
        return result

    def _persist(self, result: WorkflowResult) -> None:
        if not self.config.output_dir:
            return
        processed = self._processed if result.phase == WorkflowPhase.COMPLETED else None
        try:
            result.artifact_paths = write_artifacts(result, self.config.output_dir, processed)
        except OSError as e:
            logger.error("Could not write artifacts to %s: %s", self.config.output_dir, e)
            result.failure_reason = result.failure_reason or f"Artifacts not written: {e}"
            return
        result.output_path = result.artifact_paths.get("output_dataset")


# ─────────────────────────────────────────────
# GRAPH CONSTRUCTION
# ─────────────────────────────────────────────

def build_graph(workflow: IncrementalPreprocessingWorkflow):
    """Builds and compiles the stage graph bound to one workflow instance."""
    builder = StateGraph(WorkflowState)

    # ── Register nodes ──
    builder.add_node("sampling_stage",    workflow.node_sampling_stage)
    builder.add_node("convergence_check", workflow.node_convergence_check)
    builder.add_node("hitl_review",       workflow.node_hitl_review)
    builder.add_node("bulk_confirmation", workflow.node_bulk_confirmation)
    builder.add_node("bulk_apply",        workflow.node_bulk_apply)

    # ── Entry point (phase-aware, so resumed states re-enter mid-graph) ──
    builder.add_conditional_edges(START, route_entry)

    # ── Conditional edges ──
    builder.add_conditional_edges("sampling_stage",    route_after_sampling_stage)
    builder.add_conditional_edges("convergence_check", route_after_convergence_check)
    builder.add_conditional_edges("hitl_review",       route_after_hitl_review)
    builder.add_conditional_edges("bulk_confirmation", route_after_bulk_confirmation)

    # ── Terminal edge ──
    builder.add_edge("bulk_apply", END)

    return builder.compile()


# ─────────────────────────────────────────────
# PUBLIC ENTRY POINT
# ─────────────────────────────────────────────

def run_incremental_preprocessing(
    dataset: pd.DataFrame | list[dict],
    config: WorkflowConfig | None = None,
    answer_port: AnswerPort | None = None,
    progress: Callable[[str], None] | None = None,
    cancel_event: threading.Event | None = None,
) -> WorkflowResult:
    """
    Main entry point for one run.

    Usage:
        result = run_incremental_preprocessing(rows, WorkflowConfig(random_seed=7),
                                               answer_port=recommended_default_port)
    """
    workflow = IncrementalPreprocessingWorkflow(
        dataset, config=config, answer_port=answer_port,
        progress=progress, cancel_event=cancel_event,
    )
    return workflow.run()


def console_answer_port(question: HITLQuestion) -> HITLAnswer:
    """Blocking console prompt; re-asks until the input matches an option."""
    print("\n" + build_prompt(question))
    while True:
        try:
            return parse_answer_text(question, input("> "), answered_by="console")
        except ValueError as e:
            print(f"  {e}")


# ─────────────────────────────────────────────
# CLI RUNNER
# Usage: python main.py data.csv [artifacts_dir] [seed]
# ─────────────────────────────────────────────

if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    if len(sys.argv) < 2:
        print("Usage: python main.py <csv_path> [artifacts_dir] [seed]")
        sys.exit(1)

    csv_path      = sys.argv[1]
    artifacts_dir = sys.argv[2] if len(sys.argv) > 2 else "artifacts"
    seed          = int(sys.argv[3]) if len(sys.argv) > 3 else None

    print("\n" + "=" * 60)
    print("  INCREMENTAL PREPROCESSING")
    print("=" * 60)

    try:
        rows = load_csv_dataset(csv_path)
    except InvalidDatasetError as e:
        print(f"\nInput error: {e}")
        sys.exit(1)

    result = run_incremental_preprocessing(
        rows,
        WorkflowConfig(output_dir=artifacts_dir, random_seed=seed),
        answer_port=console_answer_port,
        progress=print,
    )

    print("\n" + result.summary)
    if result.artifact_paths:
        print("\nArtifacts:")
        for name, path in result.artifact_paths.items():
            print(f"  {name}: {path}")
    sys.exit(0 if result.success else 2)
