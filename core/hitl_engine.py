"""
FILE: core/hitl_engine.py
---------------------------
Human-in-the-loop question generation and answer application.
No LangChain or LLM dependencies.

Flow:
  admit_rules()   new rules → auto-approve | defer | queue a question
  drain()         ask pending questions in discovery order through the
                  caller's answer port, one request/response each
  apply_answer()  record the decision, then mutate the one rule the
                  question refers to

An answer port is any callable HITLQuestion -> HITLAnswer: a console
prompt, a network round-trip, or recommended_default_port for unattended
runs. A rule that requires a decision only ever becomes approved here,
after its HITLDecision has been appended to the log.
"""

import logging
from typing import Callable

from constants.hitl import (
    AUTO_RESOLVE_RESPONDER,
    BULK_CONFIRMATION_QUESTION_ID,
    DEFAULT_PORT_RESPONDER,
    DEFAULT_RESPONDER,
    NO_TOKENS,
    YES_TOKENS,
)
from constants.rule_discovery import DEFAULT_CATEGORY_LABEL
from core.exceptions import HITLPortError, UnknownQuestionError, WorkflowCancelledError, WorkflowStateError
from Schemas.hitl import HITLAnswer, HITLDecision, HITLOption, HITLQuestion, HITLQuestionType
from Schemas.preprocessing_rule import (
    CategoryDriftRule,
    ColumnKind,
    MissingValueRule,
    OutlierRule,
    RuleBase,
    RuleStatus,
    RuleType,
    TypeInconsistencyRule,
)
from Utils.hitl_options_registry import AUTO_RESOLUTIONS, get_options, get_recommended_action

logger = logging.getLogger(__name__)

AnswerPort = Callable[[HITLQuestion], HITLAnswer]


# ─────────────────────────────────────────────
# HELPER — EVIDENCE
# ─────────────────────────────────────────────

def _rule_evidence(rule: RuleBase) -> dict:
    evidence = {
        "match_count":         rule.match_count,
        "sample_size":         rule.sample_size,
        "affected_pct":        rule.affected_pct,
        "confidence":          round(rule.confidence, 4),
        "discovered_at_stage": rule.discovered_at_stage,
        "columns":             list(rule.columns),
    }
    if isinstance(rule, MissingValueRule):
        evidence["column_kind"] = rule.column_kind.value
        evidence["missing_tokens"] = rule.missing_tokens
    elif isinstance(rule, OutlierRule):
        evidence["bounds"] = [round(rule.lower_bound, 6), round(rule.upper_bound, 6)]
        evidence["observed_range"] = [rule.observed_min, rule.observed_max]
    elif isinstance(rule, CategoryDriftRule):
        evidence["unseen_categories"] = rule.drifted_categories[:10]
        evidence["known_category_count"] = len(rule.known_categories)
    elif isinstance(rule, TypeInconsistencyRule):
        evidence["numeric_count"] = rule.numeric_count
        evidence["text_count"] = rule.text_count
        evidence["majority_kind"] = rule.majority_kind.value
    return evidence


def _column_kind(rule: RuleBase) -> ColumnKind | None:
    """Kind that filters the options and picks the recommendation."""
    if isinstance(rule, MissingValueRule):
        return rule.column_kind
    if isinstance(rule, TypeInconsistencyRule):
        return rule.majority_kind
    return None


def _question_text(rule: RuleBase, default_label: str) -> tuple[str, str]:
    if isinstance(rule, MissingValueRule):
        return (
            f"Missing values in '{rule.column}'",
            f"{rule.affected_pct:.2f}% of sampled values in '{rule.column}' "
            f"({rule.column_kind.value}) are missing. How should they be handled?",
        )
    if isinstance(rule, OutlierRule):
        return (
            f"Outliers in '{rule.column}'",
            f"{rule.affected_pct:.2f}% of sampled values in '{rule.column}' fall outside "
            f"[{rule.lower_bound:.4g}, {rule.upper_bound:.4g}]. How should they be handled?",
        )
    if isinstance(rule, CategoryDriftRule):
        shown = ", ".join(rule.drifted_categories[:5])
        more = f" (+{len(rule.drifted_categories) - 5} more)" if len(rule.drifted_categories) > 5 else ""
        return (
            f"Unseen categories in '{rule.column}'",
            f"Larger samples of '{rule.column}' contain values absent from earlier samples: "
            f"{shown}{more}. Approve mapping values outside the learned vocabulary to "
            f"'{default_label}'?",
        )
    if isinstance(rule, TypeInconsistencyRule):
        return (
            f"Mixed types in '{rule.column}'",
            f"'{rule.column}' holds {rule.numeric_count} numeric and {rule.text_count} text values "
            f"in the latest sample. What should its target type be?",
        )
    return rule.name, rule.description


class HITLWorkflowService:

    def __init__(
        self,
        responder: str = DEFAULT_RESPONDER,
        default_category_label: str = DEFAULT_CATEGORY_LABEL,
    ):
        self.responder = responder
        self.default_category_label = default_category_label

    # ─────────────────────────────────────────
    # QUESTIONS
    # ─────────────────────────────────────────

    def create_question(self, rule: RuleBase, asked_round: int = 1) -> HITLQuestion:
        column_kind = _column_kind(rule)
        options = [HITLOption(**{k: v for k, v in entry.items() if k != "applies_to"})
                   for entry in get_options(rule.rule_type, column_kind)]

        recommended_key, reason = None, ""
        recommended = get_recommended_action(rule.rule_type, column_kind)
        if recommended is not None:
            action, reason = recommended
            recommended_key = next((o.key for o in options if o.action == action), None)

        question_type = (
            HITLQuestionType.YES_NO
            if rule.rule_type == RuleType.UNKNOWN_CATEGORY_MAPPING
            else HITLQuestionType.MULTIPLE_CHOICE
        )
        title, prompt = _question_text(rule, self.default_category_label)
        suffix = "" if asked_round == 1 else f"-r{asked_round}"
        return HITLQuestion(
            id=f"q-{rule.id}{suffix}",
            question_type=question_type,
            title=title,
            prompt=prompt,
            related_rule_id=rule.id,
            evidence=_rule_evidence(rule),
            options=options,
            recommended_option=recommended_key,
            recommendation_reason=reason,
            asked_round=asked_round,
        )

    def create_bulk_confirmation(
        self,
        rules: list,
        record_count: int,
        overall_confidence: float,
    ) -> HITLQuestion:
        approved = [rule for rule in rules if rule.is_approved]
        return HITLQuestion(
            id=BULK_CONFIRMATION_QUESTION_ID,
            question_type=HITLQuestionType.CONFIRMATION,
            title="Apply rules to the full dataset",
            prompt=(
                f"Apply {len(approved)} approved rule(s) of {len(rules)} discovered to all "
                f"{record_count} records (overall confidence {overall_confidence:.1%})?"
            ),
            evidence={
                "rule_count":          len(rules),
                "approved_rule_count": len(approved),
                "record_count":        record_count,
                "overall_confidence":  overall_confidence,
            },
            options=[
                HITLOption(key="Y", label="Proceed with bulk processing"),
                HITLOption(key="N", label="Stop before modifying the dataset"),
            ],
            recommended_option="Y",
        )

    def admit_rules(
        self,
        new_rules: list,
        pending_questions: list[HITLQuestion],
        deferred_types: list[RuleType] | tuple = (),
    ) -> list[HITLQuestion]:
        """
        Routes newly discovered rules (in discovery order):
          auto-resolvable → approved by the system with its fixed action
          deferred type   → deferred, never asked, never applied
          requires HITL   → question appended to pending_questions
        Returns the questions queued.
        """
        queued = []
        for rule in new_rules:
            if rule.rule_type in deferred_types:
                rule.status = RuleStatus.DEFERRED
                logger.info("Rule %s deferred by policy", rule.id)
            elif rule.is_auto_resolvable and not rule.requires_hitl:
                resolution = AUTO_RESOLUTIONS[rule.rule_type]
                rule.transformation = resolution["label"]
                rule.action = resolution["action"]
                rule.is_approved = True
                rule.status = RuleStatus.AUTO_APPROVED
                rule.approved_by = AUTO_RESOLVE_RESPONDER
                logger.info("Rule %s auto-resolved: %s", rule.id, rule.transformation)
            elif rule.requires_hitl and not rule.is_approved:
                question = self.create_question(rule)
                pending_questions.append(question)
                queued.append(question)
        return queued

    # ─────────────────────────────────────────
    # ANSWERS
    # ─────────────────────────────────────────

    @staticmethod
    def _find_rule(rules: list, rule_id: str | None) -> RuleBase | None:
        if rule_id is None:
            return None
        for rule in rules:
            if rule.id == rule_id:
                return rule
        raise WorkflowStateError(f"Question references unknown rule '{rule_id}'.")

    @staticmethod
    def _boolean(question: HITLQuestion, answer: HITLAnswer) -> bool | None:
        if answer.boolean_value is not None:
            return answer.boolean_value
        key = (answer.selected_option or "").strip().upper()
        if key == "Y":
            return True
        if key == "N":
            return False
        return None

    def _resolve(
        self,
        question: HITLQuestion,
        answer: HITLAnswer,
    ) -> tuple[str, HITLOption | None, bool | None]:
        """Returns (outcome, chosen option, approval flag) without touching any rule."""
        if question.question_type == HITLQuestionType.MULTIPLE_CHOICE:
            if answer.selected_option is None:
                if answer.boolean_value:
                    option = question.option(question.recommended_option or "")
                    return ("approved", option, True) if option else ("unrecognised option", None, None)
                return "rejected", None, False
            option = question.option(answer.selected_option)
            if option is None:
                return f"unrecognised option '{answer.selected_option}'", None, None
            return "approved", option, True

        flag = self._boolean(question, answer)
        if flag is None:
            return f"unrecognised option '{answer.selected_option}'", None, None
        if question.question_type == HITLQuestionType.CONFIRMATION:
            return ("confirmed" if flag else "declined"), None, flag
        option = question.option("Y") if flag else None
        return ("approved" if flag else "rejected"), option, flag

    def apply_answer(
        self,
        question: HITLQuestion,
        answer: HITLAnswer,
        rules: list,
        decisions: list[HITLDecision],
    ) -> HITLDecision:
        """
        Appends the decision to the log, then mutates only the rule named by
        question.related_rule_id. Unrecognised answers are logged and leave
        the rule untouched.
        """
        rule = self._find_rule(rules, question.related_rule_id)
        responder = answer.answered_by or self.responder
        outcome, option, approved = self._resolve(question, answer)

        decision = HITLDecision(
            question=question.model_copy(deep=True),
            answer=answer,
            related_rule_id=question.related_rule_id,
            responder=responder,
            outcome=outcome,
            resulting_action=option.action if option else None,
        )
        decisions.append(decision)
        logger.info("Decision on %s by %s: %s", question.id, responder, outcome)

        if rule is None or approved is None:
            return decision

        if approved:
            rule.transformation = option.label if option else rule.transformation
            rule.action = option.action if option else rule.action
            if rule.action == "fill_constant" and answer.text_value:
                rule.action_params = {"value": answer.text_value}
            elif rule.action == "map_to_default":
                rule.action_params = {"label": self.default_category_label}
            rule.is_approved = True
            rule.status = RuleStatus.APPROVED
            rule.approved_by = responder
        else:
            rule.is_approved = False
            rule.status = RuleStatus.REJECTED
            rule.transformation = "Rejected by reviewer"
            rule.action = None
        return decision

    def answer_question(
        self,
        question_id: str,
        answer: HITLAnswer,
        rules: list,
        pending_questions: list[HITLQuestion],
        decisions: list[HITLDecision],
    ) -> HITLDecision:
        """
        Answers one pending question. The decision is logged before the
        question leaves the pending list; an unrecognised answer re-queues a
        fresh question for the same rule at the back of the queue.

        Raises:
            UnknownQuestionError: no pending question has this id.
        """
        question = next((q for q in pending_questions if q.id == question_id), None)
        if question is None:
            raise UnknownQuestionError(f"No pending question with id '{question_id}'.")

        decision = self.apply_answer(question, answer, rules, decisions)
        pending_questions.remove(question)

        rule = self._find_rule(rules, question.related_rule_id)
        if rule is not None and rule.is_pending_decision:
            pending_questions.append(self.create_question(rule, question.asked_round + 1))
        return decision

    # ─────────────────────────────────────────
    # PORT EXCHANGE
    # ─────────────────────────────────────────

    @staticmethod
    def ask(question: HITLQuestion, port: AnswerPort) -> HITLAnswer:
        """One request/response exchange. Port failures become HITLPortError."""
        try:
            answer = port(question)
        except WorkflowCancelledError:
            raise
        except Exception as e:
            raise HITLPortError(f"Answer port failed on question '{question.id}': {e}") from e
        if not isinstance(answer, HITLAnswer):
            raise HITLPortError(
                f"Answer port returned {type(answer).__name__} for question '{question.id}', expected HITLAnswer."
            )
        if answer.question_id != question.id:
            raise HITLPortError(
                f"Answer for '{answer.question_id}' returned while '{question.id}' was asked."
            )
        return answer

    def drain(
        self,
        pending_questions: list[HITLQuestion],
        rules: list,
        decisions: list[HITLDecision],
        port: AnswerPort,
        cancel_check: Callable[[], None] | None = None,
        progress: Callable[[str], None] | None = None,
    ) -> int:
        """
        Asks every question pending at call time, in queue order. Questions
        re-queued during the drain wait for the next one. Cancellation is
        checked before each exchange and again once its decision is
        recorded, so a completed exchange is never lost. Returns the number
        answered.
        """
        answered = 0
        for question in list(pending_questions):
            if cancel_check:
                cancel_check()
            if progress:
                progress(f"HITL: {question.title} [{question.id}]")
            answer = self.ask(question, port)
            self.answer_question(question.id, answer, rules, pending_questions, decisions)
            answered += 1
            if cancel_check:
                cancel_check()
        return answered

    def record_confirmation(
        self,
        question: HITLQuestion,
        answer: HITLAnswer,
        decisions: list[HITLDecision],
    ) -> bool:
        decision = self.apply_answer(question, answer, [], decisions)
        return decision.outcome == "confirmed"


# ─────────────────────────────────────────────
# PROMPT RENDERING / PARSING
# ─────────────────────────────────────────────

def build_prompt(question: HITLQuestion) -> str:
    """Plain-text rendering of a question for a console or chat transport."""
    lines = [f"=== {question.title} ===", question.prompt, ""]
    if question.evidence:
        lines.append("Evidence:")
        for key, value in question.evidence.items():
            lines.append(f"  {key}: {value}")
        lines.append("")
    if question.options:
        lines.append("Options:")
        for i, option in enumerate(question.options, 1):
            marker = "  (recommended)" if option.key == question.recommended_option else ""
            lines.append(f"  {i}. [{option.key}] {option.label}{marker}")
            if option.description:
                lines.append(f"       {option.description}")
            if option.trade_off:
                lines.append(f"       Trade-off: {option.trade_off}")
    if question.recommendation_reason:
        lines.append(f"Recommended because: {question.recommendation_reason}")
    if question.question_type == HITLQuestionType.MULTIPLE_CHOICE:
        lines.append("Enter an option letter or number (blank = recommended):")
    else:
        lines.append("Enter y/n (blank = recommended):")
    return "\n".join(lines)


def parse_answer_text(question: HITLQuestion, text: str, answered_by: str | None = None) -> HITLAnswer:
    """
    Converts free text (letter, 1-based number, y/n, or blank for the
    recommended option) into an HITLAnswer.

    Raises:
        ValueError: the text matches no option.
    """
    response = str(text).strip()
    if not response:
        if question.question_type == HITLQuestionType.MULTIPLE_CHOICE:
            return HITLAnswer(question_id=question.id, selected_option=question.recommended_option,
                              answered_by=answered_by)
        return HITLAnswer(question_id=question.id, boolean_value=question.recommended_option != "N",
                          answered_by=answered_by)

    if question.question_type != HITLQuestionType.MULTIPLE_CHOICE:
        lowered = response.lower()
        if lowered in YES_TOKENS:
            return HITLAnswer(question_id=question.id, boolean_value=True, answered_by=answered_by)
        if lowered in NO_TOKENS:
            return HITLAnswer(question_id=question.id, boolean_value=False, answered_by=answered_by)
        raise ValueError(f"Expected yes or no, got '{response}'.")

    try:
        idx = int(response) - 1
        if 0 <= idx < len(question.options):
            return HITLAnswer(question_id=question.id, selected_option=question.options[idx].key,
                              answered_by=answered_by)
    except ValueError:
        option = question.option(response)
        if option is not None:
            return HITLAnswer(question_id=question.id, selected_option=option.key, answered_by=answered_by)
    raise ValueError(f"'{response}' matches no option of question '{question.id}'.")


def recommended_default_port(question: HITLQuestion) -> HITLAnswer:
    """Unattended answer port: always takes the recommended option."""
    if question.question_type == HITLQuestionType.MULTIPLE_CHOICE and question.recommended_option:
        return HITLAnswer(question_id=question.id, selected_option=question.recommended_option,
                          answered_by=DEFAULT_PORT_RESPONDER)
    return HITLAnswer(question_id=question.id, boolean_value=question.recommended_option != "N",
                      answered_by=DEFAULT_PORT_RESPONDER)
