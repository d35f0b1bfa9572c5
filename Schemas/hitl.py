"""
FILE: Schemas/hitl.py
-----------------------
Human-in-the-loop question / answer / decision contracts.

A question references at most one rule (related_rule_id). A decision is the
immutable pairing of question, answer, responder and timestamp; it is the
audit trail and is never removed.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class HITLQuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    YES_NO          = "yes_no"
    CONFIRMATION    = "confirmation"    # bulk-processing gate, no related rule


class HITLOption(BaseModel):
    key: str                    # "A", "B", ... or "Y" / "N"
    label: str
    action: str | None = None   # machine action applied in stage 5
    description: str = ""
    trade_off: str = ""


class HITLQuestion(BaseModel):
    id: str
    question_type: HITLQuestionType
    title: str
    prompt: str
    related_rule_id: str | None = None
    evidence: dict = Field(default_factory=dict)      # match_count, affected_pct, ...
    options: list[HITLOption] = Field(default_factory=list)
    recommended_option: str | None = None
    recommendation_reason: str = ""
    asked_round: int = 1

    def option(self, key: str) -> HITLOption | None:
        for opt in self.options:
            if opt.key.upper() == key.upper():
                return opt
        return None


class HITLAnswer(BaseModel):
    question_id: str
    selected_option: str | None = None
    boolean_value: bool | None = None
    text_value: str | None = None       # e.g. constant fill value
    answered_by: str | None = None
    notes: str = ""

    @model_validator(mode="after")
    def _has_choice(self) -> "HITLAnswer":
        if self.selected_option is None and self.boolean_value is None:
            raise ValueError("An answer needs either selected_option or boolean_value.")
        return self


class HITLDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: HITLQuestion
    answer: HITLAnswer
    related_rule_id: str | None = None
    responder: str
    decided_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: str                # e.g. "approved", "rejected", "unrecognised option"
    resulting_action: str | None = None
