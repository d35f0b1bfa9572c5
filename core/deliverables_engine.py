"""
FILE: core/deliverables_engine.py
-----------------------------------
Builds the run narrative and persists the workflow artifacts.
No LangChain or LLM dependencies.

Artifacts (written to the caller's directory):
  preprocessing_rules.json    full rule list with confidence and approval state
  hitl_decisions.json         immutable decision audit log
  convergence_report.json     last convergence verdict
  processing_summary.md       human-readable narrative
  exception_records.json      rows surfaced for manual handling (stage 5 only)
  preprocessed_dataset.csv    bulk-applied output (stage 5 only)
"""

import json
import logging
from pathlib import Path

import pandas as pd

from Schemas.workflow import WorkflowPhase, WorkflowResult

logger = logging.getLogger(__name__)

RULES_FILE       = "preprocessing_rules.json"
DECISIONS_FILE   = "hitl_decisions.json"
CONVERGENCE_FILE = "convergence_report.json"
SUMMARY_FILE     = "processing_summary.md"
EXCEPTIONS_FILE  = "exception_records.json"
DATASET_FILE     = "preprocessed_dataset.csv"


# ─────────────────────────────────────────────
# HELPERS — SUMMARY SECTIONS
# ─────────────────────────────────────────────

def _build_outcome(result: WorkflowResult) -> str:
    if result.success:
        return (
            f"Completed: {result.processed_records} records processed with "
            f"{sum(1 for r in result.rules if r.is_approved)} approved rule(s)."
        )
    if result.phase == WorkflowPhase.HITL_PENDING:
        ids = ", ".join(q.id for q in result.outstanding_questions)
        return f"Waiting on {len(result.outstanding_questions)} decision(s): {ids}. Dataset not modified."
    reason = result.failure_reason or result.halt_reason or "no reason recorded"
    return f"{result.phase.value.replace('_', ' ').capitalize()}: {reason}. Dataset not modified."


def _build_stage_table(result: WorkflowResult) -> list[str]:
    lines = [
        "| Stage | Purpose | Sample | New rules | Avg confidence | HITL | Seconds |",
        "|-------|---------|--------|-----------|----------------|------|---------|",
    ]
    for s in result.stage_results:
        lines.append(
            f"| {s.stage} | {s.purpose} | {s.sample_size} | {s.new_rule_count} | "
            f"{s.average_confidence:.1%} | {'yes' if s.hitl_required else 'no'} | {s.duration_seconds:.2f} |"
        )
    return lines


def _build_rule_lines(result: WorkflowResult) -> list[str]:
    if not result.rules:
        return ["No rules discovered."]
    lines = []
    for rule in result.rules:
        state = rule.status.value
        applied = f" → {rule.transformation}" if rule.transformation else ""
        lines.append(
            f"- **{rule.name}** (`{rule.id}`, {rule.rule_type.value}): confidence "
            f"{rule.confidence:.1%}, {state}{applied}"
        )
    return lines


def build_processing_summary(result: WorkflowResult) -> str:
    """Markdown narrative of one run."""
    lines: list[str] = []
    lines.append("# Incremental Preprocessing Summary")
    lines.append("")
    lines.append(f"**Run:** {result.run_id}  ")
    lines.append(f"**Seed:** {result.effective_seed}  ")
    lines.append(f"**Records:** {result.total_records}")
    lines.append("")
    lines.append("## Outcome")
    lines.append(_build_outcome(result))
    lines.append("")

    if result.stage_results:
        lines.append("## Stages")
        lines.extend(_build_stage_table(result))
        lines.append("")

    lines.append("## Rules")
    lines.extend(_build_rule_lines(result))
    lines.append("")

    if result.convergence_report is not None:
        lines.append("## Convergence")
        lines.append(result.convergence_report.summary)
        lines.append("")

    if result.decisions:
        lines.append("## Decisions")
        for d in result.decisions:
            lines.append(f"- `{d.question.id}` by {d.responder} at {d.decided_at.isoformat()}: {d.outcome}")
        lines.append("")

    if result.application_log:
        lines.append("## Bulk Application")
        for entry in result.application_log:
            note = f" ({entry.note})" if entry.note else ""
            lines.append(f"- `{entry.rule_id}` {entry.action}: {entry.rows_affected} rows{note}")
        lines.append("")

    if result.exception_records or result.phase == WorkflowPhase.COMPLETED:
        lines.append("## Exceptions")
        lines.append(f"{len(result.exception_records)} row(s) need manual handling.")
        lines.append("")

    if result.discovery_issues:
        lines.append(f"Malformed cells seen during sampling: {len(result.discovery_issues)} recorded.")
        lines.append("")

    return "\n".join(lines)


# ─────────────────────────────────────────────
# ARTIFACT WRITING
# ─────────────────────────────────────────────

def _write_json(path: Path, payload) -> None:
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")


def write_artifacts(
    result: WorkflowResult,
    output_dir: str | Path,
    processed: pd.DataFrame | None = None,
) -> dict[str, str]:
    """
    Writes every artifact for the result. The output dataset and exception
    records are written only when stage 5 produced them.

    Returns:
        {artifact name: path}
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    paths: dict[str, str] = {}

    _write_json(out / RULES_FILE, [rule.model_dump(mode="json") for rule in result.rules])
    paths["preprocessing_rules"] = str(out / RULES_FILE)

    _write_json(out / DECISIONS_FILE, [d.model_dump(mode="json") for d in result.decisions])
    paths["hitl_decisions"] = str(out / DECISIONS_FILE)

    report = result.convergence_report.model_dump(mode="json") if result.convergence_report else None
    _write_json(out / CONVERGENCE_FILE, report)
    paths["convergence_report"] = str(out / CONVERGENCE_FILE)

    (out / SUMMARY_FILE).write_text(result.summary or build_processing_summary(result), encoding="utf-8")
    paths["processing_summary"] = str(out / SUMMARY_FILE)

    if processed is not None:
        _write_json(out / EXCEPTIONS_FILE, [e.model_dump(mode="json") for e in result.exception_records])
        paths["exception_records"] = str(out / EXCEPTIONS_FILE)
        processed.to_csv(out / DATASET_FILE, index=False)
        paths["output_dataset"] = str(out / DATASET_FILE)

    logger.info("Wrote %d artifact(s) to %s", len(paths), out)
    return paths
