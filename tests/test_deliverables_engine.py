"""Unit tests for core.deliverables_engine."""
import json

import pandas as pd

from core.deliverables_engine import (
    DATASET_FILE,
    EXCEPTIONS_FILE,
    RULES_FILE,
    SUMMARY_FILE,
    build_processing_summary,
    write_artifacts,
)
from Schemas.preprocessing_rule import WhitespaceRule
from Schemas.workflow import StageResult, WorkflowPhase, WorkflowResult


def _make_result(**overrides) -> WorkflowResult:
    fields = dict(
        run_id="run-1",
        success=False,
        phase=WorkflowPhase.HALTED,
        halt_reason="ReviewStrategy: overall confidence too low",
        effective_seed=7,
        total_records=1000,
        rules=[WhitespaceRule(
            id="whitespace-1", name="Irregular whitespace in 'name'", description="", columns=["name"],
            is_auto_resolvable=True, discovered_at_stage=1, last_seen_stage=2,
        )],
        stage_results=[StageResult(stage=1, purpose="Initial Exploration", sample_size=100, sample_fraction=0.1)],
    )
    fields.update(overrides)
    return WorkflowResult(**fields)


def test_summary_explains_halt():
    text = build_processing_summary(_make_result())
    assert "## Outcome" in text
    assert "Halted: ReviewStrategy" in text
    assert "Dataset not modified" in text
    assert "| 1 | Initial Exploration | 100 |" in text
    assert "`whitespace-1`" in text


def test_summary_of_completed_run_reports_exceptions():
    result = _make_result(success=True, phase=WorkflowPhase.COMPLETED, halt_reason=None, processed_records=1000)
    text = build_processing_summary(result)
    assert text.count("## Exceptions") == 1
    assert "0 row(s) need manual handling." in text


def test_halted_run_writes_no_dataset(tmp_path):
    paths = write_artifacts(_make_result(), tmp_path / "out")
    assert set(paths) == {"preprocessing_rules", "hitl_decisions", "convergence_report", "processing_summary"}
    assert not (tmp_path / "out" / DATASET_FILE).exists()
    assert not (tmp_path / "out" / EXCEPTIONS_FILE).exists()

    rules = json.loads((tmp_path / "out" / RULES_FILE).read_text(encoding="utf-8"))
    assert rules[0]["id"] == "whitespace-1"
    assert rules[0]["rule_type"] == "WhitespaceNormalization"
    assert (tmp_path / "out" / SUMMARY_FILE).read_text(encoding="utf-8").startswith("# Incremental")


def test_completed_run_writes_dataset(tmp_path):
    processed = pd.DataFrame({"name": ["alice", "bob"]})
    result = _make_result(success=True, phase=WorkflowPhase.COMPLETED, halt_reason=None)
    paths = write_artifacts(result, tmp_path, processed)
    assert paths["output_dataset"] == str(tmp_path / DATASET_FILE)
    written = pd.read_csv(paths["output_dataset"], dtype=str)
    assert list(written["name"]) == ["alice", "bob"]
    assert json.loads((tmp_path / EXCEPTIONS_FILE).read_text(encoding="utf-8")) == []
