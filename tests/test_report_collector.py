from __future__ import annotations

import json

import pytest

from plansync.domain.models import DiagnosticItem, DiagnosticStage
from plansync.domain.reporting.collector import ReportCollector
from plansync.domain.reporting.models import ItemRef
from plansync.infra.artifacts.report_writer import createEmptyReport, finalizeReport, writeReportJson


def _error(code="HTTP_ERROR"):
    return DiagnosticItem(stage=DiagnosticStage.APPLY, code=code, field="criteria", message="boom")


def test_status_is_derived_from_counters():
    report = ReportCollector(run_id="r1", command="plan submit")
    report.add_item(status="OK", ref=ItemRef(kind="criteria", key="c1", op="add"))
    report.finish()
    assert report.status == "SUCCESS"

    report = ReportCollector(run_id="r1", command="plan submit")
    report.add_item(status="OK")
    report.add_item(status="FAILED", errors=[_error()])
    report.finish()
    assert report.status == "PARTIAL"

    report = ReportCollector(run_id="r1", command="plan submit")
    report.add_item(status="FAILED", errors=[_error()])
    report.finish()
    assert report.status == "FAILED"


def test_explicit_status_wins():
    report = ReportCollector(run_id="r1", command="plan show")
    report.add_item(status="FAILED", errors=[_error()])
    report.set_status("SUCCESS")
    report.finish()
    assert report.build().status == "SUCCESS"


def test_counters_and_ops():
    report = ReportCollector(run_id="r1", command="plan submit")
    warning = DiagnosticItem(stage=DiagnosticStage.RESOLVE, code="RESOLUTION_UNMATCHED", field="departments.1", message="x")
    report.add_item(status="FAILED", errors=[_error()], warnings=[warning])
    report.add_item(status="WARNING", warnings=[warning])
    report.add_op("criteria.add", ok=2, failed=1, count=3)
    report.add_op("criteria.add", ok=1, count=1)

    summary = report.summary
    assert summary.items_total == 2
    assert summary.items_failed == 1
    assert summary.items_ok == 0
    assert summary.items_with_warnings == 2
    assert summary.errors_total == 1
    assert summary.ops["criteria.add"] == {"ok": 3, "failed": 1, "count": 4}
    assert [d.severity for d in report.items[0].diagnostics] == ["error", "warning"]


def test_set_meta_keeps_values_and_rejects_unknown_fields():
    report = ReportCollector(run_id="r1", command="plan show")
    report.set_meta(plan_id="7")
    report.set_meta(plan_id=None, items_limit=5)
    assert report.meta.plan_id == "7"
    assert report.meta.items_limit == 5

    with pytest.raises(TypeError):
        report.set_meta(rows_limit=5)


def test_items_beyond_limit_are_counted_but_not_stored():
    report = ReportCollector(run_id="r1", command="plan load-many")
    report.set_meta(items_limit=2)
    for _ in range(3):
        report.add_item(status="OK")

    assert len(report.items) == 2
    assert report.summary.items_total == 3
    assert report.meta.items_truncated is True


def test_write_report_json(tmp_path):
    report = createEmptyReport("r1", "plan submit", ["env"])
    report.set_meta(plan_id="7", app_version="0.1.0")
    report.add_item(status="FAILED", ref=ItemRef(kind="criteria", key="c2", op="add"), errors=[_error()])
    finalizeReport(report, durationMs=12, logFile="logs/x.log", reportDir=str(tmp_path))

    path = writeReportJson(report, str(tmp_path / "reports"), "report_plan-submit_r1")

    data = json.loads(open(path, encoding="utf-8").read())
    assert path.endswith("report_plan-submit_r1.json")
    assert data["status"] == "FAILED"
    assert data["meta"]["plan_id"] == "7"
    assert data["meta"]["duration_ms"] == 12
    assert data["context"]["config"] == {"sources": ["env"]}
    assert data["items"][0]["ref"] == {"kind": "criteria", "key": "c2", "op": "add"}
    assert data["items"][0]["diagnostics"][0]["stage"] == "APPLY"
    assert data["items"][0]["diagnostics"][0]["severity"] == "error"
