from __future__ import annotations

from dataclasses import asdict, fields
from typing import Any, Iterable, Mapping

from plansync.common.time import getNowIso
from plansync.domain.models import DiagnosticItem
from plansync.domain.reporting.models import (
    ItemRef,
    ReportDiagnostic,
    ReportEnvelope,
    ReportItem,
    ReportMeta,
    ReportSummary,
)

STATUS_SUCCESS = "SUCCESS"
STATUS_PARTIAL = "PARTIAL"
STATUS_FAILED = "FAILED"

_META_FIELDS = frozenset(f.name for f in fields(ReportMeta))


class ReportCollector:
    """
    Назначение/ответственность:
        Отчёт одной команды CLI: элементы по планам и операциям сверки,
        счётчики операций по видам ассоциаций, контекст запуска.
    Контракт:
        Если статус не задан через set_status(), он выводится при finish():
        нет ошибок → SUCCESS; ошибки при наличии успешных элементов → PARTIAL;
        иначе FAILED.
    """

    def __init__(self, run_id: str, command: str, started_at: str | None = None) -> None:
        self.meta = ReportMeta(run_id=run_id, command=command, started_at=started_at or getNowIso())
        self.summary = ReportSummary()
        self.items: list[ReportItem] = []
        self.context: dict[str, Any] = {}
        self.status: str | None = None

    def set_meta(self, **values: Any) -> None:
        """None не затирает уже заданное значение."""
        for name, value in values.items():
            if name not in _META_FIELDS:
                raise TypeError(f"Unknown report meta field: {name}")
            if value is not None:
                setattr(self.meta, name, value)

    def set_context(self, name: str, value: dict[str, Any]) -> None:
        self.context[name] = value

    def set_status(self, status: str) -> None:
        self.status = status

    def add_op(self, name: str, *, ok: int = 0, failed: int = 0, count: int = 0) -> None:
        entry = self.summary.ops.setdefault(name, {"ok": 0, "failed": 0, "count": 0})
        entry["ok"] += ok
        entry["failed"] += failed
        entry["count"] += count

    def add_item(
        self,
        *,
        status: str,
        ref: ItemRef | None = None,
        payload: Mapping[str, Any] | None = None,
        errors: Iterable[DiagnosticItem] = (),
        warnings: Iterable[DiagnosticItem] = (),
    ) -> None:
        diagnostics = [ReportDiagnostic.of("error", e) for e in errors]
        error_count = len(diagnostics)
        diagnostics.extend(ReportDiagnostic.of("warning", w) for w in warnings)

        summary = self.summary
        summary.items_total += 1
        summary.items_ok += status == "OK"
        summary.items_failed += status == "FAILED"
        summary.items_with_warnings += len(diagnostics) > error_count
        summary.errors_total += error_count

        limit = self.meta.items_limit
        if limit is not None and len(self.items) >= limit:
            self.meta.items_truncated = True
            return
        self.items.append(ReportItem(status=status, ref=ref, payload=payload, diagnostics=diagnostics))

    def finish(self, finished_at: str | None = None, duration_ms: int | None = None) -> None:
        self.meta.finished_at = finished_at or getNowIso()
        self.meta.duration_ms = duration_ms
        if self.status is None:
            self.status = self._derive_status()

    def build(self) -> ReportEnvelope:
        return ReportEnvelope(
            status=self.status or self._derive_status(),
            meta=self.meta,
            summary=self.summary,
            items=self.items,
            context=self.context,
        )

    def _derive_status(self) -> str:
        if self.summary.errors_total == 0:
            return STATUS_SUCCESS
        return STATUS_PARTIAL if self.summary.items_ok else STATUS_FAILED


def asdict_report(envelope: ReportEnvelope) -> dict[str, Any]:
    """JSON-совместимый dict отчёта; этапы диагностик разворачиваются в строки."""

    def item_dict(item: ReportItem) -> dict[str, Any]:
        return {
            "status": item.status,
            "ref": asdict(item.ref) if item.ref else None,
            "payload": item.payload,
            "diagnostics": [{**asdict(d), "stage": d.stage.value} for d in item.diagnostics],
        }

    return {
        "status": envelope.status,
        "meta": asdict(envelope.meta),
        "summary": asdict(envelope.summary),
        "items": [item_dict(item) for item in envelope.items],
        "context": envelope.context,
    }
