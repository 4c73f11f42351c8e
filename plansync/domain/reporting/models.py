from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from plansync.domain.models import DiagnosticItem, DiagnosticStage


@dataclass
class ReportMeta:
    """Параметры запуска команды; plan_id заполняется командами над одним планом."""

    run_id: str
    command: str
    started_at: str
    plan_id: str | None = None
    finished_at: str | None = None
    duration_ms: int | None = None
    items_limit: int | None = None
    items_truncated: bool = False
    app_version: str | None = None


@dataclass
class ReportSummary:
    """
    Назначение:
        Счётчики отчёта.
    Контракт:
        - items_* считают все элементы, включая не сохранённые из-за items_limit;
        - ops: "<вид>.<add|remove>" → {"ok", "failed", "count"}.
    """

    items_total: int = 0
    items_ok: int = 0
    items_failed: int = 0
    items_with_warnings: int = 0
    errors_total: int = 0
    ops: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class ReportDiagnostic:
    severity: str
    stage: DiagnosticStage
    code: str
    field: str | None
    message: str

    @classmethod
    def of(cls, severity: str, item: DiagnosticItem) -> "ReportDiagnostic":
        return cls(severity=severity, stage=item.stage, code=item.code, field=item.field, message=item.message)


@dataclass(frozen=True)
class ItemRef:
    """Ссылка на объект отчёта: вид ассоциации, ключ и операция."""

    kind: str
    key: str | None = None
    op: str | None = None


@dataclass
class ReportItem:
    status: str
    ref: ItemRef | None = None
    payload: Mapping[str, Any] | None = None
    diagnostics: list[ReportDiagnostic] = field(default_factory=list)


@dataclass
class ReportEnvelope:
    status: str
    meta: ReportMeta
    summary: ReportSummary
    items: list[ReportItem]
    context: dict[str, Any] = field(default_factory=dict)
