from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from plansync.domain.models import DiagnosticItem
from plansync.domain.sync.apply import ItemResult
from plansync.domain.sync.diff import SyncPlan


class SubmissionOutcome(str, Enum):
    """
    Назначение:
        Три различимых исхода отправки плана.
    """

    SUCCEEDED = "SUCCEEDED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class SubmissionState(str, Enum):
    IDLE = "Idle"
    ROOT_PERSISTING = "RootPersisting"
    ROOT_FAILED = "RootFailed"
    ASSOCIATIONS_SYNCING = "AssociationsSyncing"
    COMPLETED = "Completed"


_TRANSITIONS: dict[SubmissionState, frozenset[SubmissionState]] = {
    SubmissionState.IDLE: frozenset({SubmissionState.ROOT_PERSISTING}),
    SubmissionState.ROOT_PERSISTING: frozenset(
        {SubmissionState.ROOT_FAILED, SubmissionState.ASSOCIATIONS_SYNCING}
    ),
    SubmissionState.ASSOCIATIONS_SYNCING: frozenset({SubmissionState.COMPLETED}),
    SubmissionState.ROOT_FAILED: frozenset(),
    SubmissionState.COMPLETED: frozenset(),
}


class SubmissionStateMachine:
    """
    Назначение:
        Контроль переходов Idle → RootPersisting → {RootFailed | AssociationsSyncing → Completed}.
    """

    def __init__(self) -> None:
        self.state = SubmissionState.IDLE
        self.history: list[SubmissionState] = [SubmissionState.IDLE]

    def advance(self, target: SubmissionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ValueError(f"Invalid submission transition: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state]


@dataclass
class KindSyncResult:
    """
    Назначение:
        Итог синхронизации одного вида ассоциаций.
    Контракт:
        error заполнен, если вид не удалось даже сверить (например, не
        загрузилось текущее состояние); тогда items пуст.
    """

    kind: str
    sync_plan: SyncPlan[Any] | None = None
    items: list[ItemResult] = field(default_factory=list)
    error: DiagnosticItem | None = None

    @property
    def failed_items(self) -> list[ItemResult]:
        return [item for item in self.items if not item.ok]

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed_items


@dataclass
class SubmissionResult:
    """
    Назначение/ответственность:
        Сводный результат submit.
    Инварианты/гарантии:
        - outcome=FAILED только при ошибке корневого шага (root_error задан);
        - outcome=PARTIAL, если корень сохранён, но хоть один вид/элемент упал;
        - failed_items перечисляет ровно упавшие операции.
    """

    outcome: SubmissionOutcome
    state: SubmissionState
    plan_id: str | None
    created: bool
    root_error: DiagnosticItem | None = None
    kinds: dict[str, KindSyncResult] = field(default_factory=dict)
    sensitive_unmatched: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[DiagnosticItem] = field(default_factory=list)

    @property
    def failed_items(self) -> list[ItemResult]:
        failed: list[ItemResult] = []
        for kind_result in self.kinds.values():
            failed.extend(kind_result.failed_items)
        return failed

    @property
    def failed_kinds(self) -> list[str]:
        return [name for name, result in self.kinds.items() if result.error is not None]

    @property
    def succeeded(self) -> bool:
        return self.outcome == SubmissionOutcome.SUCCEEDED

    def op_counts(self) -> dict[str, dict[str, int]]:
        counts: dict[str, dict[str, int]] = {}
        for name, kind_result in self.kinds.items():
            for item in kind_result.items:
                entry = counts.setdefault(f"{name}.{item.op}", {"ok": 0, "failed": 0, "count": 0})
                entry["count"] += 1
                if item.ok:
                    entry["ok"] += 1
                else:
                    entry["failed"] += 1
        return counts


__all__ = [
    "KindSyncResult",
    "SubmissionOutcome",
    "SubmissionResult",
    "SubmissionState",
    "SubmissionStateMachine",
]
