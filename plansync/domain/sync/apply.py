from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable

from plansync.domain.error_codes import ErrorCode
from plansync.domain.exceptions import TransportError
from plansync.domain.sync.diff import SyncPlan


class ItemOutcome:
    APPLIED = "applied"
    ALREADY_SATISFIED = "already_satisfied"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemResult:
    """
    Назначение/ответственность:
        Нормализованный результат одной операции add/remove.
    Инварианты/гарантии:
        - ok=True для applied и already_satisfied;
        - при ok=False заполнен error_code.
    """

    kind: str
    op: str
    key: str
    ok: bool
    outcome: str
    status_code: int | None = None
    error_code: str | None = None
    error_message: str | None = None


AddFn = Callable[[Any], Awaitable[Any]]
RemoveFn = Callable[[Hashable], Awaitable[Any]]


def _is_benign(op: str, exc: TransportError) -> bool:
    # повтор add уже существующей связи или remove уже удалённой
    if op == "add" and exc.status_code == 409:
        return True
    if op == "remove" and exc.status_code == 404:
        return True
    return False


async def _run_one(
    kind: str,
    op: str,
    key: str,
    call: Callable[[], Awaitable[Any]],
    semaphore: asyncio.Semaphore,
) -> ItemResult:
    async with semaphore:
        try:
            await call()
        except TransportError as exc:
            if _is_benign(op, exc):
                return ItemResult(
                    kind=kind,
                    op=op,
                    key=key,
                    ok=True,
                    outcome=ItemOutcome.ALREADY_SATISFIED,
                    status_code=exc.status_code,
                )
            return ItemResult(
                kind=kind,
                op=op,
                key=key,
                ok=False,
                outcome=ItemOutcome.FAILED,
                status_code=exc.status_code,
                error_code=exc.error_code.value,
                error_message=exc.message,
            )
        except Exception as exc:
            return ItemResult(
                kind=kind,
                op=op,
                key=key,
                ok=False,
                outcome=ItemOutcome.FAILED,
                error_code=ErrorCode.UNEXPECTED_ERROR.value,
                error_message=str(exc) or exc.__class__.__name__,
            )
    return ItemResult(kind=kind, op=op, key=key, ok=True, outcome=ItemOutcome.APPLIED)


async def apply_sync_plan(
    plan: SyncPlan[Any],
    *,
    kind: str,
    identity: Callable[[Any], Hashable],
    add: AddFn,
    remove: RemoveFn,
    concurrency: int = 8,
) -> list[ItemResult]:
    """
    Назначение:
        Применение плана сверки одной коллекции.

    Контракт:
        - каждая операция выполняется независимо; ошибка одной не отменяет
          остальные (никакого short-circuit);
        - сначала все remove (конкурентно), затем все add (конкурентно),
          параллелизм ограничен semaphore(concurrency);
        - 409 на add и 404 на remove считаются уже выполненными (ok=True);
        - если remove заменяемого ключа не удался, его add не выполняется
          и возвращается как failed с кодом REPLACE_ABORTED.

    Выходные данные:
        list[ItemResult] в порядке: removes, затем adds (в порядке плана).
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    remove_results = await asyncio.gather(
        *(
            _run_one(kind, "remove", str(key), lambda key=key: remove(key), semaphore)
            for key in plan.to_remove
        )
    )

    replaced = set(plan.replaced)
    failed_removes = {res.key for res in remove_results if not res.ok}

    add_calls: list[Awaitable[ItemResult]] = []
    results_by_slot: list[ItemResult | None] = []
    for item in plan.to_add:
        key = identity(item)
        if key in replaced and str(key) in failed_removes:
            results_by_slot.append(
                ItemResult(
                    kind=kind,
                    op="add",
                    key=str(key),
                    ok=False,
                    outcome=ItemOutcome.FAILED,
                    error_code=ErrorCode.REPLACE_ABORTED.value,
                    error_message="remove of the previous version failed; add skipped",
                )
            )
            continue
        results_by_slot.append(None)
        add_calls.append(_run_one(kind, "add", str(key), lambda item=item: add(item), semaphore))

    add_results = iter(await asyncio.gather(*add_calls))
    ordered_adds = [slot if slot is not None else next(add_results) for slot in results_by_slot]
    return list(remove_results) + ordered_adds


__all__ = ["ItemOutcome", "ItemResult", "apply_sync_plan"]
