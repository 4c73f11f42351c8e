from __future__ import annotations

import asyncio

import pytest

from plansync.domain.error_codes import ErrorCode
from plansync.domain.exceptions import TransportError
from plansync.domain.models import CriterionAssociation, criterion_key
from plansync.domain.sync.apply import ItemOutcome, apply_sync_plan
from plansync.domain.sync.diff import SyncPlan, reconcile


def _criteria(*ids):
    return tuple(CriterionAssociation(i) for i in ids)


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_siblings():
    plan = reconcile(_criteria("c1", "c2", "c3", "c4", "c5"), (), criterion_key)
    dispatched = []

    async def add(item):
        dispatched.append(item.criterion_id)
        if item.criterion_id == "c3":
            raise TransportError("boom", status_code=500)

    async def remove(key):
        raise AssertionError("no removes expected")

    results = await apply_sync_plan(plan, kind="criteria", identity=criterion_key, add=add, remove=remove)

    assert sorted(dispatched) == ["c1", "c2", "c3", "c4", "c5"]
    assert [r.key for r in results] == ["c1", "c2", "c3", "c4", "c5"]
    failed = [r for r in results if not r.ok]
    assert len(failed) == 1
    assert failed[0].key == "c3"
    assert failed[0].error_code == ErrorCode.HTTP_ERROR.value
    assert sum(1 for r in results if r.ok) == 4


@pytest.mark.asyncio
async def test_conflict_on_add_and_missing_on_remove_are_already_satisfied():
    plan = SyncPlan(to_add=_criteria("c1"), to_remove=("c9",))

    async def add(item):
        raise TransportError("exists", status_code=409)

    async def remove(key):
        raise TransportError("gone", status_code=404)

    results = await apply_sync_plan(plan, kind="criteria", identity=criterion_key, add=add, remove=remove)
    assert all(r.ok for r in results)
    assert {r.outcome for r in results} == {ItemOutcome.ALREADY_SATISFIED}


@pytest.mark.asyncio
async def test_unexpected_exception_is_captured():
    plan = SyncPlan(to_add=_criteria("c1"))

    async def add(item):
        raise RuntimeError("kaboom")

    async def remove(key):
        return None

    [result] = await apply_sync_plan(plan, kind="criteria", identity=criterion_key, add=add, remove=remove)
    assert result.ok is False
    assert result.error_code == ErrorCode.UNEXPECTED_ERROR.value
    assert result.error_message == "kaboom"


@pytest.mark.asyncio
async def test_removes_complete_before_adds_start():
    plan = SyncPlan(to_add=_criteria("c1", "c2"), to_remove=("c8", "c9"))
    events = []

    async def add(item):
        events.append(("add", item.criterion_id))

    async def remove(key):
        await asyncio.sleep(0)
        events.append(("remove", key))

    await apply_sync_plan(plan, kind="criteria", identity=criterion_key, add=add, remove=remove)
    ops = [op for op, _ in events]
    assert ops == ["remove", "remove", "add", "add"]


@pytest.mark.asyncio
async def test_failed_remove_of_replaced_key_aborts_its_add():
    plan = SyncPlan(to_add=_criteria("c1", "c2"), to_remove=("c1",), replaced=("c1",))
    added = []

    async def add(item):
        added.append(item.criterion_id)

    async def remove(key):
        raise TransportError("locked", status_code=500)

    results = await apply_sync_plan(plan, kind="criteria", identity=criterion_key, add=add, remove=remove)

    assert added == ["c2"]
    by_op = {(r.op, r.key): r for r in results}
    assert by_op[("remove", "c1")].ok is False
    assert by_op[("add", "c1")].error_code == ErrorCode.REPLACE_ABORTED.value
    assert by_op[("add", "c2")].ok is True


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    plan = reconcile(_criteria(*(f"c{i}" for i in range(10))), (), criterion_key)
    active = 0
    peak = 0

    async def add(item):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0)
        active -= 1

    async def remove(key):
        return None

    results = await apply_sync_plan(plan, kind="criteria", identity=criterion_key, add=add, remove=remove, concurrency=3)
    assert len(results) == 10
    assert peak <= 3


@pytest.mark.asyncio
async def test_empty_plan_dispatches_nothing():
    async def fail(_):
        raise AssertionError("unexpected call")

    assert await apply_sync_plan(SyncPlan(), kind="criteria", identity=criterion_key, add=fail, remove=fail) == []
