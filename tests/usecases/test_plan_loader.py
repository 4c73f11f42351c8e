from __future__ import annotations

import pytest

from plansync.domain.error_codes import ErrorCode
from plansync.domain.exceptions import PlanNotFoundError
from plansync.domain.models import AssociationKind, DiagnosticStage
from plansync.usecases.plan_loader import PlanAggregateLoader


def _seed(client, plan_id="7"):
    client.seed_plan(
        plan_id,
        title="Quarterly IT audit",
        departments=[
            {"auditScopeId": 501, "deptId": 1, "sensitiveFlag": True, "Areas": ["Server Room", "Rooftop"]},
            {"auditScopeId": 502, "DeptId": 3, "departmentSensitiveAreaIds": [31]},
        ],
        criteria=[{"criteriaId": 4}, {"criteriaId": "4"}, {"criteriaId": 5}],
        team=[{"userId": "u1", "roleInTeam": "LeadAuditor"}, {"userId": "u2", "roleInTeam": "AuditeeOwner"}],
        schedules=[{"scheduleId": 1, "milestoneName": "Kickoff Meeting", "dueDate": "2024-01-10T00:00:00Z"}],
        checklist_templates=[{"auditId": plan_id, "templateId": 9}],
    )


@pytest.mark.asyncio
async def test_fast_path_uses_embedded_collections(fake_client):
    _seed(fake_client)
    fake_client.embed_in_detail = True

    result = await PlanAggregateLoader(fake_client).load(7)

    aggregate = result.aggregate
    assert aggregate.plan_id == "7"
    assert aggregate.root.title == "Quarterly IT audit"
    assert result.used_fallback is False
    assert result.complete
    assert result.sources["departments"] == "embedded"
    assert not fake_client.calls_of("list_departments")
    assert fake_client.calls_of("list_checklist_templates")
    assert [c.criterion_id for c in aggregate.criteria] == ["4", "5"]
    assert aggregate.team[0].is_lead is True
    assert aggregate.schedules[0].due_date.isoformat() == "2024-01-10"
    assert [t.template_id for t in aggregate.checklist_templates] == ["9"]


@pytest.mark.asyncio
async def test_departments_are_enriched_from_catalog_and_directory(fake_client):
    _seed(fake_client)

    result = await PlanAggregateLoader(fake_client).load("7")

    it, finance = result.aggregate.scope_departments
    assert it.dept_name == "IT"
    assert it.sensitive_area_ids == frozenset({"11"})
    assert finance.sensitive_flag is True
    assert finance.sensitive_area_labels == frozenset({"Vault"})
    unresolved = [w for w in result.warnings if w.stage == DiagnosticStage.RESOLVE]
    assert len(unresolved) == 1
    assert "Rooftop" in unresolved[0].message


@pytest.mark.asyncio
async def test_missing_collections_are_fetched_concurrently(fake_client):
    _seed(fake_client)

    result = await PlanAggregateLoader(fake_client).load("7")

    assert result.sources["criteria"] == "fetched"
    for method in ("list_departments", "list_criteria", "list_team", "list_schedules"):
        assert fake_client.calls_of(method), method


@pytest.mark.asyncio
async def test_fallback_to_cached_row_refetches_schedules(fake_client):
    _seed(fake_client)
    fake_client.detail_unavailable.add("7")
    cached_row = {
        "auditId": 7,
        "title": "From list",
        "scopeDepartments": [{"deptId": 1}],
        "schedules": [{"milestoneName": "Stale", "dueDate": "2020-01-01"}],
    }

    result = await PlanAggregateLoader(fake_client).load("7", cached_row=cached_row)

    assert result.used_fallback is True
    assert result.aggregate.root.title == "From list"
    assert result.sources["departments"] == "cached"
    assert result.sources["schedules"] == "fetched"
    assert [s.milestone_name for s in result.aggregate.schedules] == ["Kickoff Meeting"]
    assert any(w.stage == DiagnosticStage.LOAD and w.field == "detail" for w in result.warnings)


@pytest.mark.asyncio
async def test_detail_failure_without_cached_row_is_fatal(fake_client):
    fake_client.detail_unavailable.add("7")
    with pytest.raises(PlanNotFoundError) as excinfo:
        await PlanAggregateLoader(fake_client).load("7")
    assert excinfo.value.plan_id == "7"


@pytest.mark.asyncio
async def test_empty_plan_id_is_rejected(fake_client):
    with pytest.raises(PlanNotFoundError):
        await PlanAggregateLoader(fake_client).load("  ")


@pytest.mark.asyncio
async def test_failed_collection_is_isolated(fake_client):
    _seed(fake_client)
    fake_client.fail("list_criteria", "7", status=503)

    result = await PlanAggregateLoader(fake_client).load("7")

    assert result.aggregate.criteria == ()
    assert set(result.kind_errors) == {"criteria"}
    assert result.kind_errors["criteria"].code == ErrorCode.HTTP_ERROR.value
    assert len(result.aggregate.team) == 2
    assert not result.complete


@pytest.mark.asyncio
async def test_reference_failure_is_a_warning(fake_client):
    _seed(fake_client)
    fake_client.fail("get_sensitive_area_catalog")

    result = await PlanAggregateLoader(fake_client).load("7")

    codes = {w.code for w in result.warnings}
    assert ErrorCode.CATALOG_UNAVAILABLE.value in codes
    assert result.aggregate.scope_departments[0].sensitive_area_ids == frozenset()


@pytest.mark.asyncio
async def test_load_kind_translates_labels(fake_client):
    _seed(fake_client)
    loader = PlanAggregateLoader(fake_client)
    reference = await loader.load_reference()

    departments = await loader.load_kind("7", AssociationKind.DEPARTMENTS, reference)

    assert departments.error is None
    assert departments.items[0].sensitive_area_ids == frozenset({"11"})


@pytest.mark.asyncio
async def test_load_reference_skips_unrequested_parts(fake_client):
    reference = await PlanAggregateLoader(fake_client).load_reference(catalog=False, directory=True)
    assert reference.catalog == ()
    assert len(reference.directory) == 3
    assert not fake_client.calls_of("get_sensitive_area_catalog")


@pytest.mark.asyncio
async def test_load_many_collects_failures(fake_client):
    _seed(fake_client, "7")
    _seed(fake_client, "8")

    batch = await PlanAggregateLoader(fake_client).load_many(["7", 8, "7", "9"], concurrency=2)

    assert sorted(batch.loaded) == ["7", "8"]
    assert list(batch.failed) == ["9"]
    assert batch.failed["9"].code == ErrorCode.PLAN_NOT_FOUND.value


@pytest.mark.asyncio
async def test_load_many_uses_summary_rows_for_fallback(fake_client):
    _seed(fake_client, "7")
    fake_client.detail_unavailable.add("7")
    loader = PlanAggregateLoader(fake_client)

    rows = await loader.fetch_summary_rows()
    batch = await loader.load_many(["7"], cached_rows=rows)

    assert batch.loaded["7"].used_fallback is True
    assert batch.failed == {}
