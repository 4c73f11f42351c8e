from __future__ import annotations

import asyncio
from typing import Any

import pytest

from plansync.common.time import formatIsoDate
from plansync.domain.exceptions import TransportError
from plansync.domain.models import (
    DepartmentAssociation,
    RootPlanFields,
    ScheduleMilestone,
    TeamMembership,
    normalize_label,
)

CATALOG_ROWS = [
    {"id": 11, "deptId": 1, "sensitiveArea": "Server Room"},
    {"id": 12, "deptId": 1, "sensitiveArea": "Lab A"},
    {"id": 13, "deptId": 1, "sensitiveArea": "Lab B"},
    {"id": 21, "deptId": 2, "sensitiveArea": "Personnel Files"},
    {"id": 31, "deptId": 3, "sensitiveArea": "Vault"},
    {"id": 32, "deptId": 3, "sensitiveArea": "Server Room"},
]

DIRECTORY_ROWS = [
    {"deptId": 1, "name": "IT"},
    {"deptId": 2, "name": "HR"},
    {"deptId": 3, "name": "Finance"},
]

KINDS = ("departments", "criteria", "team", "schedules", "checklist_templates")


class FakePlanClient:
    """
    In-memory удалённая сторона для тестов загрузчика и оркестратора.

    - rows[kind][plan_id] хранит строки в "сыром" формате API;
    - add существующего ключа → TransportError(409), remove отсутствующего → 404;
    - fail(method, key) внедряет ошибку для конкретного вызова;
    - add_gate (asyncio.Event) задерживает все add до set().
    """

    def __init__(self) -> None:
        self.plans: dict[str, dict[str, Any]] = {}
        self.rows: dict[str, dict[str, list[dict[str, Any]]]] = {kind: {} for kind in KINDS}
        self.catalog: list[dict[str, Any]] = [dict(row) for row in CATALOG_ROWS]
        self.directory: list[dict[str, Any]] = [dict(row) for row in DIRECTORY_ROWS]
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[tuple[str, str | None], Exception] = {}
        self.detail_unavailable: set[str] = set()
        self.embed_in_detail = False
        self.add_gate: asyncio.Event | None = None
        self.root_saved = asyncio.Event()
        self._next_id = 100

    # --- helpers for tests ---

    def seed_plan(self, plan_id: str, title: str = "Existing plan", **kinds: list[dict[str, Any]]) -> None:
        self.plans[plan_id] = {
            "auditId": int(plan_id) if plan_id.isdigit() else plan_id,
            "title": title,
            "type": "Internal",
            "scope": "Department",
            "startDate": "2024-01-01T00:00:00Z",
            "endDate": "2024-03-31T00:00:00Z",
            "status": "Draft",
        }
        for kind in KINDS:
            self.rows[kind][plan_id] = [dict(row) for row in kinds.get(kind, [])]

    def fail(self, method: str, key: Any = None, exc: Exception | None = None, status: int = 500) -> None:
        self.failures[(method, None if key is None else str(key))] = exc or TransportError(
            f"injected failure in {method}", status_code=status
        )

    def keys(self, kind: str, plan_id: str) -> list[str]:
        field = {
            "departments": "deptId",
            "criteria": "criteriaId",
            "team": "userId",
            "schedules": "milestoneName",
            "checklist_templates": "templateId",
        }[kind]
        return [str(row[field]) for row in self.rows[kind].get(plan_id, [])]

    def calls_of(self, prefix: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0].startswith(prefix)]

    async def _enter(self, method: str, key: Any = None) -> None:
        self.calls.append((method,) if key is None else (method, str(key)))
        await asyncio.sleep(0)
        if self.add_gate is not None and method.startswith("add_"):
            await self.add_gate.wait()
        for probe in ((method, None if key is None else str(key)), (method, None)):
            if probe in self.failures:
                raise self.failures[probe]

    def _bucket(self, kind: str, plan_id: str) -> list[dict[str, Any]]:
        return self.rows[kind].setdefault(str(plan_id), [])

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _add_row(self, kind: str, plan_id: str, field: str, key: str, row: dict[str, Any]) -> dict[str, Any]:
        bucket = self._bucket(kind, plan_id)
        if any(str(existing[field]) == key for existing in bucket):
            raise TransportError(f"{kind} {key} already linked", status_code=409)
        bucket.append(row)
        return row

    def _remove_row(self, kind: str, plan_id: str, field: str, key: str) -> None:
        bucket = self._bucket(kind, plan_id)
        kept = [row for row in bucket if str(row[field]) != key]
        if len(kept) == len(bucket):
            raise TransportError(f"{kind} {key} not found", status_code=404)
        self.rows[kind][str(plan_id)] = kept

    # --- root ---

    async def get_plan_detail(self, plan_id: str) -> Any:
        await self._enter("get_plan_detail", plan_id)
        if plan_id in self.detail_unavailable or plan_id not in self.plans:
            raise TransportError(f"plan {plan_id} not found", status_code=404)
        detail = dict(self.plans[plan_id])
        if self.embed_in_detail:
            detail["scopeDepartments"] = {"$values": list(self._bucket("departments", plan_id))}
            detail["criteria"] = list(self._bucket("criteria", plan_id))
            detail["auditTeams"] = {"values": list(self._bucket("team", plan_id))}
            detail["schedules"] = list(self._bucket("schedules", plan_id))
        return {"audit": detail}

    async def list_plans(self) -> Any:
        await self._enter("list_plans")
        return {"$values": [dict(plan) for plan in self.plans.values()]}

    async def create_root_plan(self, fields: RootPlanFields) -> Any:
        await self._enter("create_root_plan")
        plan_id = str(self._new_id())
        self.seed_plan(plan_id, title=fields.title)
        self.root_saved.set()
        return {"auditId": int(plan_id)}

    async def update_root_plan(self, plan_id: str, fields: RootPlanFields) -> Any:
        await self._enter("update_root_plan", plan_id)
        if plan_id not in self.plans:
            raise TransportError(f"plan {plan_id} not found", status_code=404)
        self.plans[plan_id]["title"] = fields.title
        self.root_saved.set()
        return None

    # --- departments ---

    async def list_departments(self, plan_id: str) -> Any:
        await self._enter("list_departments", plan_id)
        return list(self._bucket("departments", plan_id))

    async def add_department(self, plan_id: str, assoc: DepartmentAssociation) -> Any:
        await self._enter("add_department", assoc.dept_id)
        row = {
            "auditScopeId": self._new_id(),
            "deptId": assoc.dept_id,
            "sensitiveFlag": assoc.sensitive_flag,
            "departmentSensitiveAreaIds": sorted(assoc.sensitive_area_ids),
            "Areas": sorted(assoc.sensitive_area_labels),
            "notes": assoc.notes,
        }
        return self._add_row("departments", plan_id, "deptId", assoc.dept_id, row)

    async def remove_department(self, plan_id: str, dept_id: str) -> Any:
        await self._enter("remove_department", dept_id)
        self._remove_row("departments", plan_id, "deptId", dept_id)

    # --- criteria ---

    async def list_criteria(self, plan_id: str) -> Any:
        await self._enter("list_criteria", plan_id)
        return list(self._bucket("criteria", plan_id))

    async def add_criterion(self, plan_id: str, criterion_id: str) -> Any:
        await self._enter("add_criterion", criterion_id)
        return self._add_row("criteria", plan_id, "criteriaId", criterion_id, {"criteriaId": criterion_id})

    async def remove_criterion(self, plan_id: str, criterion_id: str) -> Any:
        await self._enter("remove_criterion", criterion_id)
        self._remove_row("criteria", plan_id, "criteriaId", criterion_id)

    # --- team ---

    async def list_team(self, plan_id: str) -> Any:
        await self._enter("list_team", plan_id)
        return list(self._bucket("team", plan_id))

    async def add_team_member(self, plan_id: str, membership: TeamMembership) -> Any:
        await self._enter("add_team_member", membership.user_id)
        row = {"userId": membership.user_id, "roleInTeam": membership.role_in_team, "isLead": membership.is_lead}
        return self._add_row("team", plan_id, "userId", membership.user_id, row)

    async def remove_team_member(self, plan_id: str, user_id: str) -> Any:
        await self._enter("remove_team_member", user_id)
        self._remove_row("team", plan_id, "userId", user_id)

    # --- schedules ---

    async def list_schedules(self, plan_id: str) -> Any:
        await self._enter("list_schedules", plan_id)
        return list(self._bucket("schedules", plan_id))

    async def add_schedule(self, plan_id: str, milestone: ScheduleMilestone) -> Any:
        await self._enter("add_schedule", milestone.milestone_name)
        row = {
            "scheduleId": self._new_id(),
            "milestoneName": milestone.milestone_name,
            "dueDate": formatIsoDate(milestone.due_date),
            "status": milestone.status,
        }
        return self._add_row("schedules", plan_id, "milestoneName", milestone.milestone_name, row)

    async def remove_schedule(self, plan_id: str, milestone_name: str) -> Any:
        await self._enter("remove_schedule", milestone_name)
        bucket = self._bucket("schedules", plan_id)
        kept = [row for row in bucket if normalize_label(row["milestoneName"]) != normalize_label(milestone_name)]
        if len(kept) == len(bucket):
            raise TransportError(f"milestone {milestone_name} not found", status_code=404)
        self.rows["schedules"][str(plan_id)] = kept

    # --- checklist templates ---

    async def list_checklist_templates(self, plan_id: str) -> Any:
        await self._enter("list_checklist_templates", plan_id)
        return list(self._bucket("checklist_templates", plan_id))

    async def add_checklist_template(self, plan_id: str, template_id: str) -> Any:
        await self._enter("add_checklist_template", template_id)
        row = {"auditId": plan_id, "templateId": template_id, "status": "Active"}
        return self._add_row("checklist_templates", plan_id, "templateId", template_id, row)

    async def remove_checklist_template(self, plan_id: str, template_id: str) -> Any:
        await self._enter("remove_checklist_template", template_id)
        self._remove_row("checklist_templates", plan_id, "templateId", template_id)

    # --- reference data ---

    async def get_sensitive_area_catalog(self) -> Any:
        await self._enter("get_sensitive_area_catalog")
        return {"$values": [dict(row) for row in self.catalog]}

    async def list_department_directory(self) -> Any:
        await self._enter("list_department_directory")
        return [dict(row) for row in self.directory]


@pytest.fixture
def fake_client() -> FakePlanClient:
    return FakePlanClient()


@pytest.fixture
def catalog_rows() -> list[dict[str, Any]]:
    return [dict(row) for row in CATALOG_ROWS]


@pytest.fixture
def directory_rows() -> list[dict[str, Any]]:
    return [dict(row) for row in DIRECTORY_ROWS]

