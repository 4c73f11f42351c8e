from __future__ import annotations

from typing import Any
from urllib.parse import quote

from plansync.common.time import formatIsoDate
from plansync.domain.models import (
    DepartmentAssociation,
    RootPlanFields,
    ScheduleMilestone,
    TeamMembership,
    canonical_id,
    normalize_label,
)
from plansync.domain.normalize.records import SCOPE_ID_FIELDS, parse_department, parse_schedule
from plansync.domain.normalize.response import ABSENT, resolve_field, unwrap
from plansync.infra.http.audit_client import ApiError, AuditApiClient


def _seg(value: Any) -> str:
    return quote(str(value).strip(), safe="")


def _wire_id(value: Any) -> Any:
    # числовые идентификаторы API ждёт числами
    text = canonical_id(value)
    if text is not None and text.isdigit():
        return int(text)
    return text


def root_payload(fields: RootPlanFields) -> dict[str, Any]:
    """
    Назначение:
        Тело create/update корня плана.
    Контракт:
        templateId передаётся только при явно заданном основном шаблоне;
        пустые даты не передаются.
    """
    payload: dict[str, Any] = {
        "title": fields.title or "Untitled Plan",
        "type": fields.audit_type or "Internal",
        "scope": fields.scope,
        "status": fields.status,
        "isPublished": fields.is_published,
        "objective": fields.objective or "",
    }
    if fields.start_date is not None:
        payload["startDate"] = formatIsoDate(fields.start_date)
    if fields.end_date is not None:
        payload["endDate"] = formatIsoDate(fields.end_date)
    if fields.primary_template_id:
        payload["templateId"] = _wire_id(fields.primary_template_id)
    return payload


class AuditPlanGateway:
    """
    Назначение/ответственность:
        Реализация PlanResourceClientProtocol поверх REST API аудита.
    Контракт:
        - list/get возвращают сырой JSON, нормализация — забота ядра;
        - ошибки транспорта пробрасываются как ApiError (TransportError).
    """

    def __init__(self, client: AuditApiClient):
        self.client = client

    async def get_plan_detail(self, plan_id: str) -> Any:
        return await self.client.getJson(f"/AuditPlan/{_seg(plan_id)}")

    async def list_plans(self) -> Any:
        return await self.client.getJson("/Audits")

    async def create_root_plan(self, fields: RootPlanFields) -> Any:
        _, body = await self.client.requestJson("POST", "/Audits", jsonBody=root_payload(fields))
        return body

    async def update_root_plan(self, plan_id: str, fields: RootPlanFields) -> Any:
        _, body = await self.client.requestJson("PUT", f"/Audits/{_seg(plan_id)}", jsonBody=root_payload(fields))
        return body

    async def list_departments(self, plan_id: str) -> Any:
        return await self.client.getJson(f"/AuditScopeDepartment/audit/{_seg(plan_id)}")

    async def add_department(self, plan_id: str, assoc: DepartmentAssociation) -> Any:
        """
        Назначение:
            Добавляет подразделение в область аудита; для чувствительного
            подразделения вторым запросом ставит флаг и id зон на строку области.
        """
        _, body = await self.client.requestJson(
            "POST",
            "/AuditScopeDepartment",
            jsonBody={"auditId": _wire_id(plan_id), "deptId": _wire_id(assoc.dept_id)},
        )
        if not assoc.sensitive_flag:
            return body

        scope_id = await self._scope_id(plan_id, assoc.dept_id, body)
        _, flag_body = await self.client.requestJson(
            "POST",
            f"/AuditScopeDepartment/{_seg(scope_id)}/sensitive-flag",
            jsonBody={
                "sensitiveFlag": True,
                "departmentSensitiveAreaIds": [_wire_id(a) for a in sorted(assoc.sensitive_area_ids)],
                "areas": sorted(assoc.sensitive_area_labels),
                "notes": assoc.notes or "",
            },
        )
        return flag_body

    async def remove_department(self, plan_id: str, dept_id: str) -> Any:
        _, body = await self.client.requestJson("DELETE", f"/AuditScopeDepartment/{_seg(plan_id)}/{_seg(dept_id)}")
        return body

    async def list_criteria(self, plan_id: str) -> Any:
        return await self.client.getJson(f"/AuditCriteriaMap/audit/{_seg(plan_id)}")

    async def add_criterion(self, plan_id: str, criterion_id: str) -> Any:
        _, body = await self.client.requestJson(
            "POST",
            "/AuditCriteriaMap",
            jsonBody={"auditId": _wire_id(plan_id), "criteriaId": _wire_id(criterion_id)},
        )
        return body

    async def remove_criterion(self, plan_id: str, criterion_id: str) -> Any:
        _, body = await self.client.requestJson("DELETE", f"/AuditCriteriaMap/{_seg(plan_id)}/{_seg(criterion_id)}")
        return body

    async def list_team(self, plan_id: str) -> Any:
        return await self.client.getJson(f"/AuditTeam/audit/{_seg(plan_id)}")

    async def add_team_member(self, plan_id: str, membership: TeamMembership) -> Any:
        _, body = await self.client.requestJson(
            "POST",
            "/AuditTeam",
            jsonBody={
                "auditId": _wire_id(plan_id),
                "userId": _wire_id(membership.user_id),
                "roleInTeam": membership.role_in_team,
                "isLead": membership.is_lead,
            },
        )
        return body

    async def remove_team_member(self, plan_id: str, user_id: str) -> Any:
        _, body = await self.client.requestJson("DELETE", f"/AuditTeam/{_seg(plan_id)}/{_seg(user_id)}")
        return body

    async def list_schedules(self, plan_id: str) -> Any:
        return await self.client.getJson(f"/AuditSchedule/audit/{_seg(plan_id)}")

    async def add_schedule(self, plan_id: str, milestone: ScheduleMilestone) -> Any:
        _, body = await self.client.requestJson(
            "POST",
            "/AuditSchedule",
            jsonBody={
                "auditId": _wire_id(plan_id),
                "milestoneName": milestone.milestone_name,
                "dueDate": formatIsoDate(milestone.due_date),
                "status": milestone.status,
                "notes": milestone.notes or "",
            },
        )
        return body

    async def remove_schedule(self, plan_id: str, milestone_name: str) -> Any:
        """
        Назначение:
            Удаляет все записи расписания с данным именем вехи.
        Ошибки:
            ApiError(404), если вех с таким именем нет (ядро считает это уже выполненным).
        """
        wanted = normalize_label(milestone_name)
        rows = [parse_schedule(row) for row in unwrap(await self.list_schedules(plan_id))]
        schedule_ids = [
            row.schedule_id for row in rows if row is not None and row.schedule_id and normalize_label(row.milestone_name) == wanted
        ]
        if not schedule_ids:
            raise ApiError(f"Milestone '{milestone_name}' not found", status_code=404)
        for schedule_id in schedule_ids:
            await self.client.requestJson("DELETE", f"/AuditSchedule/{_seg(schedule_id)}")
        return {"deleted": schedule_ids}

    async def list_checklist_templates(self, plan_id: str) -> Any:
        # фильтрация по плану выполняется на клиенте: эндпоинт отдаёт все связи
        wanted = str(plan_id).strip().lower()
        matched = []
        for row in unwrap(await self.client.getJson("/AuditChecklistTemplateMaps")):
            if not isinstance(row, dict):
                continue
            audit_id = resolve_field(row, ("auditId", "AuditId"))
            if audit_id is not ABSENT and str(audit_id).strip().lower() == wanted:
                matched.append(row)
        return matched

    async def add_checklist_template(self, plan_id: str, template_id: str) -> Any:
        _, body = await self.client.requestJson(
            "POST",
            "/AuditChecklistTemplateMaps",
            jsonBody={"auditId": _wire_id(plan_id), "templateId": _wire_id(template_id), "status": "Active"},
        )
        return body

    async def remove_checklist_template(self, plan_id: str, template_id: str) -> Any:
        _, body = await self.client.requestJson(
            "DELETE", f"/AuditChecklistTemplateMaps/{_seg(plan_id)}/{_seg(template_id)}"
        )
        return body

    async def get_sensitive_area_catalog(self) -> Any:
        return await self.client.getJson("/DepartmentSensitiveArea")

    async def list_department_directory(self) -> Any:
        return await self.client.getJson("/admin/AdminDepartments")

    async def _scope_id(self, plan_id: str, dept_id: str, created_body: Any) -> str:
        records = unwrap(created_body)
        if records:
            scope_id = canonical_id(resolve_field(records[0], SCOPE_ID_FIELDS))
            if scope_id:
                return scope_id
        # ответ create не всегда несёт id строки области
        for row in unwrap(await self.list_departments(plan_id)):
            dept = parse_department(row)
            if dept is not None and dept.dept_id == dept_id and dept.scope_id:
                return dept.scope_id
        raise ApiError(f"Scope row for department {dept_id} not found", code="API_ERROR")


__all__ = ["AuditPlanGateway", "root_payload"]
