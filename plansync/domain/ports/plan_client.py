from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from plansync.domain.models import (
    DepartmentAssociation,
    RootPlanFields,
    ScheduleMilestone,
    TeamMembership,
)


@runtime_checkable
class PlanResourceClientProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт удалённого API плана аудита: list/add/remove для каждого вида
        ассоциаций и get/create/update для корня плана.
    Контракт:
        - list_*/get_* возвращают сырой payload (нормализация выполняется в ядре);
        - add_*/remove_*/create/update бросают TransportError при неудаче;
        - create_root_plan возвращает сырой ответ, из которого ядро достаёт id.
    Ограничения:
        Ядро не знает о HTTP; ретраи живут в реализации.
    """

    async def get_plan_detail(self, plan_id: str) -> Any: ...
    async def list_plans(self) -> Any: ...
    async def create_root_plan(self, fields: RootPlanFields) -> Any: ...
    async def update_root_plan(self, plan_id: str, fields: RootPlanFields) -> Any: ...

    async def list_departments(self, plan_id: str) -> Any: ...
    async def add_department(self, plan_id: str, assoc: DepartmentAssociation) -> Any: ...
    async def remove_department(self, plan_id: str, dept_id: str) -> Any: ...

    async def list_criteria(self, plan_id: str) -> Any: ...
    async def add_criterion(self, plan_id: str, criterion_id: str) -> Any: ...
    async def remove_criterion(self, plan_id: str, criterion_id: str) -> Any: ...

    async def list_team(self, plan_id: str) -> Any: ...
    async def add_team_member(self, plan_id: str, membership: TeamMembership) -> Any: ...
    async def remove_team_member(self, plan_id: str, user_id: str) -> Any: ...

    async def list_schedules(self, plan_id: str) -> Any: ...
    async def add_schedule(self, plan_id: str, milestone: ScheduleMilestone) -> Any: ...
    async def remove_schedule(self, plan_id: str, milestone_name: str) -> Any: ...

    async def list_checklist_templates(self, plan_id: str) -> Any: ...
    async def add_checklist_template(self, plan_id: str, template_id: str) -> Any: ...
    async def remove_checklist_template(self, plan_id: str, template_id: str) -> Any: ...

    async def get_sensitive_area_catalog(self) -> Any: ...
    async def list_department_directory(self) -> Any: ...


__all__ = ["PlanResourceClientProtocol"]
