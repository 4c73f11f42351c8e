from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable

from plansync.domain.models import (
    IDENTITY_BY_KIND,
    AssociationKind,
    DepartmentAssociation,
    ScheduleMilestone,
    TeamMembership,
)
from plansync.domain.normalize.records import (
    parse_criterion,
    parse_department,
    parse_schedule,
    parse_team_member,
    parse_template,
)
from plansync.domain.ports.plan_client import PlanResourceClientProtocol


@dataclass(frozen=True)
class AssociationSpec:
    """
    Назначение/ответственность:
        Описание одного вида ассоциаций для загрузчика и оркестратора:
        идентичность, сравниваемые атрибуты, парсер записи и адаптеры к порту.
    Инварианты:
        attributes=None означает сравнение только по идентичности.
    """

    kind: AssociationKind
    embedded_keys: tuple[str, ...]
    identity: Callable[[Any], Hashable]
    attributes: Callable[[Any], Any] | None
    parse: Callable[[Any], Any]
    list_items: Callable[[PlanResourceClientProtocol, str], Awaitable[Any]]
    add_item: Callable[[PlanResourceClientProtocol, str, Any], Awaitable[Any]]
    remove_item: Callable[[PlanResourceClientProtocol, str, Any], Awaitable[Any]]
    remove_arg: Callable[[Any], str]


def _department_attributes(item: DepartmentAssociation) -> tuple[bool, frozenset[str]]:
    return item.sensitive_flag, item.sensitive_area_ids


def _team_attributes(item: TeamMembership) -> tuple[str, bool]:
    return item.role_in_team.casefold(), item.is_lead


def _schedule_attributes(item: ScheduleMilestone) -> Any:
    return item.due_date


_DEPARTMENTS = AssociationSpec(
    kind=AssociationKind.DEPARTMENTS,
    embedded_keys=("scopeDepartments", "ScopeDepartments", "departments"),
    identity=IDENTITY_BY_KIND[AssociationKind.DEPARTMENTS],
    attributes=_department_attributes,
    parse=parse_department,
    list_items=lambda client, plan_id: client.list_departments(plan_id),
    add_item=lambda client, plan_id, item: client.add_department(plan_id, item),
    remove_item=lambda client, plan_id, arg: client.remove_department(plan_id, arg),
    remove_arg=lambda item: item.dept_id,
)

_CRITERIA = AssociationSpec(
    kind=AssociationKind.CRITERIA,
    embedded_keys=("criteria", "Criteria", "auditCriteria"),
    identity=IDENTITY_BY_KIND[AssociationKind.CRITERIA],
    attributes=None,
    parse=parse_criterion,
    list_items=lambda client, plan_id: client.list_criteria(plan_id),
    add_item=lambda client, plan_id, item: client.add_criterion(plan_id, item.criterion_id),
    remove_item=lambda client, plan_id, arg: client.remove_criterion(plan_id, arg),
    remove_arg=lambda item: item.criterion_id,
)

_TEAM = AssociationSpec(
    kind=AssociationKind.TEAM,
    embedded_keys=("auditTeams", "AuditTeams", "team"),
    identity=IDENTITY_BY_KIND[AssociationKind.TEAM],
    attributes=_team_attributes,
    parse=parse_team_member,
    list_items=lambda client, plan_id: client.list_team(plan_id),
    add_item=lambda client, plan_id, item: client.add_team_member(plan_id, item),
    remove_item=lambda client, plan_id, arg: client.remove_team_member(plan_id, arg),
    remove_arg=lambda item: item.user_id,
)

_SCHEDULES = AssociationSpec(
    kind=AssociationKind.SCHEDULES,
    embedded_keys=("schedules", "Schedules"),
    identity=IDENTITY_BY_KIND[AssociationKind.SCHEDULES],
    attributes=_schedule_attributes,
    parse=parse_schedule,
    list_items=lambda client, plan_id: client.list_schedules(plan_id),
    add_item=lambda client, plan_id, item: client.add_schedule(plan_id, item),
    remove_item=lambda client, plan_id, arg: client.remove_schedule(plan_id, arg),
    remove_arg=lambda item: item.milestone_name,
)

_TEMPLATES = AssociationSpec(
    kind=AssociationKind.CHECKLIST_TEMPLATES,
    # detail-эндпоинт шаблоны не встраивает, список всегда запрашивается отдельно
    embedded_keys=(),
    identity=IDENTITY_BY_KIND[AssociationKind.CHECKLIST_TEMPLATES],
    attributes=None,
    parse=parse_template,
    list_items=lambda client, plan_id: client.list_checklist_templates(plan_id),
    add_item=lambda client, plan_id, item: client.add_checklist_template(plan_id, item.template_id),
    remove_item=lambda client, plan_id, arg: client.remove_checklist_template(plan_id, arg),
    remove_arg=lambda item: item.template_id,
)

_registry: dict[AssociationKind, AssociationSpec] = {
    spec.kind: spec for spec in (_DEPARTMENTS, _CRITERIA, _TEAM, _SCHEDULES, _TEMPLATES)
}


def get_spec(kind: AssociationKind | str) -> AssociationSpec:
    """
    Возвращает AssociationSpec по виду или ValueError, если вид не зарегистрирован.
    """
    try:
        return _registry[AssociationKind(kind)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unsupported association kind: {kind}") from exc


def list_specs() -> list[AssociationSpec]:
    return list(_registry.values())


__all__ = [
    "AssociationSpec",
    "get_spec",
    "list_specs",
]
