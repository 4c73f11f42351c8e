from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Hashable, Iterable, TypeVar

from plansync.domain.normalize.response import ABSENT

T = TypeVar("T")


class DiagnosticStage(str, Enum):
    """
    Назначение:
        Источник диагностического события при загрузке/синхронизации плана.
    """

    ROOT = "ROOT"
    LOAD = "LOAD"
    RESOLVE = "RESOLVE"
    DIFF = "DIFF"
    APPLY = "APPLY"


@dataclass(frozen=True)
class DiagnosticItem:
    """
    Назначение:
        Диагностическое сообщение (ошибка/предупреждение) с привязкой к этапу.
    """

    stage: DiagnosticStage
    code: str
    field: str | None
    message: str


class AssociationKind(str, Enum):
    """
    Назначение:
        Виды ассоциаций агрегата плана; у каждого своя удалённая коллекция.
    """

    DEPARTMENTS = "departments"
    CRITERIA = "criteria"
    TEAM = "team"
    SCHEDULES = "schedules"
    CHECKLIST_TEMPLATES = "checklist_templates"


class MilestoneName(str, Enum):
    """
    Назначение:
        Закрытый набор вех расписания; имя вехи и есть её идентичность.
    """

    KICKOFF = "Kickoff Meeting"
    FIELDWORK = "Fieldwork Start"
    EVIDENCE = "Evidence Due"
    CAPA = "CAPA Due"
    DRAFT = "Draft Report Due"


class TeamRole:
    AUDITOR = "Auditor"
    LEAD_AUDITOR = "LeadAuditor"
    AUDITEE_OWNER = "AuditeeOwner"


class ScheduleStatus:
    PLANNED = "Planned"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


def canonical_id(value: Any) -> str | None:
    """
    Назначение:
        Канонизация идентификатора любого вида: 7 и "7 " считаются одним ключом.
    """
    if value is None or value is ABSENT or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def normalize_label(value: str | None) -> str:
    """Нормализация человекочитаемой метки для сравнения: trim + casefold."""
    if value is None:
        return ""
    return str(value).strip().casefold()


@dataclass(frozen=True)
class DepartmentAssociation:
    """
    Назначение:
        Подразделение в области аудита плана.
    Инварианты/гарантии:
        - Идентичность — dept_id.
        - sensitive_area_labels используются только для разрешения в каталог,
          никогда для идентичности.
        - sensitive_flag=True означает, что разрешение меток было выполнено
          (area_ids может легитимно остаться пустым).
    """

    dept_id: str
    sensitive_flag: bool = False
    sensitive_area_ids: frozenset[str] = frozenset()
    sensitive_area_labels: frozenset[str] = frozenset()
    notes: str = ""
    dept_name: str | None = field(default=None, compare=False)
    scope_id: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class CriterionAssociation:
    criterion_id: str
    name: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class TeamMembership:
    """
    Назначение:
        Участник команды аудита; одна роль на пользователя в плане.
        "Ведущий" — атрибут is_lead, а не отдельная идентичность.
    """

    user_id: str
    role_in_team: str = TeamRole.AUDITOR
    is_lead: bool = False
    full_name: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class ScheduleMilestone:
    """
    Назначение:
        Веха расписания. Идентичность — имя вехи; дата сравнивается с точностью до дня.
    """

    milestone_name: str
    due_date: date | None = None
    status: str = ScheduleStatus.PLANNED
    notes: str = ""
    schedule_id: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class ChecklistTemplateAssociation:
    template_id: str
    status: str = "Active"


@dataclass(frozen=True)
class SensitiveAreaCatalogEntry:
    """
    Назначение:
        Запись мастер-каталога чувствительных зон (только чтение).
    Инварианты:
        Одинаковая метка может встречаться в разных подразделениях;
        совпадение требует равенства (dept_id, normalize_label(label)).
    """

    area_id: str
    dept_id: str
    label: str
    dept_name: str | None = None
    level: str | None = None

    @property
    def normalized_label(self) -> str:
        return normalize_label(self.label)


@dataclass(frozen=True)
class DepartmentRef:
    """Запись справочника подразделений (id + отображаемое имя)."""

    dept_id: str
    name: str


@dataclass(frozen=True)
class RootPlanFields:
    """
    Назначение:
        Скалярные поля корневого ресурса плана.
    """

    title: str
    audit_type: str = "Internal"
    scope: str = "Department"
    start_date: date | None = None
    end_date: date | None = None
    status: str = "Draft"
    is_published: bool = False
    objective: str = ""
    primary_template_id: str | None = None


def department_key(item: DepartmentAssociation) -> str:
    return item.dept_id


def criterion_key(item: CriterionAssociation) -> str:
    return item.criterion_id


def team_key(item: TeamMembership) -> str:
    return item.user_id


def schedule_key(item: ScheduleMilestone) -> str:
    return normalize_label(item.milestone_name)


def template_key(item: ChecklistTemplateAssociation) -> str:
    return item.template_id


IDENTITY_BY_KIND: dict[AssociationKind, Callable[[Any], Hashable]] = {
    AssociationKind.DEPARTMENTS: department_key,
    AssociationKind.CRITERIA: criterion_key,
    AssociationKind.TEAM: team_key,
    AssociationKind.SCHEDULES: schedule_key,
    AssociationKind.CHECKLIST_TEMPLATES: template_key,
}

FIELD_BY_KIND: dict[AssociationKind, str] = {
    AssociationKind.DEPARTMENTS: "scope_departments",
    AssociationKind.CRITERIA: "criteria",
    AssociationKind.TEAM: "team",
    AssociationKind.SCHEDULES: "schedules",
    AssociationKind.CHECKLIST_TEMPLATES: "checklist_templates",
}


def dedupe_by_key(items: Iterable[T], identity: Callable[[T], Hashable]) -> tuple[T, ...]:
    """
    Назначение:
        Убирает повторы по ключу идентичности, сохраняя порядок (первый выигрывает).
    """
    seen: dict[Hashable, T] = {}
    for item in items:
        key = identity(item)
        if key is None or key in seen:
            continue
        seen[key] = item
    return tuple(seen.values())


@dataclass
class PlanAggregate:
    """
    Назначение/ответственность:
        Составное представление плана и всех его ассоциаций на один проход сверки.
    Инварианты/гарантии:
        - Внутри каждой коллекции ключ идентичности уникален (дедупликация в __post_init__).
        - Коллекции никогда не None: отсутствующие данные — пустой кортеж.
        - plan_id=None допускает только create (полная материализация ассоциаций).
    """

    plan_id: str | None = None
    root: RootPlanFields | None = None
    scope_departments: tuple[DepartmentAssociation, ...] = ()
    criteria: tuple[CriterionAssociation, ...] = ()
    team: tuple[TeamMembership, ...] = ()
    schedules: tuple[ScheduleMilestone, ...] = ()
    checklist_templates: tuple[ChecklistTemplateAssociation, ...] = ()

    def __post_init__(self) -> None:
        for kind, field_name in FIELD_BY_KIND.items():
            items = getattr(self, field_name) or ()
            setattr(self, field_name, dedupe_by_key(items, IDENTITY_BY_KIND[kind]))

    def associations(self, kind: AssociationKind) -> tuple[Any, ...]:
        return getattr(self, FIELD_BY_KIND[kind])

    def set_associations(self, kind: AssociationKind, items: Iterable[Any]) -> None:
        setattr(self, FIELD_BY_KIND[kind], dedupe_by_key(items, IDENTITY_BY_KIND[kind]))

    def keys(self, kind: AssociationKind) -> set[Hashable]:
        identity = IDENTITY_BY_KIND[kind]
        return {identity(item) for item in self.associations(kind)}


def aggregate_as_dict(aggregate: PlanAggregate) -> dict[str, Any]:
    """
    Назначение:
        Явная сериализация агрегата для вывода CLI и отчётов.
    """
    root = aggregate.root
    return {
        "plan_id": aggregate.plan_id,
        "root": None
        if root is None
        else {
            "title": root.title,
            "audit_type": root.audit_type,
            "scope": root.scope,
            "start_date": root.start_date.isoformat() if root.start_date else None,
            "end_date": root.end_date.isoformat() if root.end_date else None,
            "status": root.status,
            "is_published": root.is_published,
            "objective": root.objective,
            "primary_template_id": root.primary_template_id,
        },
        "scope_departments": [
            {
                "dept_id": d.dept_id,
                "dept_name": d.dept_name,
                "sensitive_flag": d.sensitive_flag,
                "sensitive_area_ids": sorted(d.sensitive_area_ids),
                "sensitive_area_labels": sorted(d.sensitive_area_labels),
            }
            for d in aggregate.scope_departments
        ],
        "criteria": [{"criterion_id": c.criterion_id, "name": c.name} for c in aggregate.criteria],
        "team": [
            {
                "user_id": m.user_id,
                "role_in_team": m.role_in_team,
                "is_lead": m.is_lead,
                "full_name": m.full_name,
            }
            for m in aggregate.team
        ],
        "schedules": [
            {
                "milestone_name": s.milestone_name,
                "due_date": s.due_date.isoformat() if s.due_date else None,
                "status": s.status,
            }
            for s in aggregate.schedules
        ],
        "checklist_templates": [t.template_id for t in aggregate.checklist_templates],
    }
