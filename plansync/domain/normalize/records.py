from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from plansync.common.time import parseIsoDate
from plansync.domain.models import (
    ChecklistTemplateAssociation,
    CriterionAssociation,
    DepartmentAssociation,
    DepartmentRef,
    RootPlanFields,
    ScheduleMilestone,
    ScheduleStatus,
    SensitiveAreaCatalogEntry,
    TeamMembership,
    TeamRole,
    canonical_id,
)
from plansync.domain.normalize.response import ABSENT, resolve_field, unwrap

# Алиасы полей: порядок = приоритет
PLAN_ID_FIELDS = ("auditId", "AuditId", "id", "$id")
DEPT_ID_FIELDS = ("deptId", "DeptId", "departmentId", "$deptId")
DEPT_NAME_FIELDS = ("deptName", "DeptName", "departmentName", "name", "Name")
SCOPE_ID_FIELDS = ("auditScopeId", "AuditScopeId", "scopeDeptId", "auditScopeDepartmentId", "id")
SENSITIVE_FLAG_FIELDS = ("sensitiveFlag", "SensitiveFlag")
AREA_ID_FIELDS = ("departmentSensitiveAreaIds", "DepartmentSensitiveAreaIds", "sensitiveAreaIds")
AREA_LABEL_FIELDS = ("Areas", "areas", "sensitiveAreas", "SensitiveAreas")
NOTES_FIELDS = ("notes", "Notes")
CRITERION_ID_FIELDS = ("criteriaId", "criterionId", "CriteriaId")
CRITERION_NAME_FIELDS = ("name", "criterionName", "Name")
USER_ID_FIELDS = ("userId", "UserId")
ROLE_FIELDS = ("roleInTeam", "RoleInTeam", "role")
IS_LEAD_FIELDS = ("isLead", "IsLead")
FULL_NAME_FIELDS = ("fullName", "FullName")
MILESTONE_NAME_FIELDS = ("milestoneName", "MilestoneName", "name")
DUE_DATE_FIELDS = ("dueDate", "DueDate")
SCHEDULE_ID_FIELDS = ("scheduleId", "ScheduleId", "auditScheduleId", "id")
STATUS_FIELDS = ("status", "Status")
TEMPLATE_ID_FIELDS = ("templateId", "checklistTemplateId", "template.templateId", "template.id")
CATALOG_ID_FIELDS = ("id", "Id")
CATALOG_DEPT_ID_FIELDS = ("deptId", "DeptId")
CATALOG_LABEL_FIELDS = (
    "sensitiveArea",
    "SensitiveArea",
    "sensitiveAreas",
    "SensitiveAreas",
    "area",
    "Area",
    "name",
    "Name",
)
CATALOG_LEVEL_FIELDS = ("level", "Level")
DIRECTORY_ID_FIELDS = ("deptId", "DeptId", "$id", "id")
DIRECTORY_NAME_FIELDS = ("name", "Name", "code", "Code")


def _text(value: Any) -> str | None:
    if value is ABSENT or value is None:
        return None
    text = str(value).strip()
    return text or None


def to_bool(value: Any) -> bool:
    """
    Назначение:
        Лояльное приведение флага из API/формы: true/"true"/"1"/1 → True.
    """
    if value is ABSENT or value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("true", "1", "yes", "y", "on")


def parse_label_list(value: Any) -> list[str]:
    """
    Назначение:
        Разбор списка меток чувствительных зон.

    Контракт:
        Поддерживаются: список строк, JSON-строка со списком,
        простая строка (одна метка), конверт {"$values": [...]}.
        Пустые метки отбрасываются, повторы схлопываются с сохранением порядка.
    """
    if value is ABSENT or value is None:
        return []
    items: Iterable[Any]
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except ValueError:
                decoded = [text]
            items = decoded if isinstance(decoded, list) else [decoded]
        else:
            items = [text]
    elif isinstance(value, (list, tuple, set, frozenset, Mapping)):
        items = unwrap(list(value) if isinstance(value, (tuple, set, frozenset)) else value)
    else:
        items = [value]

    labels: list[str] = []
    for item in items:
        if isinstance(item, Mapping):
            item = resolve_field(item, CATALOG_LABEL_FIELDS, skip_blank=True)
        label = _text(item)
        if label and label not in labels:
            labels.append(label)
    return labels


def parse_id_list(value: Any) -> list[str]:
    """Разбор списка идентификаторов (массив, конверт, JSON-строка или одиночное значение)."""
    if value is ABSENT or value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except ValueError:
                return []
        else:
            value = [part for part in text.split(",")]
    items = unwrap(value) if isinstance(value, (list, Mapping)) else [value]
    result: list[str] = []
    for item in items:
        ident = canonical_id(item)
        if ident and ident not in result:
            result.append(ident)
    return result


def extract_plan_id(payload: Any) -> str | None:
    """
    Назначение:
        Достаёт id плана из ответа create: объект с auditId/id/$id или голая строка.
    """
    if isinstance(payload, (str, int)) and not isinstance(payload, bool):
        return canonical_id(payload)
    if isinstance(payload, Mapping):
        source = payload.get("audit") if isinstance(payload.get("audit"), Mapping) else payload
        return canonical_id(_text(resolve_field(source, PLAN_ID_FIELDS, skip_blank=True)))
    return None


def parse_department(record: Any, dept_names: Mapping[str, str] | None = None) -> DepartmentAssociation | None:
    """
    Назначение:
        Строка области аудита → DepartmentAssociation.
        Без deptId запись не имеет идентичности и отбрасывается (None).
    """
    dept_id = canonical_id(resolve_field(record, DEPT_ID_FIELDS))
    if dept_id is None:
        return None
    name = _text(resolve_field(record, DEPT_NAME_FIELDS[:3], skip_blank=True))
    if name is None and dept_names:
        name = dept_names.get(dept_id)
    return DepartmentAssociation(
        dept_id=dept_id,
        sensitive_flag=to_bool(resolve_field(record, SENSITIVE_FLAG_FIELDS)),
        sensitive_area_ids=frozenset(parse_id_list(resolve_field(record, AREA_ID_FIELDS))),
        sensitive_area_labels=frozenset(parse_label_list(resolve_field(record, AREA_LABEL_FIELDS))),
        notes=_text(resolve_field(record, NOTES_FIELDS)) or "",
        dept_name=name,
        scope_id=canonical_id(resolve_field(record, SCOPE_ID_FIELDS)),
    )


def parse_criterion(record: Any) -> CriterionAssociation | None:
    criterion_id = canonical_id(resolve_field(record, CRITERION_ID_FIELDS))
    if criterion_id is None:
        return None
    return CriterionAssociation(
        criterion_id=criterion_id,
        name=_text(resolve_field(record, CRITERION_NAME_FIELDS, skip_blank=True)),
    )


def parse_team_member(record: Any) -> TeamMembership | None:
    """
    Назначение:
        Запись команды → TeamMembership.
    Контракт:
        Роль "LeadAuditor" канонизируется в Auditor + is_lead=True.
    """
    user_id = canonical_id(resolve_field(record, USER_ID_FIELDS))
    if user_id is None:
        return None
    role = _text(resolve_field(record, ROLE_FIELDS, skip_blank=True)) or TeamRole.AUDITOR
    is_lead = to_bool(resolve_field(record, IS_LEAD_FIELDS))
    if role.casefold() == TeamRole.LEAD_AUDITOR.casefold():
        role = TeamRole.AUDITOR
        is_lead = True
    return TeamMembership(
        user_id=user_id,
        role_in_team=role,
        is_lead=is_lead,
        full_name=_text(resolve_field(record, FULL_NAME_FIELDS, skip_blank=True)),
    )


def parse_schedule(record: Any) -> ScheduleMilestone | None:
    name = _text(resolve_field(record, MILESTONE_NAME_FIELDS, skip_blank=True))
    if name is None:
        return None
    return ScheduleMilestone(
        milestone_name=name,
        due_date=parseIsoDate(_text(resolve_field(record, DUE_DATE_FIELDS))),
        status=_text(resolve_field(record, STATUS_FIELDS)) or ScheduleStatus.PLANNED,
        notes=_text(resolve_field(record, NOTES_FIELDS)) or "",
        schedule_id=canonical_id(resolve_field(record, SCHEDULE_ID_FIELDS)),
    )


def parse_template(record: Any) -> ChecklistTemplateAssociation | None:
    if not isinstance(record, Mapping):
        # список шаблонов иногда приходит как массив голых id
        template_id = canonical_id(record)
        return ChecklistTemplateAssociation(template_id=template_id) if template_id else None
    template_id = canonical_id(resolve_field(record, TEMPLATE_ID_FIELDS))
    if template_id is None:
        return None
    return ChecklistTemplateAssociation(
        template_id=template_id,
        status=_text(resolve_field(record, STATUS_FIELDS)) or "Active",
    )


def parse_catalog_entry(record: Any) -> SensitiveAreaCatalogEntry | None:
    area_id = canonical_id(resolve_field(record, CATALOG_ID_FIELDS))
    dept_id = canonical_id(resolve_field(record, CATALOG_DEPT_ID_FIELDS))
    label = _text(resolve_field(record, CATALOG_LABEL_FIELDS, skip_blank=True))
    if area_id is None or dept_id is None or label is None:
        return None
    return SensitiveAreaCatalogEntry(
        area_id=area_id,
        dept_id=dept_id,
        label=label,
        dept_name=_text(resolve_field(record, ("deptName", "DeptName"))),
        level=_text(resolve_field(record, CATALOG_LEVEL_FIELDS)),
    )


def parse_department_ref(record: Any) -> DepartmentRef | None:
    dept_id = canonical_id(resolve_field(record, DIRECTORY_ID_FIELDS))
    if dept_id is None:
        return None
    name = _text(resolve_field(record, DIRECTORY_NAME_FIELDS, skip_blank=True)) or ""
    return DepartmentRef(dept_id=dept_id, name=name)


def parse_catalog(payload: Any) -> tuple[SensitiveAreaCatalogEntry, ...]:
    entries = (parse_catalog_entry(item) for item in unwrap(payload))
    return tuple(entry for entry in entries if entry is not None)


def parse_department_directory(payload: Any) -> tuple[DepartmentRef, ...]:
    refs = (parse_department_ref(item) for item in unwrap(payload))
    return tuple(ref for ref in refs if ref is not None)


def parse_collection(payload: Any, parser) -> list[Any]:
    """Нормализует коллекцию и отбрасывает записи без ключа идентичности."""
    parsed = (parser(item) for item in unwrap(payload))
    return [item for item in parsed if item is not None]


def plan_detail_root(payload: Any) -> dict[str, Any] | None:
    """
    Назначение:
        Возвращает объект плана из ответа detail (бывает вложен в "audit").
    """
    records = unwrap(payload)
    if not records or not isinstance(records[0], Mapping):
        return None
    record = records[0]
    nested = record.get("audit") or record.get("Audit")
    if isinstance(nested, Mapping):
        merged = dict(record)
        merged.update(nested)
        return merged
    return dict(record)


def parse_root_fields(record: Any) -> RootPlanFields | None:
    """
    Назначение:
        Скалярные поля корня плана из detail/строки списка.
    """
    if not isinstance(record, Mapping):
        return None
    scope = _text(resolve_field(record, ("scope", "Scope"))) or "Department"
    return RootPlanFields(
        title=_text(resolve_field(record, ("title", "Title"), skip_blank=True)) or "Untitled Plan",
        audit_type=_text(resolve_field(record, ("type", "Type", "auditType"), skip_blank=True)) or "Internal",
        scope=scope,
        start_date=parseIsoDate(_text(resolve_field(record, ("startDate", "StartDate", "periodFrom")))),
        end_date=parseIsoDate(_text(resolve_field(record, ("endDate", "EndDate", "periodTo")))),
        status=_text(resolve_field(record, STATUS_FIELDS)) or "Draft",
        is_published=to_bool(resolve_field(record, ("isPublished", "IsPublished"))),
        objective=_text(resolve_field(record, ("objective", "Objective"))) or "",
        primary_template_id=canonical_id(resolve_field(record, ("templateId", "TemplateId"))),
    )


def name_map(directory: Iterable[DepartmentRef]) -> dict[str, str]:
    """dept_id → имя подразделения."""
    return {ref.dept_id: ref.name for ref in directory if ref.name}


__all__ = [
    "extract_plan_id",
    "name_map",
    "parse_catalog",
    "parse_catalog_entry",
    "parse_collection",
    "parse_criterion",
    "parse_department",
    "parse_department_directory",
    "parse_department_ref",
    "parse_id_list",
    "parse_label_list",
    "parse_root_fields",
    "parse_schedule",
    "parse_team_member",
    "parse_template",
    "plan_detail_root",
    "to_bool",
]
