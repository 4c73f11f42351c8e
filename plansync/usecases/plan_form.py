from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping

from plansync.common.time import parseIsoDate
from plansync.domain.error_codes import ErrorCode
from plansync.domain.models import (
    ChecklistTemplateAssociation,
    CriterionAssociation,
    DepartmentAssociation,
    DepartmentRef,
    DiagnosticItem,
    DiagnosticStage,
    MilestoneName,
    PlanAggregate,
    RootPlanFields,
    ScheduleMilestone,
    ScheduleStatus,
    SensitiveAreaCatalogEntry,
    TeamMembership,
    TeamRole,
    canonical_id,
)
from plansync.domain.normalize.records import name_map, parse_id_list, parse_label_list, to_bool
from plansync.domain.normalize.response import ABSENT, resolve_field
from plansync.domain.sensitive.resolver import ResolutionResult, SensitiveAreaResolver

LEVEL_ACADEMY = "academy"
LEVEL_DEPARTMENT = "department"

# поля формы в camelCase (как отдаёт UI) и snake_case (как пишут в YAML)
_MILESTONE_FIELDS: dict[MilestoneName, tuple[str, ...]] = {
    MilestoneName.KICKOFF: ("kickoffMeeting", "kickoff_meeting"),
    MilestoneName.FIELDWORK: ("fieldworkStart", "fieldwork_start"),
    MilestoneName.EVIDENCE: ("evidenceDue", "evidence_due"),
    MilestoneName.CAPA: ("capaDue", "capa_due"),
    MilestoneName.DRAFT: ("draftReportDue", "draft_report_due"),
}


@dataclass(frozen=True)
class AuditeeOwner:
    user_id: str
    dept_id: str | None = None


@dataclass
class PlanFormState:
    """
    Назначение:
        Локально отредактированное состояние плана (источник desired-агрегата).
    """

    title: str = ""
    period_from: date | None = None
    period_to: date | None = None
    audit_type: str = "Internal"
    level: str = LEVEL_DEPARTMENT
    objective: str = ""
    template_ids: list[str] = field(default_factory=list)
    primary_template_id: str | None = None
    dept_ids: list[str] = field(default_factory=list)
    criteria_ids: list[str] = field(default_factory=list)
    criteria_by_dept: dict[str, list[str]] = field(default_factory=dict)
    auditor_ids: list[str] = field(default_factory=list)
    lead_id: str | None = None
    auditee_owners: list[AuditeeOwner] = field(default_factory=list)
    sensitive_flag: bool = False
    sensitive_areas: list[str] = field(default_factory=list)
    sensitive_areas_by_dept: dict[str, list[str]] = field(default_factory=dict)
    sensitive_notes: str = ""
    milestones: dict[str, date | None] = field(default_factory=dict)

    @property
    def is_academy(self) -> bool:
        return self.level.strip().lower() == LEVEL_ACADEMY

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PlanFormState":
        """
        Назначение:
            Разбор формы из JSON/YAML (camelCase или snake_case ключи).
        Ошибки:
            ValueError, если data не является объектом.
        """
        if not isinstance(data, Mapping):
            raise ValueError("Plan form must be a mapping")

        def text(*names: str, default: str = "") -> str:
            value = resolve_field(data, names)
            return default if value is ABSENT else str(value).strip()

        owners: list[AuditeeOwner] = []
        raw_owners = resolve_field(data, ("auditeeOwners", "auditee_owners", "ownerOptions"))
        for raw in raw_owners if isinstance(raw_owners, list) else []:
            if isinstance(raw, Mapping):
                user_id = canonical_id(resolve_field(raw, ("userId", "user_id")))
                dept_id = canonical_id(resolve_field(raw, ("deptId", "dept_id")))
            else:
                user_id, dept_id = canonical_id(raw), None
            if user_id:
                owners.append(AuditeeOwner(user_id=user_id, dept_id=dept_id))

        milestones: dict[str, date | None] = {}
        raw_milestones = resolve_field(data, ("milestones", "schedules"))
        if isinstance(raw_milestones, Mapping):
            for name, value in raw_milestones.items():
                milestones[str(name).strip()] = parseIsoDate(value)
        for milestone, names in _MILESTONE_FIELDS.items():
            value = resolve_field(data, names)
            if value is not ABSENT:
                milestones[milestone.value] = parseIsoDate(value)

        level = text("level", "scope", default=LEVEL_DEPARTMENT).lower() or LEVEL_DEPARTMENT

        return cls(
            title=text("title"),
            period_from=parseIsoDate(_or_none(resolve_field(data, ("periodFrom", "period_from", "startDate", "start_date")))),
            period_to=parseIsoDate(_or_none(resolve_field(data, ("periodTo", "period_to", "endDate", "end_date")))),
            audit_type=text("auditType", "audit_type", "type", default="Internal") or "Internal",
            level=level,
            objective=text("objective", "goal"),
            template_ids=parse_id_list(resolve_field(data, ("selectedTemplateIds", "templateIds", "template_ids"))),
            primary_template_id=canonical_id(_or_none(resolve_field(data, ("primaryTemplateId", "primary_template_id")))),
            dept_ids=parse_id_list(resolve_field(data, ("selectedDeptIds", "deptIds", "dept_ids"))),
            criteria_ids=parse_id_list(resolve_field(data, ("selectedCriteriaIds", "criteriaIds", "criteria_ids"))),
            criteria_by_dept=_id_lists_by_dept(
                resolve_field(data, ("selectedCriteriaByDept", "criteriaByDept", "criteria_by_dept")),
                parse_id_list,
            ),
            auditor_ids=parse_id_list(resolve_field(data, ("selectedAuditorIds", "auditorIds", "auditor_ids"))),
            lead_id=canonical_id(_or_none(resolve_field(data, ("selectedLeadId", "leadId", "lead_id")))),
            auditee_owners=owners,
            sensitive_flag=to_bool(resolve_field(data, ("sensitiveFlag", "sensitive_flag"))),
            sensitive_areas=parse_label_list(resolve_field(data, ("sensitiveAreas", "sensitive_areas"))),
            sensitive_areas_by_dept=_id_lists_by_dept(
                resolve_field(data, ("sensitiveAreasByDept", "sensitive_areas_by_dept")),
                parse_label_list,
            ),
            sensitive_notes=text("sensitiveNotes", "sensitive_notes"),
            milestones=milestones,
        )


def _or_none(value: Any) -> Any:
    return None if value is ABSENT else value


def _id_lists_by_dept(value: Any, parse) -> dict[str, list[str]]:
    if not isinstance(value, Mapping):
        return {}
    result: dict[str, list[str]] = {}
    for raw_key, raw_items in value.items():
        key = canonical_id(raw_key)
        if key is None:
            continue
        bucket = result.setdefault(key, [])
        for item in parse(raw_items):
            if item not in bucket:
                bucket.append(item)
    return result


@dataclass
class DesiredState:
    """
    Назначение:
        Desired-агрегат и побочные результаты его построения.
    """

    aggregate: PlanAggregate
    resolutions: dict[str, ResolutionResult] = field(default_factory=dict)
    unassigned_labels: list[str] = field(default_factory=list)
    warnings: list[DiagnosticItem] = field(default_factory=list)

    @property
    def sensitive_unmatched(self) -> dict[str, list[str]]:
        unmatched = {
            dept_id: sorted(result.unmatched_labels)
            for dept_id, result in self.resolutions.items()
            if result.unmatched_labels
        }
        if self.unassigned_labels:
            unmatched["_unassigned"] = list(self.unassigned_labels)
        return unmatched


def build_root_fields(form: PlanFormState) -> RootPlanFields:
    """
    Назначение:
        Скалярные поля корня плана из формы.
    Контракт:
        templateId заполняется только при явно заданном основном шаблоне;
        первый выбранный шаблон основным не считается.
    """
    return RootPlanFields(
        title=form.title.strip() or "Untitled Plan",
        audit_type=form.audit_type or "Internal",
        scope="Academy" if form.is_academy else "Department",
        start_date=form.period_from,
        end_date=form.period_to,
        status="Draft",
        is_published=False,
        objective=form.objective or "",
        primary_template_id=form.primary_template_id,
    )


def scope_department_ids(form: PlanFormState, directory: Iterable[DepartmentRef]) -> list[str]:
    if form.is_academy:
        return [ref.dept_id for ref in directory]
    return list(form.dept_ids)


def build_desired_aggregate(
    form: PlanFormState,
    plan_id: str | None,
    directory: Iterable[DepartmentRef],
    catalog: Iterable[SensitiveAreaCatalogEntry],
    resolver: SensitiveAreaResolver | None = None,
) -> DesiredState:
    """
    Назначение:
        Построение desired PlanAggregate из формы.

    Алгоритм:
        - подразделения: уровень academy → весь справочник, иначе выбранные;
        - чувствительные зоны разрешаются ДО построения ассоциаций, поэтому
          add-набор уже несёт канонические id зон;
        - критерии: объединение критериев по подразделениям, если они заданы,
          иначе плоский список;
        - команда: аудиторы (lead помечен) + владельцы подразделений области
          (для academy — все владельцы), первая роль пользователя выигрывает;
        - расписание: вехи с заданной датой;
        - шаблоны: выбранные (+ основной, если задан).
    """
    resolver = resolver or SensitiveAreaResolver()
    directory = tuple(directory)
    catalog = tuple(catalog)
    names = name_map(directory)
    state = DesiredState(aggregate=PlanAggregate(plan_id=plan_id))

    scope_ids = scope_department_ids(form, directory)
    if form.is_academy and not directory:
        state.warnings.append(
            DiagnosticItem(
                stage=DiagnosticStage.RESOLVE,
                code=ErrorCode.DIRECTORY_UNAVAILABLE.value,
                field="departments",
                message="Academy scope requested but department directory is empty",
            )
        )

    flagged: dict[str, ResolutionResult] = {}
    if form.sensitive_flag:
        flat = resolver.resolve_flat(form.sensitive_areas, scope_ids, catalog, directory)
        for dept_id in scope_ids:
            has_entry = dept_id in form.sensitive_areas_by_dept or dept_id in flat.by_dept
            if not has_entry:
                continue
            labels = list(form.sensitive_areas_by_dept.get(dept_id, [])) + sorted(flat.labels_for(dept_id))
            flagged[dept_id] = resolver.resolve(dept_id, labels, catalog, directory)
        state.unassigned_labels = sorted(flat.unassigned_labels)
        for label in state.unassigned_labels:
            state.warnings.append(
                DiagnosticItem(
                    stage=DiagnosticStage.RESOLVE,
                    code=ErrorCode.RESOLUTION_AMBIGUOUS.value
                    if label in flat.ambiguous
                    else ErrorCode.RESOLUTION_UNMATCHED.value,
                    field="sensitive_areas",
                    message=f"Sensitive area '{label}' does not match any selected department",
                )
            )
    state.resolutions = flagged
    for dept_id, result in flagged.items():
        for label in sorted(result.unmatched_labels):
            state.warnings.append(
                DiagnosticItem(
                    stage=DiagnosticStage.RESOLVE,
                    code=ErrorCode.RESOLUTION_AMBIGUOUS.value
                    if label in result.ambiguous
                    else ErrorCode.RESOLUTION_UNMATCHED.value,
                    field=f"departments.{dept_id}",
                    message=f"Sensitive area '{label}' not found in catalog",
                )
            )

    departments = []
    for dept_id in scope_ids:
        result = flagged.get(dept_id)
        if result is None:
            departments.append(DepartmentAssociation(dept_id=dept_id, dept_name=names.get(dept_id)))
            continue
        labels = frozenset(match.label for match in result.matches) | result.unmatched_labels
        departments.append(
            DepartmentAssociation(
                dept_id=dept_id,
                sensitive_flag=True,
                sensitive_area_ids=result.area_ids,
                sensitive_area_labels=labels,
                notes=form.sensitive_notes,
                dept_name=names.get(dept_id),
            )
        )

    if form.criteria_by_dept:
        criteria_ids: list[str] = []
        for ids in form.criteria_by_dept.values():
            criteria_ids.extend(ids)
    else:
        criteria_ids = list(form.criteria_ids)

    auditors = list(form.auditor_ids)
    if form.lead_id and form.lead_id not in auditors:
        auditors.append(form.lead_id)
    team = [
        TeamMembership(user_id=uid, role_in_team=TeamRole.AUDITOR, is_lead=uid == form.lead_id)
        for uid in auditors
    ]
    scope_set = set(scope_ids)
    for owner in form.auditee_owners:
        if form.is_academy or (owner.dept_id is not None and owner.dept_id in scope_set):
            team.append(TeamMembership(user_id=owner.user_id, role_in_team=TeamRole.AUDITEE_OWNER))

    schedules = []
    for milestone in MilestoneName:
        due = form.milestones.get(milestone.value)
        if due is not None:
            schedules.append(ScheduleMilestone(milestone_name=milestone.value, due_date=due, status=ScheduleStatus.PLANNED))
    known = {m.value for m in MilestoneName}
    for name, due in form.milestones.items():
        if name not in known and due is not None:
            schedules.append(ScheduleMilestone(milestone_name=name, due_date=due, status=ScheduleStatus.PLANNED))

    template_ids = list(form.template_ids)
    if form.primary_template_id and form.primary_template_id not in template_ids:
        template_ids.append(form.primary_template_id)

    state.aggregate = PlanAggregate(
        plan_id=plan_id,
        root=build_root_fields(form),
        scope_departments=tuple(departments),
        criteria=tuple(CriterionAssociation(criterion_id=c) for c in criteria_ids),
        team=tuple(team),
        schedules=tuple(schedules),
        checklist_templates=tuple(ChecklistTemplateAssociation(template_id=t) for t in template_ids),
    )
    return state


def validate_form(form: PlanFormState) -> list[DiagnosticItem]:
    """
    Назначение:
        Проверка формы на стороне вызывающего (оркестратор её не навязывает).

    Выходные данные:
        list[DiagnosticItem]
            Пустой список — форма допустима.
    """
    issues: list[DiagnosticItem] = []

    def issue(field_name: str, message: str) -> None:
        issues.append(
            DiagnosticItem(stage=DiagnosticStage.ROOT, code=ErrorCode.FORM_INVALID.value, field=field_name, message=message)
        )

    if not form.title.strip():
        issue("title", "Title is required")
    if form.period_from is None or form.period_to is None:
        issue("period", "Start and end dates are required")
    elif form.period_from > form.period_to:
        issue("period", "Start date must not be after end date")
    if not form.template_ids:
        issue("template_ids", "At least one checklist template is required")
    if not form.is_academy and not form.dept_ids:
        issue("dept_ids", "Department scope requires at least one department")
    if form.period_from is not None and form.period_to is not None:
        for name, due in form.milestones.items():
            if due is not None and not (form.period_from <= due <= form.period_to):
                issue(f"milestones.{name}", f"Milestone '{name}' is outside the plan period")
    return issues


__all__ = [
    "AuditeeOwner",
    "DesiredState",
    "PlanFormState",
    "build_desired_aggregate",
    "build_root_fields",
    "scope_department_ids",
    "validate_form",
]
