from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from plansync.domain.error_codes import ErrorCode
from plansync.domain.exceptions import MissingPlanIdError, describe_error
from plansync.domain.models import (
    AssociationKind,
    DiagnosticItem,
    DiagnosticStage,
    PlanAggregate,
    canonical_id,
)
from plansync.domain.normalize.records import extract_plan_id
from plansync.domain.ports.plan_client import PlanResourceClientProtocol
from plansync.domain.sensitive.resolver import SensitiveAreaResolver
from plansync.domain.sync.apply import apply_sync_plan
from plansync.domain.sync.diff import SyncPlan, reconcile
from plansync.domain.sync.registry import AssociationSpec, get_spec, list_specs
from plansync.domain.sync.results import (
    KindSyncResult,
    SubmissionOutcome,
    SubmissionResult,
    SubmissionState,
    SubmissionStateMachine,
)
from plansync.infra.logging.setup import getDefaultLogger, logEvent
from plansync.usecases.plan_form import DesiredState, PlanFormState, build_desired_aggregate, build_root_fields
from plansync.usecases.plan_loader import PlanAggregateLoader, ReferenceData

COMPONENT = "submit"
SYNC_COMPONENT = "sync"


@dataclass
class PlanPreview:
    """
    Назначение:
        Планы сверки по видам без применения (dry-run для CLI diff).
    """

    plan_id: str
    desired: DesiredState
    sync_plans: dict[str, SyncPlan[Any]] = field(default_factory=dict)
    errors: dict[str, DiagnosticItem] = field(default_factory=dict)

    @property
    def op_count(self) -> int:
        return sum(plan.op_count for plan in self.sync_plans.values())


def _root_error(exc: Exception) -> DiagnosticItem:
    code, message = describe_error(exc)
    return DiagnosticItem(stage=DiagnosticStage.ROOT, code=code, field="root", message=message)


class PlanSubmissionOrchestrator:
    """
    Назначение/ответственность:
        Сценарий отправки формы плана: create/update корня, затем сверка
        и применение каждого вида ассоциаций.

    Алгоритм submit():
        1) Idle → RootPersisting: create (получаем id) или update корня;
           ошибка → RootFailed, outcome=FAILED (единственный полный провал);
        2) RootPersisting → AssociationsSyncing: справочники, desired-агрегат
           (зоны разрешаются до сборки подразделений), затем виды конкурентно:
           current (пусто при create, load_kind при update) → reconcile → apply;
        3) AssociationsSyncing → Completed: SUCCEEDED или PARTIAL со списком
           упавших элементов/видов.

    Ограничения:
        - Повторов внутри нет; повторный submit безопасен, т.к. сверка идемпотентна.
        - Отмена после сохранения корня не прерывает начатую синхронизацию
          ассоциаций: фаза защищена asyncio.shield и дожидается завершения.
        - Взаимного исключения двух редакторов одного плана нет.
    """

    def __init__(
        self,
        client: PlanResourceClientProtocol,
        loader: PlanAggregateLoader | None = None,
        resolver: SensitiveAreaResolver | None = None,
        logger: logging.Logger | None = None,
        run_id: str = "-",
        max_concurrency: int = 8,
    ):
        self.client = client
        self.resolver = resolver or SensitiveAreaResolver()
        self.logger = logger or getDefaultLogger()
        self.run_id = run_id
        self.loader = loader or PlanAggregateLoader(client, resolver=self.resolver, logger=self.logger, run_id=run_id)
        self.max_concurrency = max_concurrency

    async def submit(self, form: PlanFormState, existing_plan_id: Any = None) -> SubmissionResult:
        machine = SubmissionStateMachine()
        existing = canonical_id(existing_plan_id)
        created = existing is None

        machine.advance(SubmissionState.ROOT_PERSISTING)
        plan_id, root_error = await self._persist_root(form, existing)
        if root_error is not None:
            machine.advance(SubmissionState.ROOT_FAILED)
            logEvent(self.logger, logging.ERROR, self.run_id, COMPONENT, f"Root step failed: {root_error.message}")
            return SubmissionResult(
                outcome=SubmissionOutcome.FAILED,
                state=machine.state,
                plan_id=existing,
                created=created,
                root_error=root_error,
            )

        machine.advance(SubmissionState.ASSOCIATIONS_SYNCING)
        logEvent(
            self.logger,
            logging.INFO,
            self.run_id,
            COMPONENT,
            f"Root {'created' if created else 'updated'}: plan_id={plan_id}; syncing associations",
        )

        task = asyncio.ensure_future(self._sync_associations(form, plan_id, created))
        try:
            desired, kinds = await asyncio.shield(task)
        except asyncio.CancelledError:
            logEvent(
                self.logger,
                logging.WARNING,
                self.run_id,
                COMPONENT,
                f"Cancellation requested for plan {plan_id}; waiting for in-flight association sync",
            )
            await task
            raise

        machine.advance(SubmissionState.COMPLETED)
        partial = any(not result.ok for result in kinds.values())
        result = SubmissionResult(
            outcome=SubmissionOutcome.PARTIAL if partial else SubmissionOutcome.SUCCEEDED,
            state=machine.state,
            plan_id=plan_id,
            created=created,
            kinds=kinds,
            sensitive_unmatched=desired.sensitive_unmatched,
            warnings=list(desired.warnings),
        )
        logEvent(
            self.logger,
            logging.INFO if not partial else logging.WARNING,
            self.run_id,
            COMPONENT,
            f"Submission completed: plan_id={plan_id} outcome={result.outcome.value} "
            f"failed_items={len(result.failed_items)} failed_kinds={len(result.failed_kinds)}",
        )
        return result

    async def preview(self, form: PlanFormState, plan_id: Any) -> PlanPreview:
        """
        Назначение:
            Вычисляет планы сверки по всем видам без применения.
        Ошибки:
            MissingPlanIdError, если plan_id не задан (сверка возможна только для существующего плана).
        """
        plan_key = canonical_id(plan_id)
        if plan_key is None:
            raise MissingPlanIdError()
        reference = await self._load_reference(form)
        desired = self._build_desired(form, plan_key, reference)

        preview = PlanPreview(plan_id=plan_key, desired=desired)
        preview.errors.update(self._blocked_kinds(form, reference))
        specs = [spec for spec in list_specs() if spec.kind.value not in preview.errors]
        loaded = await asyncio.gather(*(self.loader.load_kind(plan_key, spec.kind, reference) for spec in specs))
        for spec, current in zip(specs, loaded):
            if current.error is not None:
                preview.errors[spec.kind.value] = current.error
                continue
            preview.sync_plans[spec.kind.value] = reconcile(
                desired.aggregate.associations(spec.kind),
                current.items,
                spec.identity,
                spec.attributes,
            )
        return preview

    async def reconcile_kind(
        self,
        aggregate: PlanAggregate,
        kind: AssociationKind,
        reference: ReferenceData | None = None,
    ) -> KindSyncResult:
        """
        Назначение:
            Сверка и применение одного вида для уже существующего плана.
        Ошибки:
            MissingPlanIdError, если у агрегата нет plan_id (допустим только create).
        """
        if aggregate.plan_id is None:
            raise MissingPlanIdError()
        spec = get_spec(kind)
        return await self._sync_kind(spec, aggregate.plan_id, aggregate, False, reference or ReferenceData())

    async def _persist_root(self, form: PlanFormState, existing: str | None) -> tuple[str | None, DiagnosticItem | None]:
        fields = build_root_fields(form)
        try:
            if existing is None:
                response = await self.client.create_root_plan(fields)
                plan_id = extract_plan_id(response)
                if plan_id is None:
                    return None, DiagnosticItem(
                        stage=DiagnosticStage.ROOT,
                        code=ErrorCode.ROOT_PERSIST_FAILED.value,
                        field="plan_id",
                        message="Create response carried no plan id",
                    )
                return plan_id, None
            await self.client.update_root_plan(existing, fields)
            return existing, None
        except Exception as exc:
            return None, _root_error(exc)

    async def _sync_associations(
        self,
        form: PlanFormState,
        plan_id: str,
        created: bool,
    ) -> tuple[DesiredState, dict[str, KindSyncResult]]:
        reference = await self._load_reference(form)
        desired = self._build_desired(form, plan_id, reference)
        desired.warnings[:0] = reference.warnings

        blocked = self._blocked_kinds(form, reference)
        specs = list_specs()
        results = await asyncio.gather(
            *(
                self._sync_kind(spec, plan_id, desired.aggregate, created, reference, blocked.get(spec.kind.value))
                for spec in specs
            )
        )
        return desired, {spec.kind.value: result for spec, result in zip(specs, results)}

    async def _load_reference(self, form: PlanFormState) -> ReferenceData:
        return await self.loader.load_reference(
            catalog=form.sensitive_flag,
            directory=form.is_academy or form.sensitive_flag,
        )

    @staticmethod
    def _blocked_kinds(form: PlanFormState, reference: ReferenceData) -> dict[str, DiagnosticItem]:
        """
        Назначение:
            Виды, desired-набор которых нельзя построить без недоступных справочников.
        Контракт:
            - подразделения с метками зон зависят от каталога и справочника
              (составные метки "<зона> - <подразделение>");
            - academy-область зависит от справочника подразделений;
            - такой вид не сверяется: иначе пустые id зон или пустая область
              перезаписали бы сохранённые строки.
        """
        labelled = form.sensitive_flag and bool(form.sensitive_areas or form.sensitive_areas_by_dept)
        needed = []
        if labelled:
            needed.append("catalog")
        if labelled or form.is_academy:
            needed.append("directory")
        missing = [part for part in needed if part in reference.unavailable]
        if not missing:
            return {}
        kind = AssociationKind.DEPARTMENTS.value
        return {
            kind: DiagnosticItem(
                stage=DiagnosticStage.LOAD,
                code=ErrorCode.DESIRED_STATE_UNAVAILABLE.value,
                field=kind,
                message=f"Desired {kind} not built: {', '.join(missing)} unavailable",
            )
        }

    def _build_desired(self, form: PlanFormState, plan_id: str | None, reference: ReferenceData) -> DesiredState:
        desired = build_desired_aggregate(form, plan_id, reference.directory, reference.catalog, self.resolver)
        for warning in desired.warnings:
            logEvent(self.logger, logging.WARNING, self.run_id, "resolver", f"{warning.field}: {warning.message}")
        return desired

    async def _sync_kind(
        self,
        spec: AssociationSpec,
        plan_id: str,
        aggregate: PlanAggregate,
        created: bool,
        reference: ReferenceData,
        blocked: DiagnosticItem | None = None,
    ) -> KindSyncResult:
        kind = spec.kind.value
        if blocked is not None:
            logEvent(self.logger, logging.WARNING, self.run_id, SYNC_COMPONENT, f"{kind}: skipped: {blocked.message}")
            return KindSyncResult(kind=kind, error=blocked)
        try:
            if created:
                current: tuple[Any, ...] = ()
            else:
                loaded = await self.loader.load_kind(plan_id, spec.kind, reference)
                if loaded.error is not None:
                    # без текущего состояния сверка дала бы лишние add/remove
                    return KindSyncResult(kind=kind, error=loaded.error)
                current = loaded.items

            plan = reconcile(aggregate.associations(spec.kind), current, spec.identity, spec.attributes)
            current_by_key = {spec.identity(item): item for item in current}

            async def add(item: Any) -> Any:
                return await spec.add_item(self.client, plan_id, item)

            async def remove(key: Any) -> Any:
                return await spec.remove_item(self.client, plan_id, spec.remove_arg(current_by_key[key]))

            items = await apply_sync_plan(
                plan,
                kind=kind,
                identity=spec.identity,
                add=add,
                remove=remove,
                concurrency=self.max_concurrency,
            )
        except Exception as exc:
            code, message = describe_error(exc)
            error = DiagnosticItem(stage=DiagnosticStage.APPLY, code=code, field=kind, message=message)
            logEvent(self.logger, logging.ERROR, self.run_id, SYNC_COMPONENT, f"{kind}: sync aborted: {error.message}")
            return KindSyncResult(kind=kind, error=error)

        for item in items:
            if not item.ok:
                logEvent(
                    self.logger,
                    logging.ERROR,
                    self.run_id,
                    SYNC_COMPONENT,
                    f"{kind}: {item.op} {item.key} failed: {item.error_code} {item.error_message or ''}".rstrip(),
                )
        logEvent(
            self.logger,
            logging.INFO,
            self.run_id,
            SYNC_COMPONENT,
            f"{kind}: add={len(plan.to_add)} remove={len(plan.to_remove)} replaced={len(plan.replaced)} "
            f"unchanged={plan.unchanged} failed={sum(1 for item in items if not item.ok)}",
        )
        return KindSyncResult(kind=kind, sync_plan=plan, items=items)


__all__ = ["PlanPreview", "PlanSubmissionOrchestrator"]
