from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Iterable, Mapping

from plansync.domain.error_codes import ErrorCode
from plansync.domain.exceptions import PlanNotFoundError, describe_error
from plansync.domain.models import (
    AssociationKind,
    DepartmentAssociation,
    DepartmentRef,
    DiagnosticItem,
    DiagnosticStage,
    PlanAggregate,
    SensitiveAreaCatalogEntry,
    canonical_id,
)
from plansync.domain.normalize.records import (
    extract_plan_id,
    name_map,
    parse_catalog,
    parse_collection,
    parse_department_directory,
    parse_root_fields,
    plan_detail_root,
)
from plansync.domain.normalize.response import is_collection_payload, unwrap
from plansync.domain.ports.plan_client import PlanResourceClientProtocol
from plansync.domain.sensitive.resolver import SensitiveAreaResolver
from plansync.domain.sync.registry import AssociationSpec, get_spec, list_specs
from plansync.infra.logging.setup import getDefaultLogger, logEvent

COMPONENT = "loader"


@dataclass
class _Fetched:
    payload: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _attempt(call: Awaitable[Any]) -> _Fetched:
    # ошибка одного запроса не должна отменять соседние
    try:
        return _Fetched(payload=await call)
    except Exception as exc:
        return _Fetched(error=exc)


async def _skipped() -> _Fetched:
    return _Fetched(payload=[])


def _diagnostic(stage: DiagnosticStage, exc: Exception, field_name: str | None, prefix: str) -> DiagnosticItem:
    code, message = describe_error(exc)
    return DiagnosticItem(stage=stage, code=code, field=field_name, message=f"{prefix}: {message}")


@dataclass
class KindLoadResult:
    """
    Назначение:
        Текущее состояние одного вида ассоциаций.
    Контракт:
        error задан → items пуст (вид не удалось получить).
    """

    kind: AssociationKind
    items: tuple[Any, ...] = ()
    error: DiagnosticItem | None = None
    source: str = "fetched"


@dataclass
class PlanLoadResult:
    """
    Назначение/ответственность:
        Результат загрузки агрегата одного плана.
    Инварианты:
        - форма aggregate одинакова для быстрого пути и для fallback;
        - отсутствующие коллекции — пустые кортежи, их ошибки — в kind_errors.
    """

    aggregate: PlanAggregate
    used_fallback: bool = False
    kind_errors: dict[str, DiagnosticItem] = field(default_factory=dict)
    warnings: list[DiagnosticItem] = field(default_factory=list)
    sources: dict[str, str] = field(default_factory=dict)
    catalog: tuple[SensitiveAreaCatalogEntry, ...] = ()
    directory: tuple[DepartmentRef, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.kind_errors


@dataclass
class BatchLoadResult:
    loaded: dict[str, PlanLoadResult] = field(default_factory=dict)
    failed: dict[str, DiagnosticItem] = field(default_factory=dict)


@dataclass
class ReferenceData:
    """Справочные данные для разрешения чувствительных зон и имён подразделений."""

    catalog: tuple[SensitiveAreaCatalogEntry, ...] = ()
    directory: tuple[DepartmentRef, ...] = ()
    warnings: list[DiagnosticItem] = field(default_factory=list)
    unavailable: set[str] = field(default_factory=set)


class PlanAggregateLoader:
    """
    Назначение/ответственность:
        Сборка PlanAggregate по plan_id из нескольких удалённых коллекций.

    Алгоритм load():
        1) конкурентно: detail плана, каталог зон, справочник подразделений,
           список шаблонов (detail их не встраивает);
        2) корень берётся из detail; если detail не получен — из кэшированной
           строки списка (fallback), иначе PlanNotFoundError;
        3) встроенные в detail коллекции используются как есть, недостающие
           запрашиваются конкурентно; расписание в fallback запрашивается всегда;
        4) подразделения обогащаются: имя из справочника, метки ↔ id зон по каталогу.

    Ограничения:
        Ошибка одной коллекции не прерывает остальные: вид становится пустым,
        ошибка уходит в kind_errors. Внутри загрузчика повторов нет.
    """

    def __init__(
        self,
        client: PlanResourceClientProtocol,
        resolver: SensitiveAreaResolver | None = None,
        logger: logging.Logger | None = None,
        run_id: str = "-",
    ):
        self.client = client
        self.resolver = resolver or SensitiveAreaResolver()
        self.logger = logger or getDefaultLogger()
        self.run_id = run_id

    async def load(self, plan_id: Any, cached_row: Mapping[str, Any] | None = None) -> PlanLoadResult:
        plan_key = canonical_id(plan_id)
        if plan_key is None:
            raise PlanNotFoundError(str(plan_id), message="Plan id is empty")

        detail, catalog_raw, directory_raw, templates_raw = await asyncio.gather(
            _attempt(self.client.get_plan_detail(plan_key)),
            _attempt(self.client.get_sensitive_area_catalog()),
            _attempt(self.client.list_department_directory()),
            _attempt(get_spec(AssociationKind.CHECKLIST_TEMPLATES).list_items(self.client, plan_key)),
        )

        warnings: list[DiagnosticItem] = []
        used_fallback = False
        source_record = plan_detail_root(detail.payload) if detail.ok else None
        if source_record is None:
            if not cached_row:
                reason = detail.error if detail.error is not None else "empty detail response"
                logEvent(self.logger, logging.ERROR, self.run_id, COMPONENT, f"Plan {plan_key} not loaded: {reason}")
                raise PlanNotFoundError(
                    plan_key,
                    details={"code": describe_error(detail.error)[0] if detail.error else ErrorCode.PLAN_NOT_FOUND.value},
                )
            used_fallback = True
            source_record = dict(cached_row)
            warnings.append(
                DiagnosticItem(
                    stage=DiagnosticStage.LOAD,
                    code=describe_error(detail.error)[0] if detail.error else ErrorCode.PLAN_NOT_FOUND.value,
                    field="detail",
                    message="Plan detail unavailable, cached summary row used",
                )
            )
            logEvent(self.logger, logging.WARNING, self.run_id, COMPONENT, f"Plan {plan_key}: detail fallback to cached row")

        reference = self._reference_from(catalog_raw, directory_raw)
        warnings.extend(reference.warnings)

        kinds: dict[AssociationKind, KindLoadResult] = {}
        pending: list[AssociationSpec] = []
        for spec in list_specs():
            if spec.kind == AssociationKind.CHECKLIST_TEMPLATES:
                kinds[spec.kind] = self._from_fetched(spec, templates_raw)
                continue
            # расписание иногда отсутствует в detail даже при успехе
            embedded = None if (used_fallback and spec.kind == AssociationKind.SCHEDULES) else _embedded(source_record, spec)
            if embedded is not None:
                kinds[spec.kind] = KindLoadResult(
                    kind=spec.kind,
                    items=tuple(parse_collection(embedded, spec.parse)),
                    source="cached" if used_fallback else "embedded",
                )
            else:
                pending.append(spec)

        fetched = await asyncio.gather(*(_attempt(spec.list_items(self.client, plan_key)) for spec in pending))
        for spec, result in zip(pending, fetched):
            kinds[spec.kind] = self._from_fetched(spec, result)

        departments = kinds.get(AssociationKind.DEPARTMENTS)
        if departments is not None and departments.error is None:
            enriched, resolve_warnings = self.enrich_departments(departments.items, reference)
            kinds[AssociationKind.DEPARTMENTS] = replace(departments, items=enriched)
            warnings.extend(resolve_warnings)

        aggregate = PlanAggregate(plan_id=plan_key, root=parse_root_fields(source_record))
        kind_errors: dict[str, DiagnosticItem] = {}
        sources: dict[str, str] = {}
        for kind, result in kinds.items():
            aggregate.set_associations(kind, result.items)
            sources[kind.value] = result.source
            if result.error is not None:
                kind_errors[kind.value] = result.error
                logEvent(self.logger, logging.WARNING, self.run_id, COMPONENT, f"Plan {plan_key}: {result.error.message}")

        logEvent(
            self.logger,
            logging.INFO,
            self.run_id,
            COMPONENT,
            f"Plan {plan_key} loaded: fallback={used_fallback} kind_errors={len(kind_errors)}",
        )
        return PlanLoadResult(
            aggregate=aggregate,
            used_fallback=used_fallback,
            kind_errors=kind_errors,
            warnings=warnings,
            sources=sources,
            catalog=reference.catalog,
            directory=reference.directory,
        )

    async def load_kind(
        self,
        plan_id: Any,
        kind: AssociationKind | str,
        reference: ReferenceData | None = None,
    ) -> KindLoadResult:
        """
        Назначение:
            Загрузка текущего состояния одного вида (для сверки при update).
            Для подразделений при наличии reference метки переводятся в id зон.
        """
        spec = get_spec(kind)
        plan_key = canonical_id(plan_id)
        result = self._from_fetched(spec, await _attempt(spec.list_items(self.client, plan_key)))
        if spec.kind == AssociationKind.DEPARTMENTS and result.error is None and reference is not None:
            enriched, _ = self.enrich_departments(result.items, reference)
            result = replace(result, items=enriched)
        if result.error is not None:
            logEvent(self.logger, logging.WARNING, self.run_id, COMPONENT, f"Plan {plan_key}: {result.error.message}")
        return result

    async def load_reference(self, catalog: bool = True, directory: bool = True) -> ReferenceData:
        """Каталог зон и справочник подразделений; ненужные части не запрашиваются."""
        catalog_raw, directory_raw = await asyncio.gather(
            _attempt(self.client.get_sensitive_area_catalog()) if catalog else _skipped(),
            _attempt(self.client.list_department_directory()) if directory else _skipped(),
        )
        return self._reference_from(catalog_raw, directory_raw)

    async def load_many(
        self,
        plan_ids: Iterable[Any],
        concurrency: int = 4,
        cached_rows: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> BatchLoadResult:
        """
        Назначение:
            Пакетная загрузка планов с ограничением параллелизма.
        Контракт:
            Фатальная ошибка одного плана попадает в failed и не влияет на остальные.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))
        rows = cached_rows or {}
        keys: list[str] = []
        for raw in plan_ids:
            key = canonical_id(raw)
            if key and key not in keys:
                keys.append(key)

        async def one(key: str) -> tuple[str, PlanLoadResult | None, DiagnosticItem | None]:
            async with semaphore:
                try:
                    return key, await self.load(key, cached_row=rows.get(key)), None
                except Exception as exc:
                    return key, None, _diagnostic(DiagnosticStage.LOAD, exc, "plan", f"Plan {key}")

        batch = BatchLoadResult()
        for key, loaded, error in await asyncio.gather(*(one(k) for k in keys)):
            if loaded is not None:
                batch.loaded[key] = loaded
            elif error is not None:
                batch.failed[key] = error
        return batch

    async def fetch_summary_rows(self) -> dict[str, dict[str, Any]]:
        """
        Назначение:
            Строки списка планов по plan_id (источник fallback для load/load_many).
        """
        rows: dict[str, dict[str, Any]] = {}
        for row in unwrap(await self.client.list_plans()):
            if not isinstance(row, Mapping):
                continue
            key = extract_plan_id(row)
            if key and key not in rows:
                rows[key] = dict(row)
        return rows

    def enrich_departments(
        self,
        departments: Iterable[DepartmentAssociation],
        reference: ReferenceData,
    ) -> tuple[tuple[DepartmentAssociation, ...], list[DiagnosticItem]]:
        """
        Назначение:
            Дополняет подразделения именем из справочника и согласует метки и id зон.
        Контракт:
            - метки → id по каталогу (объединяются с id из ответа);
            - только id → метки каталога (для отображения);
            - неразрешённые метки возвращаются предупреждениями RESOLVE.
        """
        names = name_map(reference.directory)
        warnings: list[DiagnosticItem] = []
        enriched: list[DepartmentAssociation] = []
        for dept in departments:
            area_ids = set(dept.sensitive_area_ids)
            labels = set(dept.sensitive_area_labels)
            if labels and reference.catalog:
                resolution = self.resolver.resolve(dept.dept_id, labels, reference.catalog, reference.directory)
                area_ids |= resolution.area_ids
                for label in sorted(resolution.unmatched_labels):
                    warnings.append(
                        DiagnosticItem(
                            stage=DiagnosticStage.RESOLVE,
                            code=ErrorCode.RESOLUTION_AMBIGUOUS.value
                            if label in resolution.ambiguous
                            else ErrorCode.RESOLUTION_UNMATCHED.value,
                            field=f"departments.{dept.dept_id}",
                            message=f"Sensitive area '{label}' not resolved",
                        )
                    )
            elif area_ids and not labels:
                labels = set(self.resolver.labels_for_ids(dept.dept_id, area_ids, reference.catalog))
            enriched.append(
                replace(
                    dept,
                    sensitive_flag=dept.sensitive_flag or bool(area_ids or labels),
                    sensitive_area_ids=frozenset(area_ids),
                    sensitive_area_labels=frozenset(labels),
                    dept_name=dept.dept_name or names.get(dept.dept_id),
                )
            )
        return tuple(enriched), warnings

    def _reference_from(self, catalog_raw: _Fetched, directory_raw: _Fetched) -> ReferenceData:
        reference = ReferenceData()
        if catalog_raw.ok:
            reference.catalog = parse_catalog(catalog_raw.payload)
        else:
            reference.unavailable.add("catalog")
            reference.warnings.append(
                DiagnosticItem(
                    stage=DiagnosticStage.LOAD,
                    code=ErrorCode.CATALOG_UNAVAILABLE.value,
                    field="catalog",
                    message=f"Sensitive area catalog unavailable: {catalog_raw.error}",
                )
            )
        if directory_raw.ok:
            reference.directory = parse_department_directory(directory_raw.payload)
        else:
            reference.unavailable.add("directory")
            reference.warnings.append(
                DiagnosticItem(
                    stage=DiagnosticStage.LOAD,
                    code=ErrorCode.DIRECTORY_UNAVAILABLE.value,
                    field="directory",
                    message=f"Department directory unavailable: {directory_raw.error}",
                )
            )
        return reference

    @staticmethod
    def _from_fetched(spec: AssociationSpec, fetched: _Fetched) -> KindLoadResult:
        if not fetched.ok:
            return KindLoadResult(
                kind=spec.kind,
                items=(),
                error=_diagnostic(DiagnosticStage.LOAD, fetched.error, spec.kind.value, f"{spec.kind.value} not loaded"),
            )
        return KindLoadResult(kind=spec.kind, items=tuple(parse_collection(fetched.payload, spec.parse)))


def _embedded(record: Mapping[str, Any], spec: AssociationSpec) -> Any | None:
    for key in spec.embedded_keys:
        value = record.get(key)
        if is_collection_payload(value):
            return value
    return None


__all__ = [
    "BatchLoadResult",
    "KindLoadResult",
    "PlanAggregateLoader",
    "PlanLoadResult",
    "ReferenceData",
]
