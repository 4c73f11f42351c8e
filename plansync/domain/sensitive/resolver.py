from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from plansync.domain.models import DepartmentRef, SensitiveAreaCatalogEntry, canonical_id, normalize_label

COMPOUND_SEPARATOR = " - "


class MatchTier:
    EXACT = "exact"
    CONTAINS = "contains"
    COMPOUND = "compound"


@dataclass(frozen=True)
class LabelMatch:
    label: str
    area_id: str
    dept_id: str
    tier: str


@dataclass(frozen=True)
class ResolutionResult:
    """
    Назначение:
        Итог разрешения меток одного подразделения.
    Контракт:
        - area_ids: найденные идентификаторы каталога;
        - unmatched_labels: метки без однозначного совпадения (включая неоднозначные);
        - ambiguous: метка → кандидаты area_id (подмножество unmatched_labels).
    """

    area_ids: frozenset[str] = frozenset()
    unmatched_labels: frozenset[str] = frozenset()
    ambiguous: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    matches: tuple[LabelMatch, ...] = ()

    @property
    def fully_resolved(self) -> bool:
        return not self.unmatched_labels


@dataclass(frozen=True)
class FlatResolution:
    """Разрешение плоского списка меток по выбранным подразделениям."""

    by_dept: Mapping[str, ResolutionResult]
    unassigned_labels: frozenset[str]
    ambiguous: Mapping[str, tuple[str, ...]]

    def labels_for(self, dept_id: str) -> frozenset[str]:
        result = self.by_dept.get(dept_id)
        if result is None:
            return frozenset()
        return frozenset(match.label for match in result.matches) | result.unmatched_labels


def department_name_index(
    directory: Iterable[DepartmentRef] | Mapping[str, str] | None,
) -> dict[str, str]:
    """
    Назначение:
        Индекс "нормализованное имя подразделения → dept_id".
        Принимает справочник подразделений или готовую карту имя → id.
    """
    index: dict[str, str] = {}
    if directory is None:
        return index
    if isinstance(directory, Mapping):
        pairs = [(name, dept_id) for name, dept_id in directory.items()]
    else:
        pairs = [(ref.name, ref.dept_id) for ref in directory]
    for name, dept_id in pairs:
        key = normalize_label(name)
        ident = canonical_id(dept_id)
        # при совпадении имён выигрывает первое
        if key and ident and key not in index:
            index[key] = ident
    return index


class SensitiveAreaResolver:
    """
    Назначение/ответственность:
        Сопоставление человекочитаемых меток чувствительных зон с каталогом.

    Алгоритм (для каждой метки независимо):
        1) точное совпадение нормализованной метки (trim + casefold) в пределах dept_id;
        2) вхождение подстроки в любую сторону в пределах dept_id:
           единственный кандидат выигрывает, несколько кандидатов — неоднозначность;
        3) составная форма "<зона> - <подразделение>": имя подразделения
           переводится в dept_id по индексу имён, шаги 1–2 повторяются для него;
        4) иначе метка попадает в unmatched_labels.

    Ограничения:
        Шаг 2 может дать ложное совпадение, если одна метка является префиксом
        другой, не связанной; неоднозначность сообщается, а не угадывается.
        Компонент чистый: каталог и индекс имён передаются явно.
    """

    def resolve(
        self,
        dept_id: str | None,
        labels: Iterable[str],
        catalog: Sequence[SensitiveAreaCatalogEntry],
        dept_name_map: Iterable[DepartmentRef] | Mapping[str, str] | None = None,
    ) -> ResolutionResult:
        dept_key = canonical_id(dept_id)
        name_index = department_name_index(dept_name_map)

        area_ids: list[str] = []
        unmatched: list[str] = []
        ambiguous: dict[str, tuple[str, ...]] = {}
        matches: list[LabelMatch] = []

        for label in _unique_labels(labels):
            match, candidates = self._resolve_label(dept_key, label, catalog, name_index)
            if match is not None:
                matches.append(match)
                if match.area_id not in area_ids:
                    area_ids.append(match.area_id)
                continue
            unmatched.append(label)
            if candidates:
                ambiguous[label] = candidates

        return ResolutionResult(
            area_ids=frozenset(area_ids),
            unmatched_labels=frozenset(unmatched),
            ambiguous=ambiguous,
            matches=tuple(matches),
        )

    def resolve_flat(
        self,
        labels: Iterable[str],
        dept_ids: Iterable[str],
        catalog: Sequence[SensitiveAreaCatalogEntry],
        dept_name_map: Iterable[DepartmentRef] | Mapping[str, str] | None = None,
    ) -> FlatResolution:
        """
        Назначение:
            Раскладывает плоский список меток ("зона - подразделение" или "зона")
            по выбранным подразделениям.

        Контракт:
            - составная метка относится к подразделению из её суффикса;
            - голая метка относится к каждому выбранному подразделению,
              где она разрешается;
            - метки, не попавшие ни в одно подразделение, возвращаются
              в unassigned_labels (вместе с неоднозначными).
        """
        selected = [d for d in (canonical_id(x) for x in dept_ids) if d]
        name_index = department_name_index(dept_name_map)

        per_dept: dict[str, list[str]] = {dept: [] for dept in selected}
        unassigned: list[str] = []
        ambiguous: dict[str, tuple[str, ...]] = {}

        for label in _unique_labels(labels):
            target = _compound_target(label, name_index)
            if target is not None and target in per_dept:
                per_dept[target].append(label)
                continue

            placed = False
            for dept in selected:
                match, candidates = self._resolve_label(dept, label, catalog, name_index)
                if match is not None:
                    per_dept[dept].append(label)
                    placed = True
                elif candidates:
                    ambiguous.setdefault(label, candidates)
            if not placed:
                unassigned.append(label)

        by_dept = {
            dept: self.resolve(dept, dept_labels, catalog, name_index)
            for dept, dept_labels in per_dept.items()
            if dept_labels
        }
        for result in by_dept.values():
            ambiguous.update(result.ambiguous)
        return FlatResolution(
            by_dept=by_dept,
            unassigned_labels=frozenset(unassigned),
            ambiguous=ambiguous,
        )

    def labels_for_ids(
        self,
        dept_id: str | None,
        area_ids: Iterable[str],
        catalog: Sequence[SensitiveAreaCatalogEntry],
    ) -> list[str]:
        """
        Назначение:
            Обратное отображение: area_id → метка каталога (для отображения
            и для отчётов, когда remote хранит только идентификаторы).
        """
        dept_key = canonical_id(dept_id)
        wanted = [a for a in (canonical_id(x) for x in area_ids) if a]
        by_id: dict[str, str] = {}
        for entry in catalog:
            if dept_key is not None and entry.dept_id != dept_key:
                continue
            by_id.setdefault(entry.area_id, entry.label)
        return [by_id[a] for a in wanted if a in by_id]

    def _resolve_label(
        self,
        dept_id: str | None,
        label: str,
        catalog: Sequence[SensitiveAreaCatalogEntry],
        name_index: Mapping[str, str],
    ) -> tuple[LabelMatch | None, tuple[str, ...]]:
        candidates: tuple[str, ...] = ()
        if dept_id is not None:
            entries = [e for e in catalog if e.dept_id == dept_id]
            found, candidates = _match_in_entries(label, entries)
            if found is not None:
                entry, tier = found
                return LabelMatch(label=label, area_id=entry.area_id, dept_id=dept_id, tier=tier), ()

        if COMPOUND_SEPARATOR in label:
            area_part, _, _ = label.partition(COMPOUND_SEPARATOR)
            target = _compound_target(label, name_index)
            # метка явно адресована другому подразделению
            if target is not None and (dept_id is None or target == dept_id):
                entries = [e for e in catalog if e.dept_id == target]
                found, compound_candidates = _match_in_entries(area_part, entries)
                if found is not None:
                    entry, _tier = found
                    return (
                        LabelMatch(label=label, area_id=entry.area_id, dept_id=target, tier=MatchTier.COMPOUND),
                        (),
                    )
                candidates = candidates or compound_candidates

        return None, candidates


def _match_in_entries(
    label: str,
    entries: Sequence[SensitiveAreaCatalogEntry],
) -> tuple[tuple[SensitiveAreaCatalogEntry, str] | None, tuple[str, ...]]:
    norm = normalize_label(label)
    if not norm:
        return None, ()

    for entry in entries:
        if entry.normalized_label == norm:
            return (entry, MatchTier.EXACT), ()

    contained: dict[str, SensitiveAreaCatalogEntry] = {}
    for entry in entries:
        other = entry.normalized_label
        if not other:
            continue
        if norm in other or other in norm:
            contained.setdefault(entry.area_id, entry)
    if len(contained) == 1:
        return (next(iter(contained.values())), MatchTier.CONTAINS), ()
    return None, tuple(contained.keys())


def _compound_target(label: str, name_index: Mapping[str, str]) -> str | None:
    if COMPOUND_SEPARATOR not in label:
        return None
    _, _, dept_part = label.partition(COMPOUND_SEPARATOR)
    return name_index.get(normalize_label(dept_part))


def _unique_labels(labels: Iterable[str]) -> list[str]:
    result: list[str] = []
    seen: set[str] = set()
    for raw in labels or ():
        if raw is None:
            continue
        label = str(raw).strip()
        key = normalize_label(label)
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(label)
    return result


__all__ = [
    "FlatResolution",
    "LabelMatch",
    "MatchTier",
    "ResolutionResult",
    "SensitiveAreaResolver",
    "department_name_index",
]
