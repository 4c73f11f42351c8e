from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Iterable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class SyncPlan(Generic[T]):
    """
    Назначение:
        Результат сверки одной коллекции ассоциаций.

    Контракт:
        - to_add: элементы desired, которых нет в current (плюс заменяемые);
        - to_remove: ключи current, которых нет в desired (плюс заменяемые);
        - replaced: ключи, присутствующие в обеих сторонах с отличающимися
          атрибутами (remove старого + add нового);
        - порядок следует порядку входных коллекций.
    """

    to_add: tuple[T, ...] = ()
    to_remove: tuple[Hashable, ...] = ()
    replaced: tuple[Hashable, ...] = ()
    unchanged: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    @property
    def op_count(self) -> int:
        return len(self.to_add) + len(self.to_remove)


def _index(items: Iterable[T], identity: Callable[[T], Hashable]) -> dict[Hashable, T]:
    index: dict[Hashable, T] = {}
    for item in items:
        key = identity(item)
        if key is None:
            continue
        # первый выигрывает, как и при сборке агрегата
        index.setdefault(key, item)
    return index


def reconcile(
    desired: Iterable[T],
    current: Iterable[T],
    identity: Callable[[T], Hashable],
    attributes: Callable[[T], Any] | None = None,
) -> SyncPlan[T]:
    """
    Назначение:
        Сверка desired vs current по ключу идентичности.

    Алгоритм:
        to_add    = { d ∈ desired : id(d) ∉ id(current) }
        to_remove = { id(c) : c ∈ current, id(c) ∉ id(desired) }
        Если передан attributes, ключи из пересечения с разными атрибутами
        попадают в обе стороны (удалить старое, добавить новое).
        Без attributes совпадение ключа считается совпадением элемента.

    Гарантии:
        Чистая функция; reconcile(S, S) пуст для любого S.
    """
    desired_index = _index(desired, identity)
    current_index = _index(current, identity)

    to_add: list[T] = []
    to_remove: list[Hashable] = []
    replaced: list[Hashable] = []
    unchanged = 0

    for key in current_index:
        if key not in desired_index:
            to_remove.append(key)

    for key, item in desired_index.items():
        current_item = current_index.get(key)
        if key not in current_index:
            to_add.append(item)
            continue
        if attributes is not None and attributes(item) != attributes(current_item):
            replaced.append(key)
            to_remove.append(key)
            to_add.append(item)
            continue
        unchanged += 1

    return SyncPlan(
        to_add=tuple(to_add),
        to_remove=tuple(to_remove),
        replaced=tuple(replaced),
        unchanged=unchanged,
    )


__all__ = ["SyncPlan", "reconcile"]
