from __future__ import annotations

from typing import Any, Iterable, Mapping


class _Absent:
    """Маркер отсутствующего поля: отличается и от None, и от пустой строки."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT: Any = _Absent()

ENVELOPE_KEYS: tuple[str, ...] = ("values", "$values")


def unwrap(payload: Any) -> list[dict[str, Any]] | list[Any]:
    """
    Назначение:
        Единая граница нормализации коллекций удалённого API.

    Контракт:
        - list → тот же набор элементов (новый список, порядок сохраняется);
        - {"values": [...]} / {"$values": [...]} → содержимое конверта;
        - {"values": null} / {} → [] (эндпоинты так сообщают "нет данных");
        - иной dict → одноэлементный список;
        - всё остальное (None, строки, числа) → [].
        Никогда не бросает исключений. Повторное применение к результату
        даёт тот же результат.
    """
    if isinstance(payload, list):
        return list(payload)
    if not isinstance(payload, Mapping):
        return []
    if not payload:
        return []
    for key in ENVELOPE_KEYS:
        if key in payload:
            inner = payload[key]
            if isinstance(inner, list):
                return list(inner)
            if inner is None:
                return []
    return [dict(payload)]


def is_collection_payload(payload: Any) -> bool:
    """Признак того, что payload является коллекцией (массив или конверт)."""
    if isinstance(payload, list):
        return True
    if isinstance(payload, Mapping):
        return any(isinstance(payload.get(key), list) for key in ENVELOPE_KEYS)
    return False


def _lookup(record: Mapping[str, Any], name: str) -> Any:
    # "template.templateId": путь во вложенный объект
    current: Any = record
    for part in name.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return ABSENT
        current = current[part]
    return current


def resolve_field(record: Any, candidates: Iterable[str], *, skip_blank: bool = False) -> Any:
    """
    Назначение:
        Канонизация поля: значение первого присутствующего non-null алиаса.

    Контракт:
        - Порядок кандидатов задаёт приоритет, порядок ключей в record не важен.
        - Кандидат с точкой читается как путь во вложенные объекты.
        - skip_blank=True дополнительно пропускает пустые/пробельные строки.
        - Если ничего не найдено, возвращается ABSENT (не None и не "").
    """
    if not isinstance(record, Mapping):
        return ABSENT
    for name in candidates:
        value = _lookup(record, name)
        if value is ABSENT or value is None:
            continue
        if skip_blank and isinstance(value, str) and not value.strip():
            continue
        return value
    return ABSENT


def is_absent(value: Any) -> bool:
    return value is ABSENT


__all__ = ["ABSENT", "unwrap", "resolve_field", "is_absent", "is_collection_payload"]
