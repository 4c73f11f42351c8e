from __future__ import annotations

from datetime import date, datetime


def getNowIso() -> str:
    """
    Назначение:
        Возвращает текущее время в ISO 8601 с timezone.

    Выходные данные:
        str
            Например: 2026-01-11T18:22:10+01:00
    """
    return datetime.now().astimezone().isoformat()


def getDurationMs(startMonotonic: float, endMonotonic: float) -> int:
    """
    Назначение:
        Считает длительность в миллисекундах по monotonic timestamps.
    """
    return int((endMonotonic - startMonotonic) * 1000)


def parseIsoDate(value: object) -> date | None:
    """
    Назначение:
        Приводит дату/дату-время из API или формы к date (точность до дня).

    Входные данные:
        value: str | date | datetime | None
            Поддерживаются "2026-03-01", "2026-03-01T00:00:00Z",
            "2026-03-01T00:00:00.000+07:00".

    Выходные данные:
        date | None
            None, если значение пустое или не распознано.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # fromisoformat в 3.10 не понимает суффикс Z
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def formatIsoDate(value: date | None) -> str | None:
    """
    Назначение:
        Сериализует дату в формат, который ожидает API (полночь UTC).
    """
    if value is None:
        return None
    return f"{value.isoformat()}T00:00:00Z"
