from __future__ import annotations

from typing import Any

MASK = "***"

# ключи сравниваются без регистра
SECRET_KEYS = frozenset({"api_token", "apitoken", "token", "authorization", "access_token", "password"})


def maskSecret(value: str | None) -> str | None:
    """Значение токена для stdout/логов: '***' или None, если токен не задан."""
    return None if value is None else MASK


def maskSecretsInObject(obj: Any, keys: frozenset[str] = SECRET_KEYS) -> Any:
    """
    Назначение:
        Копия JSON-структуры (dict/list/tuple) для вывода в stdout,
        где значения секретных ключей заменены на '***'.
    Контракт:
        Исходный объект не меняется; пустые секреты (None) остаются None.
    """
    if isinstance(obj, dict):
        return {
            key: maskSecret(value) if str(key).lower() in keys else maskSecretsInObject(value, keys)
            for key, value in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [maskSecretsInObject(item, keys) for item in obj]
    return obj
