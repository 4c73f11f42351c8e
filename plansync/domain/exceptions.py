from __future__ import annotations

from enum import Enum
from typing import Any

from plansync.domain.error_codes import ErrorCode


class ErrorCategory(str, Enum):
    TRANSPORT = "transport"
    NOT_FOUND = "not_found"
    PRECONDITION = "precondition"


class PlanSyncError(Exception):
    """
    Назначение:
        Базовая ошибка синхронизации планов: категория, код ErrorCode, признак повтора.
    Контракт:
        code всегда строковое значение; для неизвестных кодов error_code → UNEXPECTED_ERROR.
    """

    category: ErrorCategory = ErrorCategory.PRECONDITION

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.details = details or {}

    @property
    def error_code(self) -> ErrorCode:
        try:
            return ErrorCode(self.code)
        except ValueError:
            return ErrorCode.UNEXPECTED_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class TransportError(PlanSyncError):
    """
    Назначение:
        Ошибка одного удалённого вызова (сеть/HTTP).
    Контракт:
        - Ядро не повторяет такие вызовы: политика ретраев живёт в HTTP-клиенте.
        - status_code=None означает сетевую ошибку без ответа.
    """

    category = ErrorCategory.TRANSPORT

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            code=code or (f"HTTP_{status_code}" if status_code else "API_ERROR"),
            message=message,
            retryable=retryable,
            details=details,
        )
        self.status_code = status_code

    @property
    def error_code(self) -> ErrorCode:
        if self.code == "NETWORK_ERROR":
            return ErrorCode.NETWORK_ERROR
        if self.code == "INVALID_JSON":
            return ErrorCode.INVALID_JSON
        if self.status_code is None:
            return ErrorCode.API_ERROR
        return ErrorCode.from_status(self.status_code)


class PlanNotFoundError(PlanSyncError):
    """
    Назначение:
        Корень плана не получен ни из detail-эндпоинта, ни из кэшированной строки списка.
        Фатально только для этого плана.
    """

    category = ErrorCategory.NOT_FOUND

    def __init__(self, plan_id: str, message: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.PLAN_NOT_FOUND.value,
            message=message or f"Plan {plan_id} could not be loaded",
            details=details,
        )
        self.plan_id = plan_id


class MissingPlanIdError(PlanSyncError):
    """Попытка diff/sync для агрегата без plan_id (допустим только create)."""

    def __init__(self, message: str = "plan_id is required for reconciliation"):
        super().__init__(code=ErrorCode.PLAN_ID_MISSING.value, message=message)


def describe_error(exc: BaseException) -> tuple[str, str]:
    """
    Назначение:
        (код, сообщение) для диагностики из любого исключения удалённого шага.
    """
    if isinstance(exc, PlanSyncError):
        return exc.error_code.value, exc.message
    return ErrorCode.UNEXPECTED_ERROR.value, str(exc) or exc.__class__.__name__


__all__ = [
    "ErrorCategory",
    "PlanSyncError",
    "TransportError",
    "PlanNotFoundError",
    "MissingPlanIdError",
    "describe_error",
]
