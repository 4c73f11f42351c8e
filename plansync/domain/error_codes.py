from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """
    Назначение:
        Единая таксономия кодов ошибок для диагностик загрузки/синхронизации.
    """

    NETWORK_ERROR = "NETWORK_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    INVALID_JSON = "INVALID_JSON"
    API_ERROR = "API_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
    PLAN_ID_MISSING = "PLAN_ID_MISSING"
    ROOT_PERSIST_FAILED = "ROOT_PERSIST_FAILED"
    LOAD_FAILED = "LOAD_FAILED"
    DESIRED_STATE_UNAVAILABLE = "DESIRED_STATE_UNAVAILABLE"
    REPLACE_ABORTED = "REPLACE_ABORTED"
    CATALOG_UNAVAILABLE = "CATALOG_UNAVAILABLE"
    DIRECTORY_UNAVAILABLE = "DIRECTORY_UNAVAILABLE"
    RESOLUTION_UNMATCHED = "RESOLUTION_UNMATCHED"
    RESOLUTION_AMBIGUOUS = "RESOLUTION_AMBIGUOUS"
    FORM_INVALID = "FORM_INVALID"

    @classmethod
    def from_status(cls, status_code: int | None) -> "ErrorCode":
        """
        Назначение:
            Подбор общего кода по HTTP-статусу.
        """
        if status_code is None:
            return cls.NETWORK_ERROR
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 403:
            return cls.FORBIDDEN
        if status_code == 404:
            return cls.NOT_FOUND
        if status_code == 409:
            return cls.CONFLICT
        return cls.HTTP_ERROR
