from __future__ import annotations

import uuid
from datetime import datetime, timezone


def generate_run_id(now: datetime | None = None) -> str:
    """
    Назначение:
        run_id запуска команды: UTC-метка + короткий случайный суффикс.
        Файлы логов и отчётов одной команды сортируются по времени запуска.
    """
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"
