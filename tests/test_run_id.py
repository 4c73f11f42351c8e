from __future__ import annotations

import re
from datetime import datetime, timezone

from plansync.common.run_id import generate_run_id


def test_run_id_is_time_prefixed_and_unique():
    now = datetime(2024, 3, 1, 9, 5, 7, tzinfo=timezone.utc)
    first = generate_run_id(now)
    second = generate_run_id(now)

    assert re.fullmatch(r"20240301T090507Z-[0-9a-f]{8}", first)
    assert first != second
