"""Run identifier helpers."""

from __future__ import annotations

import secrets

from carparks.common.time_utils import utc_now


def generate_run_id() -> str:
    """Time-sortable id; the suffix separates runs started in the same microsecond."""
    return f"{utc_now():run-%Y%m%dT%H%M%S%fZ}-{secrets.token_hex(2)}"
