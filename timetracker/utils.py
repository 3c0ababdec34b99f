from __future__ import annotations

import datetime as dt
from uuid import uuid4


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def parse_iso8601(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def generate_id() -> str:
    return uuid4().hex


def format_time(seconds: int) -> str:
    """Render seconds as HH:MM:SS (hours are not capped at 24)."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def calculate_duration(start_time: str, end_time: str) -> int:
    start = parse_iso8601(start_time)
    end = parse_iso8601(end_time)
    if start is None or end is None:
        raise ValueError("invalid timestamp")
    return max(0, int((end - start).total_seconds()))


def format_hours(hours: float) -> str:
    return "1 hour" if hours == 1 else f"{hours:g} hours"
