from __future__ import annotations

import re

ISO8601_DURATION_PATTERN = re.compile(
    r"PT(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?"
)
SHORT_MAX_SECONDS = 60


def parse_iso8601_duration_seconds(raw_value: object) -> int:
    if not isinstance(raw_value, str):
        return 0
    matched = ISO8601_DURATION_PATTERN.search(raw_value.strip())
    if matched is None:
        return 0

    hours = int(matched.group("hours") or 0)
    minutes = int(matched.group("minutes") or 0)
    seconds = int(matched.group("seconds") or 0)
    return hours * 3_600 + minutes * 60 + seconds


def is_short_duration(raw_value: object) -> bool:
    seconds = parse_iso8601_duration_seconds(raw_value)
    return 0 < seconds <= SHORT_MAX_SECONDS


def format_duration(raw_value: object) -> str:
    total = parse_iso8601_duration_seconds(raw_value)
    hours, remainder = divmod(total, 3_600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
