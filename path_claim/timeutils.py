"""Time conversion and display helpers."""

from __future__ import annotations

from datetime import datetime, tzinfo

from zoneinfo import ZoneInfo


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"无效时区：{tz_name!r}。例如可用：Asia/Shanghai") from exc


def dt_from_epoch_ms(epoch_ms: int, tz_name: str) -> datetime:
    """Convert epoch milliseconds to a timezone-aware datetime."""

    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=tzinfo_from_name(tz_name))


def format_epoch_ms(epoch_ms: int | None, tz_name: str) -> str:
    if epoch_ms is None:
        return "-"
    return dt_from_epoch_ms(epoch_ms, tz_name).strftime("%Y-%m-%d %H:%M:%S")


def format_duration_ms(duration_ms: int) -> str:
    """``H:MM:SS`` (or ``M:SS`` under an hour)."""

    total = max(0, int(duration_ms // 1000))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
