"""Pure helpers that turn raw service payloads into the common metric schema."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from llmusage.models import PercentFormat, UsageMetric, UsagePeriod

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
FIVE_HOURS_MS = 5 * HOUR_MS
SEVEN_DAYS_MS = 7 * DAY_MS
THIRTY_DAYS_MS = 30 * DAY_MS

_QUALIFIER_RE = re.compile(r"\s*\([^)]*\)\s*$")


@dataclass(frozen=True)
class QuotaEntry:
    """A single raw quota reading as reported by an upstream API."""

    label: str
    remaining_fraction: float
    resets_at: Optional[datetime] = None


def canonical_label(label: str) -> str:
    """Strip a trailing parenthesized qualifier.

    >>> canonical_label("Gemini 3 Pro (High)")
    'Gemini 3 Pro'
    """
    return _QUALIFIER_RE.sub("", label).strip()


def used_percent_from_remaining(remaining_fraction: float) -> float:
    return (1.0 - remaining_fraction) * 100.0


def dedupe_keep_worst(
    entries: Iterable[QuotaEntry],
    sort_key: Optional[Callable[[str], Any]] = None,
) -> list[QuotaEntry]:
    """Collapse entries sharing a canonical label into their worst-case reading.

    Within each group the entry with the lowest remaining fraction wins; its
    label is replaced by the canonical one.  Groups are emitted sorted by
    ``sort_key(label)`` (plain label order when omitted).
    """
    worst: dict[str, QuotaEntry] = {}
    for entry in entries:
        label = canonical_label(entry.label)
        current = worst.get(label)
        if current is None or entry.remaining_fraction < current.remaining_fraction:
            worst[label] = QuotaEntry(label, entry.remaining_fraction, entry.resets_at)

    key = sort_key or (lambda label: label)
    return sorted(worst.values(), key=lambda e: key(e.label))


def metrics_from_quota(
    entries: Iterable[QuotaEntry],
    period_label: str,
    duration_ms: Optional[int],
    sort_key: Optional[Callable[[str], Any]] = None,
) -> list[UsageMetric]:
    """Dedupe raw quota entries and emit one percent metric per bucket."""
    return [
        UsageMetric(
            label=entry.label,
            used_percent=used_percent_from_remaining(entry.remaining_fraction),
            format=PercentFormat(),
            period=UsagePeriod(period_label, entry.resets_at, duration_ms),
        )
        for entry in dedupe_keep_worst(entries, sort_key)
    ]


def model_family_sort_key(label: str) -> str:
    """Order Gemini Pro, Gemini, Claude Opus, Claude, then everything else."""
    lower = label.lower()
    if "gemini" in lower and "pro" in lower:
        return f"0a_{label}"
    if "gemini" in lower:
        return f"0b_{label}"
    if "claude" in lower and "opus" in lower:
        return f"1a_{label}"
    if "claude" in lower:
        return f"1b_{label}"
    return f"2_{label}"


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def parse_iso8601(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _from_timestamp(seconds: Optional[float]) -> Optional[datetime]:
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def from_epoch_seconds(value: Any) -> Optional[datetime]:
    """Out-of-range timestamps read as missing."""
    return _from_timestamp(as_float(value))


def from_epoch_millis(value: Any) -> Optional[datetime]:
    """Millisecond timestamps arrive as numbers or numeric strings."""
    number = as_float(value)
    return _from_timestamp(number / 1000.0 if number is not None else None)


def after_seconds(start: datetime, seconds: Optional[float]) -> Optional[datetime]:
    """``start + seconds``, or None when the offset is missing or out of range."""
    if seconds is None:
        return None
    try:
        return start + timedelta(seconds=seconds)
    except OverflowError:
        return None


def as_float(value: Any) -> Optional[float]:
    """Coerce to a finite float; NaN and infinities read as missing."""
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip())
        else:
            return None
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None
