"""Tests for the metric normalizer."""

from datetime import datetime, timezone

from llmusage.normalize import (
    FIVE_HOURS_MS,
    QuotaEntry,
    after_seconds,
    as_float,
    as_int,
    canonical_label,
    dedupe_keep_worst,
    from_epoch_millis,
    from_epoch_seconds,
    metrics_from_quota,
    model_family_sort_key,
    parse_iso8601,
)


class TestCanonicalLabel:
    def test_strips_trailing_qualifier(self):
        assert canonical_label("Gemini 3 Pro (High)") == "Gemini 3 Pro"

    def test_keeps_plain_label(self):
        assert canonical_label("Claude Sonnet 4.5") == "Claude Sonnet 4.5"

    def test_only_trailing_group_removed(self):
        assert canonical_label("GPT (OSS) 120B (Medium)") == "GPT (OSS) 120B"


class TestDedupeKeepWorst:
    def test_keeps_lowest_remaining(self):
        entries = [
            QuotaEntry("Model X (High)", 0.8),
            QuotaEntry("Model X (Low)", 0.3),
        ]
        metrics = metrics_from_quota(entries, "5 hours", FIVE_HOURS_MS)

        assert len(metrics) == 1
        assert metrics[0].label == "Model X"
        assert metrics[0].used_percent == 70

    def test_worst_entry_carries_its_reset_time(self):
        early = datetime(2026, 1, 1, tzinfo=timezone.utc)
        late = datetime(2026, 1, 2, tzinfo=timezone.utc)
        result = dedupe_keep_worst(
            [QuotaEntry("M (a)", 0.9, early), QuotaEntry("M (b)", 0.1, late)]
        )
        assert result == [QuotaEntry("M", 0.1, late)]

    def test_distinct_labels_survive(self):
        result = dedupe_keep_worst([QuotaEntry("B", 0.5), QuotaEntry("A", 0.5)])
        assert [e.label for e in result] == ["A", "B"]

    def test_family_ordering(self):
        labels = [
            "GPT-OSS 120B (Medium)",
            "Claude Sonnet 4.5",
            "Gemini 3 Flash",
            "Claude Opus 4.5 (Thinking)",
            "Gemini 3 Pro (High)",
        ]
        result = dedupe_keep_worst(
            [QuotaEntry(label, 1.0) for label in labels],
            sort_key=model_family_sort_key,
        )
        assert [e.label for e in result] == [
            "Gemini 3 Pro",
            "Gemini 3 Flash",
            "Claude Opus 4.5",
            "Claude Sonnet 4.5",
            "GPT-OSS 120B",
        ]

    def test_period_attached(self):
        metrics = metrics_from_quota([QuotaEntry("M", 0.25)], "5 hours", FIVE_HOURS_MS)
        assert metrics[0].period.label == "5 hours"
        assert metrics[0].period.duration_ms == FIVE_HOURS_MS
        assert metrics[0].used_percent == 75


class TestCoercion:
    def test_parse_iso8601_zulu(self):
        parsed = parse_iso8601("2026-03-01T12:00:00Z")
        assert parsed == datetime(2026, 3, 1, 12, tzinfo=timezone.utc)

    def test_parse_iso8601_naive_assumed_utc(self):
        assert parse_iso8601("2026-03-01T12:00:00").tzinfo is not None

    def test_parse_iso8601_rejects_garbage(self):
        assert parse_iso8601("not a date") is None
        assert parse_iso8601(None) is None

    def test_epoch_millis_from_string(self):
        assert from_epoch_millis("1735689600000") == datetime(
            2025, 1, 1, tzinfo=timezone.utc
        )

    def test_as_float_and_int(self):
        assert as_float("12.5") == 12.5
        assert as_float(True) is None
        assert as_int(3.0) == 3
        assert as_int(3.5) is None


class TestOutOfRangeValues:
    def test_non_finite_floats_are_missing(self):
        assert as_float("inf") is None
        assert as_float(float("nan")) is None
        assert as_float(10**400) is None

    def test_out_of_range_epochs_are_missing(self):
        assert from_epoch_millis("1e20") is None
        assert from_epoch_seconds(1e300) is None

    def test_after_seconds_overflow(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert after_seconds(start, 1e300) is None
        assert after_seconds(start, 60) == datetime(2026, 1, 1, 0, 1, tzinfo=timezone.utc)
