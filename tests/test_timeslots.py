from __future__ import annotations

import pytest

from backend.domain.constraints import BookingWindowConfig
from backend.domain.models import Interval, TimeOfDay
from backend.domain.timeslots import SlotCatalog, generate_slots, overlaps, valid_end_times


def _t(value: str) -> TimeOfDay:
    return TimeOfDay.parse(value)


def _catalog() -> SlotCatalog:
    return SlotCatalog(
        BookingWindowConfig(
            open_minute=7 * 60,
            close_minute=20 * 60,
            step_minutes=30,
            min_duration_minutes=30,
            max_duration_minutes=8 * 60,
        )
    )


def test_time_of_day_parses_and_formats() -> None:
    assert _t("07:30").minutes == 450
    assert str(TimeOfDay(450)) == "07:30"
    assert TimeOfDay.of(13, 5) == _t("13:05")
    assert _t("09:00:00") == TimeOfDay.of(9)


@pytest.mark.parametrize("raw", ["7:3x", "24:00", "12:60", "noon", "09:00:30"])
def test_time_of_day_rejects_malformed_input(raw: str) -> None:
    with pytest.raises(ValueError):
        TimeOfDay.parse(raw)


def test_time_of_day_bounds() -> None:
    with pytest.raises(ValueError):
        TimeOfDay(1440)
    with pytest.raises(ValueError):
        TimeOfDay(-1)


@pytest.mark.parametrize(
    ("value", "expected"),
    [("00:00", "12:00 AM"), ("07:05", "7:05 AM"), ("12:00", "12:00 PM"), ("19:30", "7:30 PM")],
)
def test_twelve_hour_labels(value: str, expected: str) -> None:
    assert _t(value).to_12_hour() == expected


def test_interval_requires_end_after_start() -> None:
    with pytest.raises(ValueError):
        Interval.parse("10:00", "10:00")
    with pytest.raises(ValueError):
        Interval.parse("11:00", "10:00")
    assert Interval.parse("10:00", "11:30").duration_minutes == 90


def test_touching_intervals_do_not_overlap() -> None:
    first = Interval.parse("09:00", "10:00")
    second = Interval.parse("10:00", "11:00")
    assert not overlaps(first, second)
    assert not overlaps(second, first)


def test_overlap_is_symmetric_and_reflexive() -> None:
    outer = Interval.parse("09:00", "12:00")
    inner = Interval.parse("10:00", "10:30")
    partial = Interval.parse("11:30", "13:00")
    for a, b in [(outer, inner), (outer, partial), (inner, partial)]:
        assert overlaps(a, b) == overlaps(b, a)
    for interval in (outer, inner, partial):
        assert overlaps(interval, interval)
    assert overlaps(outer, inner)
    assert overlaps(outer, partial)
    assert not overlaps(inner, partial)


def test_generate_slots_default_grid() -> None:
    slots = generate_slots(7 * 60, 20 * 60, 30)
    assert slots[0] == _t("07:00")
    assert slots[-1] == _t("19:30")
    assert len(slots) == 26
    assert slots == sorted(set(slots))


def test_generate_slots_respects_minimum_duration() -> None:
    slots = generate_slots(_t("07:00"), _t("20:00"), 30, min_duration=60)
    assert slots[-1] == _t("19:00")
    assert all(slot.minutes + 60 <= 20 * 60 for slot in slots)


@pytest.mark.parametrize(
    ("open_minute", "close_minute", "step", "min_duration"),
    [
        (600, 540, 30, None),
        (600, 600, 30, None),
        (420, 1200, 0, None),
        (420, 1200, -15, None),
        (420, 1200, 30, 0),
        (-10, 1200, 30, None),
        (420, 1440, 30, None),
    ],
)
def test_generate_slots_invalid_input_is_empty(open_minute, close_minute, step, min_duration) -> None:
    assert generate_slots(open_minute, close_minute, step, min_duration=min_duration) == []


def test_valid_end_times_adds_off_grid_closing_time() -> None:
    ends = valid_end_times(
        _t("09:00"),
        [_t("09:30"), _t("10:00"), _t("10:00"), _t("08:30")],
        min_duration=30,
        max_duration=120,
        close_minute=_t("10:45"),
    )
    assert ends == [_t("09:30"), _t("10:00"), _t("10:45")]


def test_valid_end_times_honours_duration_bounds() -> None:
    candidates = [TimeOfDay(value) for value in range(7 * 60 + 30, 20 * 60 + 1, 30)]
    ends = valid_end_times(_t("09:00"), candidates, 60, 90, 20 * 60)
    assert ends == [_t("10:00"), _t("10:30")]


def test_valid_end_times_invalid_input_is_empty() -> None:
    candidates = [_t("10:00")]
    assert valid_end_times(_t("09:00"), candidates, 0, 60, 1200) == []
    assert valid_end_times(_t("09:00"), candidates, 60, 30, 1200) == []
    assert valid_end_times(_t("20:00"), candidates, 30, 60, 1200) == []


def test_catalog_end_times_never_exceed_close_or_max_duration() -> None:
    catalog = _catalog()
    close = _t("20:00")
    for start in catalog.start_times():
        ends = catalog.end_times_for(start)
        assert ends, f"start {start} offers no end time"
        for end in ends:
            assert start < end <= close
            assert 30 <= end.minutes - start.minutes <= 480


def test_catalog_last_slot_and_long_bookings() -> None:
    catalog = _catalog()
    assert catalog.end_times_for(_t("19:30")) == [_t("20:00")]
    morning = catalog.end_times_for(_t("07:00"))
    assert morning[0] == _t("07:30")
    assert morning[-1] == _t("15:00")
    assert catalog.end_times_for(_t("12:00"))[-1] == _t("20:00")


def test_catalog_rejects_off_grid_starts() -> None:
    catalog = _catalog()
    assert catalog.end_times_for(_t("09:15")) == []
    assert not catalog.is_bookable(Interval.parse("09:15", "10:15"))
    assert catalog.is_bookable(Interval.parse("09:00", "10:30"))
    assert not catalog.is_bookable(Interval.parse("09:00", "17:30"))
