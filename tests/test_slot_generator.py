# tests/test_slot_generator.py
from datetime import date

import pytest

from carebook.exceptions import InvalidInput
from carebook.services.slot_service import blocked_minutes_checker, generate_slots, slot_times
from carebook.storage.memory import BlockedPeriodRecord
from carebook.timeutils import day_of_week, format_minutes, parse_date, parse_hhmm


def test_slots_fill_the_window():
    assert slot_times("09:00", "12:00", 30) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]


def test_last_slot_must_end_inside_the_window():
    # 45 minute slots in a 100 minute window: 09:00 and 09:45 fit, 10:30 would end at 11:15
    assert slot_times("09:00", "10:40", 45) == ["09:00", "09:45"]


@pytest.mark.parametrize("start,end,duration", [
    (600, 600, 30),
    (660, 600, 30),
    (540, 560, 30),
    (540, 720, 0),
])
def test_degenerate_windows_have_no_slots(start, end, duration):
    assert generate_slots(start, end, duration) == []


WINDOWS = [
    (start, end, duration)
    for start in (0, 420, 540, 555)
    for end in (start + 1, start + 45, start + 180, start + 181, 1439)
    for duration in (5, 10, 15, 20, 25, 30, 45, 60, 90)
    if end > start
]


@pytest.mark.parametrize("start,end,duration", WINDOWS)
def test_slot_count_and_last_slot_fit(start, end, duration):
    slots = generate_slots(start, end, duration)

    assert len(slots) == (end - start) // duration
    if slots:
        assert slots[0] == start
        assert slots[-1] + duration <= end
        assert all(b - a == duration for a, b in zip(slots, slots[1:]))


def test_hhmm_parsing():
    assert parse_hhmm("00:00") == 0
    assert parse_hhmm("23:59") == 1439
    assert format_minutes(570) == "09:30"
    for bad in ("9:30", "24:00", "12:60", "noon", None):
        with pytest.raises(InvalidInput):
            parse_hhmm(bad)


def test_date_parsing():
    assert parse_date("2030-01-07") == date(2030, 1, 7)
    assert parse_date(date(2030, 1, 7)) == date(2030, 1, 7)
    for bad in ("07-01-2030", "2030-02-30", "tomorrow"):
        with pytest.raises(InvalidInput):
            parse_date(bad)


def test_weekdays_count_from_sunday():
    assert day_of_week(date(2030, 1, 6)) == 0  # Sunday
    assert day_of_week(date(2030, 1, 7)) == 1
    assert day_of_week(date(2030, 1, 12)) == 6


def _block(start, end, clinic_id=None, all_day=False):
    return BlockedPeriodRecord(id=1, provider_id=1, date=date(2030, 1, 7), start_time=start,
                               end_time=end, clinic_id=clinic_id, is_all_day=all_day)


def test_block_ranges_are_half_open():
    is_blocked = blocked_minutes_checker([_block("10:00", "11:00")], None)
    assert not is_blocked(parse_hhmm("09:30"))
    assert is_blocked(parse_hhmm("10:00"))
    assert is_blocked(parse_hhmm("10:30"))
    assert not is_blocked(parse_hhmm("11:00"))


def test_all_day_block_covers_everything():
    is_blocked = blocked_minutes_checker([_block("00:00", "23:59", all_day=True)], None)
    assert is_blocked(0)
    assert is_blocked(parse_hhmm("23:59"))


def test_clinic_specific_block_only_applies_to_its_clinic():
    blocks = [_block("09:00", "12:00", clinic_id=2)]
    assert not blocked_minutes_checker(blocks, 1)(parse_hhmm("10:00"))
    assert blocked_minutes_checker(blocks, 2)(parse_hhmm("10:00"))
    # Without a clinic filter every block counts
    assert blocked_minutes_checker(blocks, None)(parse_hhmm("10:00"))
