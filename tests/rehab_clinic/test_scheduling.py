import pytest

from rehab_clinic.scheduling import (
    TimeRange,
    duration_within_tolerance,
    format_minutes,
    generate_slots,
    generate_slots_for_windows,
    has_overlap,
    intervals_overlap,
    parse_range,
    parse_time,
)

WORKDAY = parse_range('09:00', '17:00')


def _starts(slots: list[TimeRange]) -> list[str]:
    return [format_minutes(slot.start) for slot in slots]


@pytest.mark.parametrize(
    ('value', 'expected'),
    [('09:00', 540), ('9:05', 545), ('00:00', 0), ('23:59', 1439), (' 14:30 ', 870)],
)
def test_parse_time_accepts_wall_clock_text(value: str, expected: int) -> None:
    assert parse_time(value) == expected


@pytest.mark.parametrize('value', ['24:00', '12:60', '9', 'noon', '', '12:5'])
def test_parse_time_rejects_malformed_text(value: str) -> None:
    with pytest.raises(ValueError, match='HH:MM'):
        parse_time(value)


def test_format_minutes_pads_hours_and_minutes() -> None:
    assert format_minutes(545) == '09:05'
    assert format_minutes(1020) == '17:00'


def test_parse_range_requires_end_after_start() -> None:
    with pytest.raises(ValueError, match='End time must be after start time.'):
        parse_range('10:00', '10:00')

    with pytest.raises(ValueError):
        parse_range('11:00', '10:00')


def test_overlap_is_symmetric() -> None:
    first = parse_range('10:00', '10:45')
    second = parse_range('10:30', '11:00')

    assert first.overlaps(second)
    assert second.overlaps(first)


def test_adjacent_intervals_do_not_overlap() -> None:
    booked = parse_range('10:00', '10:30')

    assert not booked.overlaps(parse_range('10:30', '11:00'))
    assert not booked.overlaps(parse_range('09:30', '10:00'))


def test_contained_and_containing_intervals_overlap() -> None:
    assert intervals_overlap(600, 660, 615, 630)
    assert intervals_overlap(615, 630, 600, 660)
    assert intervals_overlap(600, 660, 600, 660)


def test_has_overlap_checks_every_booking() -> None:
    booked = [parse_range('09:00', '09:30'), parse_range('13:00', '14:00')]

    assert has_overlap(parse_range('13:30', '14:30'), booked)
    assert not has_overlap(parse_range('09:30', '13:00'), booked)
    assert not has_overlap(parse_range('09:30', '10:00'), [])


def test_slots_step_by_fixed_stride_from_window_start() -> None:
    slots = generate_slots(parse_range('09:00', '11:00'), 60, [])

    assert _starts(slots) == ['09:00', '09:30', '10:00']
    assert all(slot.duration == 60 for slot in slots)


def test_thirty_minute_stride_resumes_at_eleven_after_booking() -> None:
    slots = generate_slots(WORKDAY, 30, [parse_range('10:00', '10:45')])
    starts = _starts(slots)

    assert '09:00' in starts
    assert '09:30' in starts
    assert '10:00' not in starts
    assert '10:30' not in starts
    assert '11:00' in starts
    assert len(slots) == 14


def test_slot_adjacent_to_booking_is_offered() -> None:
    slots = generate_slots(WORKDAY, 30, [parse_range('10:00', '10:30')])

    assert '10:30' in _starts(slots)
    assert '09:30' in _starts(slots)


def test_slots_never_run_past_window_end() -> None:
    slots = generate_slots(parse_range('09:00', '10:29'), 60, [])

    assert _starts(slots) == ['09:00']
    assert all(slot.end <= parse_time('10:29') for slot in slots)


def test_slot_longer_than_window_yields_nothing() -> None:
    assert generate_slots(parse_range('09:00', '09:30'), 45, []) == []


def test_slots_are_chronological_and_free() -> None:
    booked = [parse_range('09:15', '09:45'), parse_range('12:00', '13:00')]
    slots = generate_slots(WORKDAY, 45, booked)

    assert slots == sorted(slots, key=lambda slot: slot.start)
    assert not any(has_overlap(slot, booked) for slot in slots)
    assert all(WORKDAY.contains(slot) for slot in slots)


def test_custom_stride_is_respected() -> None:
    slots = generate_slots(parse_range('09:00', '10:00'), 30, [], stride_minutes=15)

    assert _starts(slots) == ['09:00', '09:15', '09:30']


def test_generate_slots_rejects_non_positive_duration() -> None:
    with pytest.raises(ValueError):
        generate_slots(WORKDAY, 0, [])


def test_split_shift_slots_are_merged_in_order() -> None:
    windows = [parse_range('13:00', '15:00'), parse_range('09:00', '11:00')]

    slots = generate_slots_for_windows(windows, 60, [])

    assert _starts(slots) == ['09:00', '09:30', '10:00', '13:00', '13:30', '14:00']


@pytest.mark.parametrize(
    ('requested', 'allowed'),
    [(30, True), (45, True), (15, True), (46, False), (14, False), (60, False)],
)
def test_duration_tolerance_is_fifteen_minutes(requested: int, allowed: bool) -> None:
    assert duration_within_tolerance(requested, 30) is allowed


def test_duration_tolerance_can_be_overridden() -> None:
    assert duration_within_tolerance(40, 30, tolerance=10)
    assert not duration_within_tolerance(41, 30, tolerance=10)
