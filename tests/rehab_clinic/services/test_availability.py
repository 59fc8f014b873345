from rehab_clinic.scheduling import format_minutes, parse_range
from rehab_clinic.services import availability


def test_day_name_matches_weekday(monday, tuesday) -> None:
    assert availability.day_name(monday) == 'Monday'
    assert availability.day_name(tuesday) == 'Tuesday'


def test_check_conflict_detects_partial_overlap(db_session, therapist, book, monday) -> None:
    book(monday, '10:00', '10:45')

    assert availability.check_conflict(db_session, therapist.id, monday, parse_range('10:30', '11:00'))
    assert availability.check_conflict(db_session, therapist.id, monday, parse_range('09:45', '10:15'))


def test_check_conflict_allows_adjacent_booking(db_session, therapist, book, monday) -> None:
    book(monday, '10:00', '10:30')

    assert not availability.check_conflict(db_session, therapist.id, monday, parse_range('10:30', '11:00'))
    assert not availability.check_conflict(db_session, therapist.id, monday, parse_range('09:30', '10:00'))


def test_cancelled_and_no_show_bookings_free_the_slot(db_session, therapist, book, monday) -> None:
    book(monday, '10:00', '10:30', status='Cancelled')
    book(monday, '11:00', '11:30', status='No Show')

    assert not availability.check_conflict(db_session, therapist.id, monday, parse_range('10:00', '10:30'))
    assert not availability.check_conflict(db_session, therapist.id, monday, parse_range('11:00', '11:30'))


def test_completed_and_rescheduled_bookings_still_block(db_session, therapist, book, monday) -> None:
    book(monday, '10:00', '10:30', status='Completed')
    book(monday, '11:00', '11:30', status='Rescheduled')

    assert availability.check_conflict(db_session, therapist.id, monday, parse_range('10:15', '10:45'))
    assert availability.check_conflict(db_session, therapist.id, monday, parse_range('11:00', '11:30'))


def test_check_conflict_can_exclude_the_appointment_being_moved(db_session, therapist, book, monday) -> None:
    existing = book(monday, '10:00', '10:30')

    assert not availability.check_conflict(
        db_session,
        therapist.id,
        monday,
        parse_range('10:15', '10:45'),
        exclude_appointment_id=existing.id,
    )


def test_conflicts_are_scoped_to_staff_and_date(db_session, therapist, book, monday, tuesday) -> None:
    book(monday, '10:00', '10:30')

    assert not availability.check_conflict(db_session, therapist.id, tuesday, parse_range('10:00', '10:30'))
    assert not availability.check_conflict(db_session, therapist.id + 1, monday, parse_range('10:00', '10:30'))


def test_find_conflict_returns_the_overlapping_booking(db_session, therapist, book, monday) -> None:
    existing = book(monday, '13:00', '14:00')

    assert availability.find_conflict(db_session, therapist.id, monday, parse_range('13:30', '14:30')).id == existing.id


def test_available_slots_exclude_booked_time(db_session, therapist, book, monday) -> None:
    book(monday, '10:00', '10:45')

    starts = [format_minutes(slot.start) for slot in availability.available_slots(db_session, therapist, monday, 30)]

    assert starts[:3] == ['09:00', '09:30', '11:00']
    assert '10:00' not in starts
    assert '10:30' not in starts
    assert starts[-1] == '16:30'


def test_available_slots_empty_without_a_window(db_session, therapist, tuesday) -> None:
    assert availability.available_slots(db_session, therapist, tuesday, 30) == []


def test_containing_window_requires_full_fit(therapist, monday) -> None:
    assert availability.containing_window(therapist, monday, parse_range('16:30', '17:00')) is not None
    assert availability.containing_window(therapist, monday, parse_range('16:45', '17:15')) is None
    assert availability.containing_window(therapist, monday, parse_range('08:45', '09:15')) is None


def test_request_overlapping_later_booking_conflicts(db_session, therapist, book, monday) -> None:
    book(monday, '10:30', '11:00')

    assert availability.check_conflict(db_session, therapist.id, monday, parse_range('10:00', '10:45'))
