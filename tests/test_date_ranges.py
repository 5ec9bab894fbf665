from datetime import date, datetime, timezone

from rentflow.services.date_ranges import (
    DateRange,
    business_today,
    merge_date_ranges,
    ranges_overlap,
    rental_days_inclusive,
)


def d(day: int) -> date:
    return date(2025, 9, day)


def test_merge_empty():
    assert merge_date_ranges([]) == []


def test_merge_adjacent_days_become_one_span():
    merged = merge_date_ranges([DateRange(d(1), d(3)), DateRange(d(4), d(6))])
    assert merged == [DateRange(d(1), d(6))]


def test_merge_keeps_gaps():
    merged = merge_date_ranges([DateRange(d(5), d(6)), DateRange(d(1), d(3))])
    assert merged == [DateRange(d(1), d(3)), DateRange(d(5), d(6))]


def test_merge_contained_and_overlapping():
    merged = merge_date_ranges([
        DateRange(d(1), d(10)),
        DateRange(d(2), d(3)),
        DateRange(d(9), d(12)),
        DateRange(d(20), d(20)),
    ])
    assert merged == [DateRange(d(1), d(12)), DateRange(d(20), d(20))]


def test_merge_output_is_sorted_and_disjoint():
    merged = merge_date_ranges([DateRange(d(15), d(16)), DateRange(d(2), d(2)), DateRange(d(8), d(9))])
    for a, b in zip(merged, merged[1:]):
        assert a.end < b.start


def test_to_json_uses_iso_dates():
    assert DateRange(d(1), d(3)).to_json() == {"from": "2025-09-01", "to": "2025-09-03"}


def test_overlap_is_inclusive():
    existing = DateRange(d(1), d(3))
    assert ranges_overlap(existing, DateRange(d(3), d(5)))
    assert ranges_overlap(existing, DateRange(d(2), d(2)))
    assert not ranges_overlap(existing, DateRange(d(4), d(4)))


def test_rental_days_inclusive():
    assert rental_days_inclusive(d(1), d(1)) == 1
    assert rental_days_inclusive(d(1), d(3)) == 3


def test_business_today_uses_lisbon_time():
    # 23:30 UTC in July is already the next day in Lisbon (UTC+1)
    now = datetime(2026, 7, 1, 23, 30, tzinfo=timezone.utc)
    assert business_today(now) == date(2026, 7, 2)
    assert business_today(datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)) == date(2026, 7, 1)
