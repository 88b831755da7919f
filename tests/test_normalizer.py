from datetime import date

import pytest

from conftest import issue, ret
from plate_billing.data_models import EventKind, RawIssue, RawLineItem, RawReturn
from plate_billing.errors import InvalidTransactionData
from plate_billing.engine import calculate_bill
from plate_billing.normalizer import OPENING_DOCUMENT, count_damaged_and_lost, normalize, opening_event


def test_events_sorted_by_date_with_issue_first_on_same_day():
    issues = [issue("CH-2", date(2024, 1, 5), 10), issue("CH-1", date(2024, 1, 1), 20)]
    returns = [ret("RT-1", date(2024, 1, 1), 5), ret("RT-0", date(2023, 12, 31), 1)]

    events = normalize(issues, returns)

    assert [e.document_number for e in events] == ["RT-0", "CH-1", "RT-1", "CH-2"]
    assert events[1].kind is EventKind.ISSUE
    assert events[2].kind is EventKind.RETURN


def test_plate_count_sums_items_and_partner_stock():
    record = RawIssue(
        "CH-1",
        "2024-02-01",
        [RawLineItem("2 X 3", 30, partner_quantity=5), RawLineItem("21 X 18", 10)],
    )

    (event,) = normalize([record], [])

    assert event.plate_count == 45
    assert event.date == date(2024, 2, 1)


def test_timestamp_strings_are_truncated_to_the_day():
    (event,) = normalize([issue("CH-1", "2024-02-01T09:30:00", 1)], [])
    assert event.date == date(2024, 2, 1)


@pytest.mark.parametrize("bad_date", [None, "", "2024-13-01", "yesterday", "2024-01-01garbage", "2024-01-0112:00"])
def test_bad_dates_are_rejected(bad_date):
    with pytest.raises(InvalidTransactionData, match="CH-9"):
        normalize([issue("CH-1", "2024-01-01", 1), issue("CH-9", bad_date, 1)], [])


@pytest.mark.parametrize("quantity", [None, -1, 2.5, "10"])
def test_bad_quantities_are_rejected(quantity):
    with pytest.raises(InvalidTransactionData):
        normalize([], [ret("RT-1", "2024-01-01", quantity)])


def test_damaged_and_lost_are_counted_for_display():
    returns = [ret("RT-1", "2024-01-03", 10, damaged=2, lost=1), ret("RT-2", "2024-01-04", 5, lost=3)]
    assert count_damaged_and_lost(returns) == 6


def test_empty_input_gives_no_events():
    assert normalize([], []) == []


def test_timestamp_with_space_separator_is_accepted():
    (event,) = normalize([issue("CH-1", "2024-02-01 09:30", 1)], [])
    assert event.date == date(2024, 2, 1)


@pytest.mark.parametrize("field", ["damaged", "lost"])
@pytest.mark.parametrize("value", ["2", -1, 1.5, True])
def test_bad_damaged_and_lost_quantities_are_rejected(field, value):
    returns = [ret("RT-7", "2024-01-03", 5, **{field: value})]

    with pytest.raises(InvalidTransactionData, match="RT-7"):
        normalize([], returns)
    with pytest.raises(InvalidTransactionData, match="RT-7"):
        count_damaged_and_lost(returns)


def test_bad_damaged_quantity_fails_the_bill(client):
    returns = [RawReturn("RT-1", "2024-01-05", [RawLineItem("2 X 3", 5, damaged_quantity="2")])]
    with pytest.raises(InvalidTransactionData, match="damaged quantity"):
        calculate_bill(client, [issue("CH-1", "2024-01-01", 10)], returns, "2024-01-10")


def test_opening_event_sorts_ahead_of_same_day_records():
    opening = opening_event(60, "2024-01-21")
    events = normalize(
        [issue("CH-2", "2024-01-21", 5)], [ret("RT-2", "2024-01-21", 10)], opening
    )

    assert [e.document_number for e in events] == [OPENING_DOCUMENT, "CH-2", "RT-2"]
    assert events[0].kind is EventKind.OPENING
    assert events[0].plate_count == 60
