from datetime import date

import pytest

from plate_billing.data_models import Client, RawIssue, RawLineItem, RawReturn


def issue(number, day, quantity, partner=0, size="2 X 3"):
    return RawIssue(number, day, [RawLineItem(size, quantity, partner_quantity=partner)])


def ret(number, day, quantity, partner=0, damaged=0, lost=0, size="2 X 3"):
    return RawReturn(
        number,
        day,
        [RawLineItem(size, quantity, partner_quantity=partner, damaged_quantity=damaged, lost_quantity=lost)],
    )


@pytest.fixture
def client():
    return Client(id="c1", name="Ramesh Patel", site="Navrangpura", mobile_number="9800000000")


@pytest.fixture
def basic_transactions():
    """100 plates out on Jan 1st, 40 back on Jan 11th."""
    issues = [issue("CH-1", date(2024, 1, 1), 100)]
    returns = [ret("RT-1", date(2024, 1, 11), 40)]
    return issues, returns
