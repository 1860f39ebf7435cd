import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from onboarding.core import ledger
from onboarding.core.schema import CustomerRecord, DealInputs, SalesRepAssignment
from onboarding.core.validation import ValidationError


def _reps(count):
    return [SalesRepAssignment(rep_id=f"sr{i}", rep_name=f"Rep {i}") for i in range(count)]


def test_deal_amount_formula():
    inputs = DealInputs(
        non_recurring_revenue=Decimal("5000"),
        monthly_recurring_fee=Decimal("250"),
        other_fees=Decimal("500"),
        payment_term_months=48,
    )
    assert ledger.compute_deal_amount(inputs) == Decimal("17500")


def test_commission_breakdown_half_paid_deal():
    customer = CustomerRecord(
        id="c1",
        deal_amount=Decimal("22000"),
        cogs=Decimal("2000"),
        commission_rate=Decimal("10"),
        paid_to_date_amount=Decimal("11000"),
    )
    breakdown = ledger.compute_commission_breakdown(customer)
    assert breakdown.net_deal_amount == Decimal("20000.00")
    assert breakdown.total_commission == Decimal("2000.00")
    assert breakdown.paid_percentage == Decimal("0.5")
    assert breakdown.commission_earned_to_date == Decimal("1000.00")
    assert breakdown.commission_owed_now == Decimal("1000.00")
    assert breakdown.remaining_deal_amount == Decimal("11000.00")
    assert breakdown.monthly_payment == Decimal("229.17")


def test_zero_deal_has_zero_paid_percentage():
    breakdown = ledger.compute_commission_breakdown(CustomerRecord(id="c1"))
    assert breakdown.paid_percentage == 0
    assert breakdown.commission_owed_now == 0


def test_explicit_zero_commission_rate_is_kept():
    customer = CustomerRecord(id="c1", deal_amount=Decimal("1000"), commission_rate=Decimal("0"))
    assert ledger.compute_commission_breakdown(customer).total_commission == 0


def test_owed_now_never_negative():
    customer = CustomerRecord(
        id="c1",
        deal_amount=Decimal("10000"),
        paid_to_date_amount=Decimal("1000"),
        commission_paid_amount=Decimal("900"),
        sales_rep_assignments=ledger.redistribute_splits(_reps(2)),
    )
    breakdown = ledger.compute_commission_breakdown(customer)
    assert breakdown.commission_owed_now == 0
    assert all(item.owed_now >= 0 for item in breakdown.assignees)


@pytest.mark.parametrize("count", range(1, 11))
def test_redistribution_sums_to_hundred(count):
    splits = ledger.redistribute_splits(_reps(count))
    assert sum(item.commission_percent for item in splits) == 100
    assert splits[0].commission_percent >= splits[-1].commission_percent


def test_first_assignee_takes_remainder():
    splits = ledger.redistribute_splits(_reps(3))
    assert [item.commission_percent for item in splits] == [Decimal("34"), Decimal("33"), Decimal("33")]


def test_add_and_remove_assignment_redistribute():
    assignments = ledger.add_assignment([], "sr1", "Jim")
    assignments = ledger.add_assignment(assignments, "sr2", "John")
    assert [item.commission_percent for item in assignments] == [Decimal("50"), Decimal("50")]
    assignments = ledger.add_assignment(assignments, "sr2", "John")
    assert len(assignments) == 2
    assignments = ledger.remove_assignment(assignments, "sr1")
    assert [(item.rep_id, item.commission_percent) for item in assignments] == [("sr2", Decimal("100"))]


def test_manual_split_can_drift_with_warning():
    assignments = ledger.set_split(ledger.redistribute_splits(_reps(2)), "sr0", Decimal("70"))
    assert ledger.split_total(assignments) == Decimal("120")
    assert ledger.split_warning(assignments) == "Commission splits add up to 120%, not 100%"


def test_manual_split_rejects_out_of_range_percent():
    with pytest.raises(ValidationError):
        ledger.set_split(_reps(1), "sr0", Decimal("-1"))
    with pytest.raises(ValidationError):
        ledger.set_split(_reps(1), "sr0", Decimal("101"))


def test_assignee_share_of_commission():
    customer = CustomerRecord(
        id="c1",
        deal_amount=Decimal("22000"),
        cogs=Decimal("2000"),
        paid_to_date_amount=Decimal("11000"),
        commission_paid_amount=Decimal("400"),
        sales_rep_assignments=ledger.redistribute_splits(_reps(2)),
    )
    first = ledger.compute_commission_breakdown(customer).assignees[0]
    assert first.total_commission == Decimal("1000.00")
    assert first.earned_to_date == Decimal("500.00")
    assert first.paid == Decimal("200.00")
    assert first.owed_now == Decimal("300.00")
