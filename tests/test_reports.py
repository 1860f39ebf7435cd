import sys
from decimal import Decimal
from pathlib import Path

import pandas as pd

sys.path.append(str(Path(__file__).resolve().parents[1]))

from onboarding.core.ledger import redistribute_splits
from onboarding.core.schema import CustomerRecord, SalesRepAssignment
from onboarding.reports.commissions import commission_entries, export_commission_report, summarise_by_rep


def _customer(customer_id, deal, paid, reps):
    assignments = redistribute_splits(SalesRepAssignment(rep_id=rep_id, rep_name=name) for rep_id, name in reps)
    return CustomerRecord(
        id=customer_id,
        business_name=f"Laundry {customer_id}",
        deal_amount=Decimal(deal),
        paid_to_date_amount=Decimal(paid),
        sales_rep_assignments=assignments,
    )


def test_summary_groups_by_rep(tmp_path):
    customers = [
        _customer("c1", "20000", "10000", [("sr1", "Jim Law"), ("sr2", "John Altieri")]),
        _customer("c2", "10000", "10000", [("sr1", "Jim Law")]),
    ]
    entries = commission_entries(customers)
    assert len(entries) == 3

    summary = summarise_by_rep(entries)
    jim = summary[summary["rep_id"] == "sr1"].iloc[0]
    assert jim["customers"] == 2
    assert jim["total_commission"] == 2000.0
    assert jim["owed_now"] == 1500.0
    assert summary.iloc[0]["rep_id"] == "sr1"

    path = export_commission_report(tmp_path / "out" / "commissions.csv", customers)
    assert len(pd.read_csv(path)) == 3


def test_empty_summary_has_columns():
    summary = summarise_by_rep(commission_entries([]))
    assert summary.empty
    assert "owed_now" in summary.columns
