from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pandas as pd

from onboarding.core.ledger import compute_commission_breakdown
from onboarding.core.schema import CustomerRecord

ENTRY_COLUMNS = [
    "customer_id",
    "business_name",
    "rep_id",
    "rep_name",
    "commission_percent",
    "total_commission",
    "earned_to_date",
    "paid",
    "owed_now",
    "payment_status",
]

SUMMARY_COLUMNS = ["rep_id", "rep_name", "customers", "total_commission", "earned_to_date", "paid", "owed_now"]


def commission_entries(customers: Iterable[CustomerRecord]) -> pd.DataFrame:
    """One row per (customer, sales rep) assignment."""

    records = []
    for customer in customers:
        breakdown = compute_commission_breakdown(customer)
        for assignee in breakdown.assignees:
            records.append(
                {
                    "customer_id": customer.id,
                    "business_name": customer.business_name,
                    "rep_id": assignee.rep_id,
                    "rep_name": assignee.rep_name,
                    "commission_percent": float(assignee.commission_percent),
                    "total_commission": float(assignee.total_commission),
                    "earned_to_date": float(assignee.earned_to_date),
                    "paid": float(assignee.paid),
                    "owed_now": float(assignee.owed_now),
                    "payment_status": breakdown.payment_status,
                }
            )
    return pd.DataFrame(records, columns=ENTRY_COLUMNS)


def summarise_by_rep(entries: pd.DataFrame) -> pd.DataFrame:
    if entries.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)
    summary = (
        entries.groupby(["rep_id", "rep_name"], as_index=False)
        .agg(
            customers=("customer_id", "nunique"),
            total_commission=("total_commission", "sum"),
            earned_to_date=("earned_to_date", "sum"),
            paid=("paid", "sum"),
            owed_now=("owed_now", "sum"),
        )
        .sort_values("owed_now", ascending=False)
        .reset_index(drop=True)
    )
    money = ["total_commission", "earned_to_date", "paid", "owed_now"]
    summary[money] = summary[money].round(2)
    return summary[SUMMARY_COLUMNS]


def export_commission_report(path: Path, customers: Iterable[CustomerRecord]) -> Path:
    df = commission_entries(customers)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path
