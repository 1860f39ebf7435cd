from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from onboarding.core.schema import (
    AssigneeCommission,
    CommissionBreakdown,
    CustomerRecord,
    DealInputs,
    SalesRepAssignment,
)
from onboarding.core.validation import validate_split_percent

HUNDRED = Decimal("100")
ZERO = Decimal("0")

DEAL_INPUT_FIELDS = frozenset(
    {"non_recurring_revenue", "monthly_recurring_fee", "other_fees", "payment_term_months"}
)


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_deal_amount(inputs: DealInputs) -> Decimal:
    return (
        inputs.non_recurring_revenue
        + inputs.monthly_recurring_fee * Decimal(inputs.payment_term_months)
        + inputs.other_fees
    )


def deal_inputs_of(customer: CustomerRecord) -> DealInputs:
    return DealInputs(
        non_recurring_revenue=customer.non_recurring_revenue,
        monthly_recurring_fee=customer.monthly_recurring_fee,
        other_fees=customer.other_fees,
        payment_term_months=customer.payment_term_months,
    )


def net_deal_amount(deal_amount: Decimal, cogs: Decimal) -> Decimal:
    return deal_amount - cogs


def total_commission(net_amount: Decimal, commission_rate: Decimal) -> Decimal:
    return net_amount * commission_rate / HUNDRED


def share_of(amount: Decimal, percent: Decimal) -> Decimal:
    return amount * percent / HUNDRED


def paid_percentage(paid_to_date: Decimal, deal_amount: Decimal) -> Decimal:
    if deal_amount == 0:
        return ZERO
    return paid_to_date / deal_amount


def commission_owed_now(earned_to_date: Decimal, commission_paid: Decimal) -> Decimal:
    # Advances can exceed what has been earned; nothing is owed back.
    return max(ZERO, earned_to_date - commission_paid)


# ----------------------------------------------------------------------
# commission splits
# ----------------------------------------------------------------------
def split_total(assignments: Iterable[SalesRepAssignment]) -> Decimal:
    return sum((assignment.commission_percent for assignment in assignments), ZERO)


def split_warning(assignments: Iterable[SalesRepAssignment]) -> str | None:
    assignments = list(assignments)
    if not assignments:
        return None
    total = split_total(assignments)
    if total != HUNDRED:
        return f"Commission splits add up to {total.normalize():f}%, not 100%"
    return None


def redistribute_splits(assignments: Iterable[SalesRepAssignment]) -> list[SalesRepAssignment]:
    """Reset the split to an even division that sums to exactly 100.

    The first assignee absorbs the integer remainder. Prior proportions are
    not preserved.
    """

    assignments = list(assignments)
    count = len(assignments)
    if count == 0:
        return []
    even_split = 100 // count
    remainder = 100 - even_split * count
    return [
        assignment.model_copy(
            update={"commission_percent": Decimal(even_split + (remainder if index == 0 else 0))}
        )
        for index, assignment in enumerate(assignments)
    ]


def add_assignment(
    assignments: Iterable[SalesRepAssignment], rep_id: str, rep_name: str
) -> list[SalesRepAssignment]:
    current = list(assignments)
    if any(assignment.rep_id == rep_id for assignment in current):
        return redistribute_splits(current)
    current.append(SalesRepAssignment(rep_id=rep_id, rep_name=rep_name))
    return redistribute_splits(current)


def remove_assignment(assignments: Iterable[SalesRepAssignment], rep_id: str) -> list[SalesRepAssignment]:
    return redistribute_splits(assignment for assignment in assignments if assignment.rep_id != rep_id)


def set_split(
    assignments: Iterable[SalesRepAssignment], rep_id: str, percent: Decimal
) -> list[SalesRepAssignment]:
    """Manually edit one assignee's share; the total may drift from 100."""

    validate_split_percent(percent)
    updated: list[SalesRepAssignment] = []
    found = False
    for assignment in assignments:
        if assignment.rep_id == rep_id:
            assignment = assignment.model_copy(update={"commission_percent": percent})
            found = True
        updated.append(assignment)
    if not found:
        raise KeyError(rep_id)
    return updated


# ----------------------------------------------------------------------
# breakdown
# ----------------------------------------------------------------------
def compute_commission_breakdown(customer: CustomerRecord) -> CommissionBreakdown:
    deal = customer.deal_amount
    net = net_deal_amount(deal, customer.cogs)
    commission = total_commission(net, customer.commission_rate)
    paid_ratio = paid_percentage(customer.paid_to_date_amount, deal)
    earned = commission * paid_ratio
    paid_out = customer.commission_paid_amount
    remaining_deal = deal - customer.paid_to_date_amount

    assignees: list[AssigneeCommission] = []
    for assignment in customer.sales_rep_assignments:
        percent = assignment.commission_percent
        rep_earned = share_of(earned, percent)
        rep_paid = share_of(paid_out, percent)
        assignees.append(
            AssigneeCommission(
                rep_id=assignment.rep_id,
                rep_name=assignment.rep_name,
                commission_percent=percent,
                total_commission=_quantize(share_of(commission, percent)),
                earned_to_date=_quantize(rep_earned),
                paid=_quantize(rep_paid),
                owed_now=_quantize(commission_owed_now(rep_earned, rep_paid)),
            )
        )

    return CommissionBreakdown(
        customer_id=customer.id,
        deal_amount=_quantize(deal),
        cogs=_quantize(customer.cogs),
        net_deal_amount=_quantize(net),
        commission_rate=customer.commission_rate,
        total_commission=_quantize(commission),
        paid_to_date_amount=_quantize(customer.paid_to_date_amount),
        paid_percentage=paid_ratio,
        commission_earned_to_date=_quantize(earned),
        commission_paid_amount=_quantize(paid_out),
        commission_owed_now=_quantize(commission_owed_now(earned, paid_out)),
        remaining_deal_amount=_quantize(remaining_deal),
        remaining_commission=_quantize(commission - earned),
        monthly_payment=_quantize(remaining_deal / Decimal(customer.payment_term_months)),
        payment_status=customer.payment_status,
        split_total=split_total(customer.sales_rep_assignments),
        split_warning=split_warning(customer.sales_rep_assignments),
        assignees=assignees,
    )
