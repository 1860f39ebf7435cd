from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

TaskStatus = Literal["not_started", "in_progress", "complete"]
StageStatus = Literal["not_started", "in_progress", "complete"]
MachineType = Literal["washer", "dryer"]
OnboardingStatus = Literal["not_started", "in_progress", "needs_review", "complete"]
PaymentStatus = Literal["unpaid", "paid_partial", "paid_in_full"]

DEFAULT_COMMISSION_RATE = Decimal("10")
DEFAULT_PAYMENT_TERM_MONTHS = 48
DEFAULT_PAYSTRI_LINK = "https://insights.paystri.com/laundryboss-self-registration"


def _as_utc(value: datetime) -> datetime:
    # naive timestamps from the remote store are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class MachinePricing(BaseModel):
    cold: Decimal | None = None
    warm: Decimal | None = None
    hot: Decimal | None = None
    standard: Decimal | None = None


class Machine(BaseModel):
    id: str
    machine_number: int
    type: MachineType
    make: str = ""
    model: str = ""
    serial_number: str = ""
    coins_accepted: Literal["quarter", "dollar", "token", "none"] = "quarter"
    pricing: MachinePricing = Field(default_factory=MachinePricing)
    after_market_upgrades: str | None = None


class SalesRepAssignment(BaseModel):
    rep_id: str
    rep_name: str
    commission_percent: Decimal = Decimal("0")


class TaskMetadataEntry(BaseModel):
    updated_by: str = "Unknown"
    updated_at: UtcDatetime


class PaymentLink(BaseModel):
    id: str
    type: Literal["full_payment", "1st_installment", "2nd_installment", "final_installment", "other"]
    custom_label: str | None = None
    link: str
    amount: Decimal | None = None
    due_date: str | None = None
    is_visible: bool = True
    is_paid: bool = False
    amount_paid: Decimal | None = None
    paid_at: UtcDatetime | None = None
    added_at: UtcDatetime | None = None
    added_by: str | None = None


class PaymentProcessor(BaseModel):
    id: str
    type: Literal["cardpointe", "clover", "paystri", "other"]
    name: str = ""
    link: str
    is_default: bool = False
    added_at: UtcDatetime | None = None
    added_by: str | None = None


class CustomerNote(BaseModel):
    id: str
    content: str
    created_at: UtcDatetime
    created_by: str
    updated_at: UtcDatetime | None = None
    updated_by: str | None = None
    is_edited: bool = False


class OnboardingDates(BaseModel):
    start_date: UtcDatetime
    estimated_completion_date: UtcDatetime
    projected_completion_date: UtcDatetime | None = None
    actual_completion_date: UtcDatetime | None = None
    admin_override_date: UtcDatetime | None = None
    use_admin_override: bool = False


class CustomerRecord(BaseModel):
    """Aggregate onboarding record for one laundromat customer."""

    model_config = ConfigDict(extra="ignore")

    id: str
    business_name: str = ""
    owner_name: str = ""
    email: str = ""
    phone: str = ""
    onboarding_token: str | None = None
    status: OnboardingStatus = "not_started"
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None

    task_statuses: dict[str, TaskStatus] = Field(default_factory=dict)
    task_metadata: dict[str, TaskMetadataEntry] = Field(default_factory=dict)
    current_stage_id: str | None = None
    onboarding_dates: OnboardingDates | None = None

    machines: list[Machine] = Field(default_factory=list)
    sales_rep_assignments: list[SalesRepAssignment] = Field(default_factory=list)
    payment_links: list[PaymentLink] = Field(default_factory=list)
    payment_processors: list[PaymentProcessor] = Field(default_factory=list)
    notes: list[CustomerNote] = Field(default_factory=list)

    non_recurring_revenue: Decimal = Decimal("0")
    monthly_recurring_fee: Decimal = Decimal("0")
    other_fees: Decimal = Decimal("0")
    deal_amount: Decimal = Decimal("0")
    cogs: Decimal = Decimal("0")
    commission_rate: Decimal = Field(default=DEFAULT_COMMISSION_RATE, ge=0, le=100)
    payment_term_months: int = Field(default=DEFAULT_PAYMENT_TERM_MONTHS, ge=1)
    paid_to_date_amount: Decimal = Decimal("0")
    commission_paid_amount: Decimal = Decimal("0")
    payment_status: PaymentStatus = "unpaid"
    paid_date: UtcDatetime | None = None


class DealInputs(BaseModel):
    non_recurring_revenue: Decimal = Decimal("0")
    monthly_recurring_fee: Decimal = Decimal("0")
    other_fees: Decimal = Decimal("0")
    payment_term_months: int = Field(default=DEFAULT_PAYMENT_TERM_MONTHS, ge=1)


class AssigneeCommission(BaseModel):
    rep_id: str
    rep_name: str
    commission_percent: Decimal
    total_commission: Decimal = Decimal("0")
    earned_to_date: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")
    owed_now: Decimal = Decimal("0")


class CommissionBreakdown(BaseModel):
    customer_id: str
    deal_amount: Decimal = Decimal("0")
    cogs: Decimal = Decimal("0")
    net_deal_amount: Decimal = Decimal("0")
    commission_rate: Decimal = DEFAULT_COMMISSION_RATE
    total_commission: Decimal = Decimal("0")
    paid_to_date_amount: Decimal = Decimal("0")
    paid_percentage: Decimal = Decimal("0")
    commission_earned_to_date: Decimal = Decimal("0")
    commission_paid_amount: Decimal = Decimal("0")
    commission_owed_now: Decimal = Decimal("0")
    remaining_deal_amount: Decimal = Decimal("0")
    remaining_commission: Decimal = Decimal("0")
    monthly_payment: Decimal = Decimal("0")
    payment_status: PaymentStatus = "unpaid"
    split_total: Decimal = Decimal("0")
    split_warning: str | None = None
    assignees: list[AssigneeCommission] = Field(default_factory=list)
