from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    model_validator,
)
from pydantic.alias_generators import to_camel


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_naive_utc)]
Name = Annotated[str, Field(min_length=1)]
Amount = Annotated[float, Field(gt=0)]
Color = Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")]

Role = Literal["OWNER", "ADMIN", "MEMBER", "ACCOUNTANT"]
InviteRole = Literal["MEMBER", "ADMIN", "ACCOUNTANT"]
RecurringPeriod = Literal["WEEKLY", "MONTHLY", "QUARTERLY", "YEARLY"]
TransactionType = Literal["INCOME", "EXPENSE"]


class CamelModel(BaseModel):
    """Base for every request and response body: camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    def changes(self, nullable=(), exclude=()):
        """Fields the client sent; an explicit null only survives for ``nullable`` fields."""
        return {
            field: value
            for field, value in self.model_dump(exclude_unset=True, exclude=set(exclude)).items()
            if value is not None or field in nullable
        }


class SuccessOut(CamelModel):
    success: bool = True
    message: Optional[str] = None


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    pages: int


# Auth and profile


class UserCreate(CamelModel):
    name: Annotated[str, Field(min_length=2)]
    email: EmailStr
    password: Annotated[str, Field(min_length=8)]


class UserLogin(CamelModel):
    email: EmailStr
    password: str


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"


class UserBrief(CamelModel):
    id: str
    name: Optional[str] = None
    email: str


class UserOut(UserBrief):
    phone: Optional[str] = None
    role: str
    workspace_id: Optional[str] = None
    created_at: Optional[datetime] = None


class RegisterOut(Token):
    user: UserOut


class NotificationSettings(CamelModel):
    email: Optional[bool] = None
    push: Optional[bool] = None


class ProfileStats(CamelModel):
    bills_count: int
    teams_count: int
    categories_count: int
    unread_notifications_count: int


class ProfileOut(UserOut):
    notification_settings: NotificationSettings
    stats: Optional[ProfileStats] = None


class ProfileUpdate(CamelModel):
    name: Optional[Name] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    notification_settings: Optional[NotificationSettings] = None


class PasswordChange(CamelModel):
    current_password: Name
    new_password: Annotated[str, Field(min_length=8)]
    confirm_password: Name

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class AccountDelete(CamelModel):
    password: Name
    confirmation: Name

    @model_validator(mode="after")
    def confirmed(self):
        if self.confirmation != "DELETE":
            raise ValueError("Type DELETE to confirm")
        return self


# Categories


class CategoryCreate(CamelModel):
    name: Name
    color: Color = "#FFFFFF"


class CategoryUpdate(CamelModel):
    name: Optional[Name] = None
    color: Optional[Color] = None


class CategoryOut(CamelModel):
    id: str
    name: str
    color: str
    workspace_id: str


# Bills


class ReminderIn(CamelModel):
    days_before: Annotated[int, Field(gt=0)]


class ReminderOut(CamelModel):
    id: str
    days_before: int
    sent_at: Optional[datetime] = None


class TeamBrief(CamelModel):
    id: str
    name: str


class BillCreate(CamelModel):
    name: Name
    amount: Amount
    due_date: UtcDatetime
    category_id: Optional[str] = None
    description: Optional[str] = None
    is_recurring: bool = False
    recurring_period: Optional[RecurringPeriod] = None
    recurring_end_date: Optional[UtcDatetime] = None
    team_id: Optional[str] = None
    reminders: Optional[List[ReminderIn]] = None


class BillUpdate(CamelModel):
    name: Optional[Name] = None
    amount: Optional[Amount] = None
    due_date: Optional[UtcDatetime] = None
    category_id: Optional[str] = None
    description: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurring_period: Optional[RecurringPeriod] = None
    recurring_end_date: Optional[UtcDatetime] = None
    team_id: Optional[str] = None
    is_paid: Optional[bool] = None
    paid_at: Optional[UtcDatetime] = None
    reminders: Optional[List[ReminderIn]] = None


class BillRef(CamelModel):
    id: str
    name: str


class BillSummary(BillRef):
    amount: float
    due_date: datetime
    is_paid: bool


class BillOut(BillSummary):
    description: Optional[str] = None
    is_recurring: bool
    recurring_period: Optional[str] = None
    recurring_end_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    category_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    category: Optional[CategoryOut] = None
    team: Optional[TeamBrief] = None
    reminders: List[ReminderOut] = []


class UpcomingPayment(CamelModel):
    date: datetime
    amount: float


class BillDetail(BillOut):
    user: Optional[UserBrief] = None
    upcoming_payments: List[UpcomingPayment] = []


class BillList(CamelModel):
    bills: List[BillOut]
    pagination: Pagination


# Teams and invitations


class TeamMemberIn(CamelModel):
    email: EmailStr
    role: InviteRole


class TeamCreate(CamelModel):
    name: Name
    description: Optional[str] = None
    members: Optional[List[TeamMemberIn]] = None


class TeamUpdate(CamelModel):
    name: Optional[Name] = None
    description: Optional[str] = None


class MemberRoleUpdate(CamelModel):
    role: Role


class MemberOut(CamelModel):
    id: str
    team_id: str
    user_id: str
    role: str
    notifications_enabled: bool
    joined_at: Optional[datetime] = None
    user: UserBrief


class InvitationOut(CamelModel):
    id: str
    team_id: str
    email: str
    role: str
    status: str
    invited_by_id: Optional[str] = None
    created_at: Optional[datetime] = None
    invited_by: Optional[UserBrief] = None


class InvitationWithTeam(InvitationOut):
    team: TeamBrief


class InvitationCreated(CamelModel):
    invitation: InvitationOut
    message: str


class InvitationAction(CamelModel):
    action: Literal["accept", "decline"]


class InvitationResult(SuccessOut):
    member: Optional[MemberOut] = None


class TeamOut(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    members: List[MemberOut] = []


class TeamSummary(TeamOut):
    bill_count: int = 0


class TeamList(CamelModel):
    teams: List[TeamSummary]
    invitations: List[InvitationWithTeam]


class TeamDetailTeam(TeamOut):
    bills: List[BillSummary] = []
    invitations: List[InvitationOut] = []


class BillsStats(CamelModel):
    total: int
    paid: int
    unpaid: int
    overdue: int
    total_amount: float
    paid_amount: float
    unpaid_amount: float


class TeamDetail(CamelModel):
    team: TeamDetailTeam
    bills_stats: BillsStats


class MemberList(CamelModel):
    members: List[MemberOut]
    invitations: List[InvitationOut]


# Transactions


class TransactionCreate(CamelModel):
    description: Name
    amount: Amount
    date: UtcDatetime
    type: TransactionType
    currency: Name = "USD"
    category_id: Optional[str] = None


class TransactionUpdate(CamelModel):
    description: Optional[Name] = None
    amount: Optional[Amount] = None
    currency: Optional[Name] = None
    date: Optional[UtcDatetime] = None
    type: Optional[TransactionType] = None
    category_id: Optional[str] = None


class ApprovalUpdate(CamelModel):
    approval_status: Literal["APPROVED", "REJECTED"]


class TransactionOut(CamelModel):
    id: str
    description: str
    amount: float
    currency: str
    date: datetime
    type: str
    workspace_id: str
    category_id: Optional[str] = None
    approval_status: str
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    category: Optional[CategoryOut] = None


class TransactionList(CamelModel):
    transactions: List[TransactionOut]
    pagination: Pagination


# Assets and scheduled payments


class AssetCreate(CamelModel):
    name: Name
    purchase_date: UtcDatetime
    initial_value: Amount


class AssetUpdate(CamelModel):
    name: Optional[Name] = None
    purchase_date: Optional[UtcDatetime] = None
    initial_value: Optional[Amount] = None


class AssetOut(CamelModel):
    id: str
    name: str
    purchase_date: datetime
    initial_value: float
    workspace_id: str


class ScheduledPaymentCreate(CamelModel):
    description: Name
    amount: Amount
    currency: Name
    due_date: UtcDatetime
    is_recurring: bool = False
    frequency: Optional[str] = None
    category_id: Optional[str] = None


class ScheduledPaymentUpdate(CamelModel):
    description: Optional[Name] = None
    amount: Optional[Amount] = None
    currency: Optional[Name] = None
    due_date: Optional[UtcDatetime] = None
    is_recurring: Optional[bool] = None
    frequency: Optional[str] = None
    category_id: Optional[str] = None


class ScheduledPaymentOut(CamelModel):
    id: str
    description: str
    amount: float
    currency: str
    due_date: datetime
    is_recurring: bool
    frequency: Optional[str] = None
    category_id: Optional[str] = None
    workspace_id: str
    category: Optional[CategoryOut] = None


class ScheduledPaymentList(CamelModel):
    scheduled_payments: List[ScheduledPaymentOut]
    pagination: Pagination


# Notifications


class NotificationOut(CamelModel):
    id: str
    user_id: str
    bill_id: Optional[str] = None
    team_id: Optional[str] = None
    type: str
    message: str
    read: bool
    created_at: Optional[datetime] = None
    bill: Optional[BillRef] = None
    team: Optional[TeamBrief] = None


class NotificationList(CamelModel):
    notifications: List[NotificationOut]
    pagination: Pagination
    unread_count: int


class NotificationBulkUpdate(CamelModel):
    ids: Optional[List[str]] = None
    read: Optional[bool] = None
    mark_all_as_read: Optional[bool] = None

    @model_validator(mode="after")
    def has_target(self):
        if self.ids is None and self.mark_all_as_read is None:
            raise ValueError("Either ids or markAllAsRead is required")
        return self


class NotificationIds(CamelModel):
    ids: Annotated[List[str], Field(min_length=1)]


class NotificationReadUpdate(CamelModel):
    read: bool


class DispatchResult(CamelModel):
    bill_id: str
    recipient: str
    status: Literal["sent", "failed"]


class SweepOut(CamelModel):
    success: bool = True
    notifications_sent: int
    results: List[DispatchResult]
