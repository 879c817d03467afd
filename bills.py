import logging
from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from access import bill_policy, paginate, require_team_member
from auth import Principal, get_principal
from database import (
    get_db,
    utcnow,
    Bill,
    Category,
    Notification,
    Reminder,
    ReminderDispatch,
)
from schemas import (
    BillCreate,
    BillDetail,
    BillList,
    BillOut,
    BillUpdate,
    SuccessOut,
    UpcomingPayment,
)

logger = logging.getLogger(__name__)

bills_router = APIRouter()

RECURRENCE_STEPS = {
    "WEEKLY": relativedelta(weeks=+1),
    "MONTHLY": relativedelta(months=+1),
    "QUARTERLY": relativedelta(months=+3),
    "YEARLY": relativedelta(years=+1),
}
UPCOMING_PAYMENTS = 5


def period_range(period: str, now: datetime):
    """Return the half-open [start, end) due-date window for a named period."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        # Weeks start on Sunday.
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=7)
    if period == "month":
        start = today.replace(day=1)
        return start, start + relativedelta(months=+1)
    if period == "quarter":
        start = today.replace(month=(today.month - 1) // 3 * 3 + 1, day=1)
        return start, start + relativedelta(months=+3)
    if period == "year":
        start = today.replace(month=1, day=1)
        return start, start + relativedelta(years=+1)
    return None


def upcoming_payments(bill: Bill, count: int = UPCOMING_PAYMENTS):
    step = RECURRENCE_STEPS.get(bill.recurring_period)
    if not bill.is_recurring or step is None:
        return []

    payments = []
    for i in range(1, count + 1):
        # Step from the original due date each time so month-end dates don't drift.
        next_date = bill.due_date + step * i
        if bill.recurring_end_date and next_date > bill.recurring_end_date:
            break
        payments.append(UpcomingPayment(date=next_date, amount=bill.amount))
    return payments


def check_category(db: Session, principal: Principal, category_id: Optional[str]):
    if not category_id:
        return
    category = (
        db.query(Category)
        .filter(Category.id == category_id, Category.workspace_id == principal.workspace_id)
        .first()
    )
    if category is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown category")


def replace_reminders(db: Session, bill_id: str, reminders):
    reminder_ids = select(Reminder.id).where(Reminder.bill_id == bill_id)
    db.query(ReminderDispatch).filter(ReminderDispatch.reminder_id.in_(reminder_ids)).delete(
        synchronize_session=False
    )
    db.query(Reminder).filter(Reminder.bill_id == bill_id).delete(synchronize_session=False)
    for reminder in reminders:
        db.add(Reminder(bill_id=bill_id, days_before=reminder.days_before))


def load_bill(db: Session, bill_id: str) -> Bill:
    return db.query(Bill).filter(Bill.id == bill_id).first()


@bills_router.get("/bills", response_model=BillList)
async def list_bills(
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(paid|unpaid)$"),
    category_id: Optional[str] = Query(None, alias="categoryId"),
    team_id: Optional[str] = Query(None, alias="teamId"),
    period: Optional[str] = Query(None, pattern="^(week|month|quarter|year)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    query = db.query(Bill).filter(bill_policy.readable(Bill, principal))

    if status_filter == "paid":
        query = query.filter(Bill.is_paid.is_(True))
    elif status_filter == "unpaid":
        query = query.filter(Bill.is_paid.is_(False))

    if category_id:
        query = query.filter(Bill.category_id == category_id)

    if team_id:
        require_team_member(db, principal, team_id)
        query = query.filter(Bill.team_id == team_id)

    if period:
        start, end = period_range(period, utcnow())
        query = query.filter(Bill.due_date >= start, Bill.due_date < end)

    bills, pagination = paginate(query.order_by(Bill.due_date.asc()), page, limit)
    return {"bills": bills, "pagination": pagination}


@bills_router.post("/bills", response_model=BillOut, status_code=status.HTTP_201_CREATED)
async def create_bill(
    data: BillCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    if data.team_id:
        require_team_member(db, principal, data.team_id)
    check_category(db, principal, data.category_id)

    bill = Bill(
        name=data.name,
        amount=data.amount,
        due_date=data.due_date,
        description=data.description or "",
        is_recurring=data.is_recurring,
        recurring_period=data.recurring_period if data.is_recurring else None,
        recurring_end_date=data.recurring_end_date if data.is_recurring else None,
        is_paid=False,
        user_id=principal.user_id,
        team_id=data.team_id or None,
        category_id=data.category_id or None,
    )
    db.add(bill)
    db.flush()

    for reminder in data.reminders or []:
        db.add(Reminder(bill_id=bill.id, days_before=reminder.days_before))

    db.commit()
    logger.info("User %s created bill %s", principal.user_id, bill.id)
    return load_bill(db, bill.id)


@bills_router.get("/bills/{bill_id}", response_model=BillDetail)
async def get_bill(
    bill_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    bill = bill_policy.get(db, Bill, bill_id, principal, detail="Bill not found")
    detail = BillDetail.model_validate(bill)
    return detail.model_copy(update={"upcoming_payments": upcoming_payments(bill)})


@bills_router.patch("/bills/{bill_id}", response_model=BillOut)
async def update_bill(
    bill_id: str,
    data: BillUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    bill_policy.get_for_write(
        db, Bill, bill_id, principal,
        detail="Bill not found",
        forbidden="You do not have permission to modify this bill",
    )

    changes = data.changes(
        nullable=("category_id", "team_id", "recurring_period", "recurring_end_date"),
        exclude=("reminders", "paid_at"),
    )

    if changes.get("team_id"):
        require_team_member(db, principal, changes["team_id"])
    check_category(db, principal, changes.get("category_id"))

    values = {getattr(Bill, field): value for field, value in changes.items()}
    if data.is_paid is True:
        values[Bill.paid_at] = data.paid_at or utcnow()
    elif data.is_paid is False:
        values[Bill.paid_at] = None

    bill_policy.update(db, Bill, bill_id, principal, values, detail="Bill not found")

    if data.reminders:
        replace_reminders(db, bill_id, data.reminders)

    db.commit()
    return load_bill(db, bill_id)


@bills_router.delete("/bills/{bill_id}", response_model=SuccessOut)
async def delete_bill(
    bill_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    bill_policy.get_for_write(
        db, Bill, bill_id, principal,
        detail="Bill not found",
        forbidden="You do not have permission to delete this bill",
    )

    replace_reminders(db, bill_id, [])
    db.query(Notification).filter(Notification.bill_id == bill_id).delete(
        synchronize_session=False
    )
    bill_policy.delete(db, Bill, bill_id, principal, detail="Bill not found")
    db.commit()
    logger.info("User %s deleted bill %s", principal.user_id, bill_id)
    return SuccessOut()
