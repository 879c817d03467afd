"""Daily payment-reminder sweep.

Each reminder is claimed (``sent_at`` set where it was still null) and
committed before any email goes out, so overlapping or repeated sweeps
never send the same reminder twice. Send outcomes per recipient are kept
as ``ReminderDispatch`` rows.
"""
import html
import logging
import math
from datetime import datetime, timedelta

from config import APP_URL, REMINDER_WINDOW_DAYS
from database import (
    SessionLocal,
    utcnow,
    Bill,
    Notification,
    Reminder,
    ReminderDispatch,
)
from mailer import Mailer, get_mailer

logger = logging.getLogger(__name__)


def days_until(due_date: datetime, now: datetime) -> int:
    return math.ceil((due_date - now).total_seconds() / 86400)


def reminder_text(bill: Bill, days: int) -> str:
    unit = "day" if days == 1 else "days"
    return (
        f'The bill "{bill.name}" for {bill.amount:,.2f} is due in {days} {unit}. '
        "Please remember to pay it on time."
    )


def reminder_html(subject: str, content: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<div style="background-color: #4f46e5; padding: 20px; text-align: center;">'
        '<h1 style="color: white; margin: 0;">BillSmart</h1></div>'
        '<div style="padding: 20px; border: 1px solid #e5e7eb; border-top: none;">'
        f"<h2>{html.escape(subject)}</h2><p>{html.escape(content)}</p>"
        f'<p><a href="{APP_URL}/dashboard">Open your dashboard</a></p>'
        "</div></div>"
    )


def recipients(bill: Bill):
    """Users to remind: opted-in team members for team bills, else the owner."""
    if bill.team_id and bill.team is not None:
        return [
            member.user
            for member in bill.team.members
            if member.notifications_enabled and member.user.email
        ]
    if bill.user is not None and bill.user.email:
        return [bill.user]
    return []


def claim(db, reminder: Reminder, now: datetime) -> bool:
    claimed = (
        db.query(Reminder)
        .filter(Reminder.id == reminder.id, Reminder.sent_at.is_(None))
        .update({Reminder.sent_at: now}, synchronize_session=False)
    )
    db.commit()
    return claimed == 1


def dispatch(db, mailer: Mailer, bill: Bill, reminder: Reminder, days: int):
    subject = f"Payment reminder: {bill.name}"
    content = reminder_text(bill, days)
    results = []

    for user in recipients(bill):
        try:
            sent = mailer.send(user.email, subject, content, reminder_html(subject, content))
        except Exception:
            logger.exception("Mailer failed for reminder %s to %s", reminder.id, user.email)
            sent = False

        status = "sent" if sent else "failed"
        db.add(ReminderDispatch(reminder_id=reminder.id, email=user.email, status=status))
        if sent:
            db.add(
                Notification(
                    user_id=user.id,
                    bill_id=bill.id,
                    team_id=bill.team_id,
                    type="PAYMENT_DUE",
                    message=content,
                )
            )
        else:
            logger.warning("Reminder %s for bill %s not delivered to %s", reminder.id, bill.id, user.email)
        results.append({"bill_id": bill.id, "recipient": user.email, "status": status})

    db.commit()
    return results


def run_reminder_sweep(db, mailer: Mailer, now: datetime = None):
    """Send every reminder that has come due; returns one result per recipient."""
    now = now or utcnow()
    upcoming = (
        db.query(Bill)
        .filter(
            Bill.is_paid.is_(False),
            Bill.due_date >= now,
            Bill.due_date <= now + timedelta(days=REMINDER_WINDOW_DAYS),
        )
        .order_by(Bill.due_date.asc())
        .all()
    )

    results = []
    for bill in upcoming:
        days = days_until(bill.due_date, now)
        for reminder in list(bill.reminders):
            if reminder.sent_at is not None or days > reminder.days_before:
                continue
            if not claim(db, reminder, now):
                continue
            results.extend(dispatch(db, mailer, bill, reminder, days))

    sent = sum(1 for r in results if r["status"] == "sent")
    logger.info("Reminder sweep: %d bills checked, %d sent, %d failed", len(upcoming), sent, len(results) - sent)
    return results


def scheduled_sweep():
    with SessionLocal() as db:
        run_reminder_sweep(db, get_mailer())
