import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from access import owner_policy, paginate
from auth import Principal, get_principal
from config import CRON_SECRET
from database import get_db, Notification
from mailer import Mailer, get_mailer
from reminders import run_reminder_sweep
from schemas import (
    NotificationBulkUpdate,
    NotificationIds,
    NotificationList,
    NotificationOut,
    NotificationReadUpdate,
    SuccessOut,
    SweepOut,
)

logger = logging.getLogger(__name__)

notifications_router = APIRouter()


def require_owned(db: Session, principal: Principal, ids):
    """All-or-nothing: every id must belong to the caller."""
    wanted = set(ids)
    owned = (
        db.query(Notification.id)
        .filter(Notification.id.in_(wanted), owner_policy.readable(Notification, principal))
        .count()
    )
    if owned != len(wanted):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Some notifications do not belong to the user",
        )
    return wanted


@notifications_router.get("/notifications", response_model=NotificationList)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    read: Optional[bool] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    query = db.query(Notification).filter(owner_policy.readable(Notification, principal))
    if read is not None:
        query = query.filter(Notification.read.is_(read))
    notifications, pagination = paginate(
        query.order_by(Notification.created_at.desc()), page, limit
    )

    unread_count = (
        db.query(Notification)
        .filter(owner_policy.readable(Notification, principal), Notification.read.is_(False))
        .count()
    )
    return {
        "notifications": notifications,
        "pagination": pagination,
        "unread_count": unread_count,
    }


@notifications_router.patch("/notifications", response_model=SuccessOut)
async def update_notifications(
    data: NotificationBulkUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    if data.mark_all_as_read:
        db.query(Notification).filter(
            owner_policy.writable(Notification, principal), Notification.read.is_(False)
        ).update({Notification.read: True}, synchronize_session=False)
        db.commit()
        return SuccessOut()

    if data.ids is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid data")

    ids = require_owned(db, principal, data.ids)
    db.query(Notification).filter(
        Notification.id.in_(ids), owner_policy.writable(Notification, principal)
    ).update(
        {Notification.read: data.read if data.read is not None else True},
        synchronize_session=False,
    )
    db.commit()
    return SuccessOut()


@notifications_router.delete("/notifications", response_model=SuccessOut)
async def delete_notifications(
    all_: bool = Query(False, alias="all"),
    data: Optional[NotificationIds] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    query = db.query(Notification).filter(owner_policy.writable(Notification, principal))
    if not all_:
        if data is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Notification ids are required",
            )
        query = query.filter(Notification.id.in_(require_owned(db, principal, data.ids)))

    query.delete(synchronize_session=False)
    db.commit()
    return SuccessOut()


@notifications_router.get("/notifications/send", response_model=SweepOut)
def send_notifications(
    x_cron_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    if CRON_SECRET and x_cron_secret != CRON_SECRET:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")

    results = run_reminder_sweep(db, mailer)
    return {
        "success": True,
        "notifications_sent": sum(1 for r in results if r["status"] == "sent"),
        "results": results,
    }


@notifications_router.get("/notifications/{notification_id}", response_model=NotificationOut)
async def get_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    detail = "Notification not found"
    notification = owner_policy.get(db, Notification, notification_id, principal, detail=detail)
    if not notification.read:
        owner_policy.update(
            db, Notification, notification_id, principal, {Notification.read: True}, detail=detail
        )
        db.commit()
    return notification


@notifications_router.patch("/notifications/{notification_id}", response_model=NotificationOut)
async def update_notification(
    notification_id: str,
    data: NotificationReadUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    detail = "Notification not found"
    owner_policy.update(
        db, Notification, notification_id, principal, {Notification.read: data.read}, detail=detail
    )
    db.commit()
    return owner_policy.get(db, Notification, notification_id, principal, detail=detail)


@notifications_router.delete("/notifications/{notification_id}", response_model=SuccessOut)
async def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    owner_policy.delete(db, Notification, notification_id, principal, detail="Notification not found")
    db.commit()
    return SuccessOut()
