import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from access import bill_policy, owner_policy
from auth import Principal, get_current_user, get_principal, hash_password, verify_password
from database import (
    get_db,
    Bill,
    Category,
    Notification,
    Reminder,
    ReminderDispatch,
    TeamInvitation,
    TeamMember,
    User,
    Workspace,
)
from schemas import (
    AccountDelete,
    NotificationSettings,
    PasswordChange,
    ProfileOut,
    ProfileStats,
    ProfileUpdate,
    SuccessOut,
    UserOut,
)

logger = logging.getLogger(__name__)

account_router = APIRouter()


def profile_out(user: User, stats: ProfileStats = None) -> ProfileOut:
    return ProfileOut(
        **UserOut.model_validate(user).model_dump(),
        notification_settings=NotificationSettings(
            email=user.email_notifications, push=user.push_notifications
        ),
        stats=stats,
    )


@account_router.get("/profile", response_model=ProfileOut)
async def get_profile(
    user: User = Depends(get_current_user),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    stats = ProfileStats(
        bills_count=db.query(Bill).filter(bill_policy.readable(Bill, principal)).count(),
        teams_count=db.query(TeamMember).filter(TeamMember.user_id == user.id).count(),
        categories_count=(
            db.query(Category).filter(Category.workspace_id == user.workspace_id).count()
            if user.workspace_id
            else 0
        ),
        unread_notifications_count=(
            db.query(Notification)
            .filter(owner_policy.readable(Notification, principal), Notification.read.is_(False))
            .count()
        ),
    )
    return profile_out(user, stats)


@account_router.patch("/profile", response_model=ProfileOut)
async def update_profile(
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if data.email and data.email != user.email:
        existing = db.query(User).filter(User.email == data.email).first()
        if existing and existing.id != user.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email is already used by another user",
            )
        user.email = data.email

    if data.name is not None:
        user.name = data.name
    if "phone" in data.model_fields_set:
        user.phone = data.phone
    if data.notification_settings is not None:
        if data.notification_settings.email is not None:
            user.email_notifications = data.notification_settings.email
        if data.notification_settings.push is not None:
            user.push_notifications = data.notification_settings.push

    db.commit()
    db.refresh(user)
    return profile_out(user)


@account_router.post("/profile/password", response_model=SuccessOut)
async def change_password(
    data: PasswordChange,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not user.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This account has no password to change",
        )
    if not verify_password(data.current_password, user.password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    user.password = hash_password(data.new_password)
    db.commit()
    return SuccessOut()


@account_router.post("/profile/delete", response_model=SuccessOut)
async def delete_account(
    data: AccountDelete,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if user.password and not verify_password(data.password, user.password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Incorrect password")

    if db.query(Workspace).filter(Workspace.owner_id == user.id).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You own a workspace. Transfer ownership before deleting your account.",
        )
    if db.query(TeamMember).filter(TeamMember.user_id == user.id, TeamMember.role == "OWNER").first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You own a team. Transfer ownership before deleting your account.",
        )

    user_id = user.id
    personal_bills = select(Bill.id).where(Bill.user_id == user_id, Bill.team_id.is_(None))
    personal_reminders = select(Reminder.id).where(Reminder.bill_id.in_(personal_bills))
    try:
        db.query(ReminderDispatch).filter(
            ReminderDispatch.reminder_id.in_(personal_reminders)
        ).delete(synchronize_session=False)
        db.query(Reminder).filter(Reminder.bill_id.in_(personal_bills)).delete(
            synchronize_session=False
        )
        db.query(Notification).filter(
            (Notification.user_id == user_id) | Notification.bill_id.in_(personal_bills)
        ).delete(synchronize_session=False)
        db.query(Bill).filter(Bill.user_id == user_id, Bill.team_id.is_(None)).delete(
            synchronize_session=False
        )
        # Team bills stay with the team.
        db.query(Bill).filter(Bill.user_id == user_id).update(
            {Bill.user_id: None}, synchronize_session=False
        )
        db.query(TeamInvitation).filter(TeamInvitation.invited_by_id == user_id).update(
            {TeamInvitation.invited_by_id: None}, synchronize_session=False
        )
        db.query(TeamMember).filter(TeamMember.user_id == user_id).delete(
            synchronize_session=False
        )
        db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Deleted account %s", user_id)
    return SuccessOut()
