import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from access import TEAM_MANAGERS, TeamScope, require_team_member, team_membership
from auth import Principal, get_principal
from database import (
    get_db,
    utcnow,
    Bill,
    Notification,
    Reminder,
    ReminderDispatch,
    Team,
    TeamInvitation,
    TeamMember,
    User,
)
from schemas import (
    BillSummary,
    BillsStats,
    InvitationAction,
    InvitationCreated,
    InvitationOut,
    InvitationResult,
    InvitationWithTeam,
    MemberList,
    MemberOut,
    MemberRoleUpdate,
    SuccessOut,
    TeamCreate,
    TeamDetail,
    TeamDetailTeam,
    TeamList,
    TeamMemberIn,
    TeamOut,
    TeamSummary,
    TeamUpdate,
)

logger = logging.getLogger(__name__)

teams_router = APIRouter()
invitations_router = APIRouter()

ROLE_ORDER = case(
    (TeamMember.role == "OWNER", 0),
    (TeamMember.role == "ADMIN", 1),
    else_=2,
)


def pending_invitations(db: Session, team_id: str):
    return (
        db.query(TeamInvitation)
        .filter(TeamInvitation.team_id == team_id, TeamInvitation.status == "PENDING")
        .order_by(TeamInvitation.created_at.asc())
        .all()
    )


def load_team(db: Session, team_id: str) -> Team:
    return db.query(Team).filter(Team.id == team_id).first()


def set_owner_role(db: Session, team_id: str, user_id: str, role: str) -> bool:
    """Rewrite the role of ``user_id``'s OWNER row; False when they are not the owner."""
    count = (
        db.query(TeamMember)
        .filter(
            TeamMember.team_id == team_id,
            TeamMember.user_id == user_id,
            TeamMember.role == "OWNER",
        )
        .update({TeamMember.role: role}, synchronize_session=False)
    )
    return count == 1


def bills_stats(db: Session, team_id: str) -> BillsStats:
    now = utcnow()
    row = (
        db.query(
            func.count(Bill.id),
            func.sum(case((Bill.is_paid.is_(True), 1), else_=0)),
            func.sum(case((Bill.is_paid.is_(False), 1), else_=0)),
            func.sum(case(((Bill.is_paid.is_(False)) & (Bill.due_date < now), 1), else_=0)),
            func.sum(Bill.amount),
            func.sum(case((Bill.is_paid.is_(True), Bill.amount), else_=0)),
            func.sum(case((Bill.is_paid.is_(False), Bill.amount), else_=0)),
        )
        .filter(Bill.team_id == team_id)
        .one()
    )
    return BillsStats(
        total=row[0] or 0,
        paid=row[1] or 0,
        unpaid=row[2] or 0,
        overdue=row[3] or 0,
        total_amount=row[4] or 0.0,
        paid_amount=row[5] or 0.0,
        unpaid_amount=row[6] or 0.0,
    )


def add_member_or_invite(db: Session, team_id: str, inviter_id: str, entry: TeamMemberIn):
    """Add an existing user directly, otherwise leave a pending invitation.

    Returns ``(member, invitation)`` with exactly one of them set.
    """
    user = db.query(User).filter(User.email == entry.email).first()
    if user is not None:
        if team_membership(db, team_id, user.id) is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User is already a member of this team",
            )
        member = TeamMember(team_id=team_id, user_id=user.id, role=entry.role)
        db.add(member)
        return member, None

    existing = (
        db.query(TeamInvitation)
        .filter(
            TeamInvitation.team_id == team_id,
            TeamInvitation.email == entry.email,
            TeamInvitation.status == "PENDING",
        )
        .first()
    )
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An invitation has already been sent to this email",
        )
    invitation = TeamInvitation(
        team_id=team_id,
        email=entry.email,
        role=entry.role,
        invited_by_id=inviter_id,
        status="PENDING",
    )
    db.add(invitation)
    return None, invitation


# Teams


@teams_router.get("/teams", response_model=TeamList)
async def list_teams(
    db: Session = Depends(get_db), principal: Principal = Depends(get_principal)
):
    teams = (
        db.query(Team)
        .filter(Team.id.in_(TeamScope(principal.user_id).team_ids()))
        .order_by(Team.created_at.asc())
        .all()
    )
    bill_counts = dict(
        db.query(Bill.team_id, func.count(Bill.id))
        .filter(Bill.team_id.in_([team.id for team in teams]))
        .group_by(Bill.team_id)
        .all()
    )
    summaries = [
        TeamSummary.model_validate(team).model_copy(
            update={"bill_count": bill_counts.get(team.id, 0)}
        )
        for team in teams
    ]

    invitations = (
        db.query(TeamInvitation)
        .filter(TeamInvitation.email == principal.email, TeamInvitation.status == "PENDING")
        .all()
    )
    return TeamList(
        teams=summaries,
        invitations=[InvitationWithTeam.model_validate(i) for i in invitations],
    )


@teams_router.post("/teams", response_model=TeamOut, status_code=status.HTTP_201_CREATED)
async def create_team(
    data: TeamCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    team = Team(name=data.name, description=data.description or "")
    db.add(team)
    db.flush()
    db.add(TeamMember(team_id=team.id, user_id=principal.user_id, role="OWNER"))
    db.flush()

    seen = {principal.email}
    for entry in data.members or []:
        if entry.email in seen:
            continue
        seen.add(entry.email)
        add_member_or_invite(db, team.id, principal.user_id, entry)

    db.commit()
    logger.info("User %s created team %s", principal.user_id, team.id)
    return load_team(db, team.id)


@teams_router.get("/teams/{team_id}", response_model=TeamDetail)
async def get_team(
    team_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_team_member(db, principal, team_id)
    team = load_team(db, team_id)

    unpaid = (
        db.query(Bill)
        .filter(Bill.team_id == team_id, Bill.is_paid.is_(False))
        .order_by(Bill.due_date.asc())
        .limit(5)
        .all()
    )
    detail = TeamDetailTeam.model_validate(team).model_copy(
        update={
            "bills": [BillSummary.model_validate(b) for b in unpaid],
            "invitations": [InvitationOut.model_validate(i) for i in pending_invitations(db, team_id)],
        }
    )
    return TeamDetail(team=detail, bills_stats=bills_stats(db, team_id))


@teams_router.patch("/teams/{team_id}", response_model=TeamOut)
async def update_team(
    team_id: str,
    data: TeamUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_team_member(db, principal, team_id, TEAM_MANAGERS)

    values = data.changes()
    if values:
        count = (
            db.query(Team)
            .filter(
                Team.id == team_id,
                Team.id.in_(TeamScope(principal.user_id, TEAM_MANAGERS).team_ids()),
            )
            .update(values, synchronize_session=False)
        )
        if count == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
        db.commit()
    return load_team(db, team_id)


@teams_router.delete("/teams/{team_id}", response_model=SuccessOut)
async def delete_team(
    team_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    team_bills = select(Bill.id).where(Bill.team_id == team_id)
    team_reminders = select(Reminder.id).where(Reminder.bill_id.in_(team_bills))
    try:
        # Locks the caller's owner row for the rest of the transaction.
        if not set_owner_role(db, team_id, principal.user_id, "OWNER"):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the team owner can delete the team",
            )
        db.query(TeamInvitation).filter(TeamInvitation.team_id == team_id).delete(
            synchronize_session=False
        )
        db.query(ReminderDispatch).filter(
            ReminderDispatch.reminder_id.in_(team_reminders)
        ).delete(synchronize_session=False)
        db.query(Reminder).filter(Reminder.bill_id.in_(team_bills)).delete(
            synchronize_session=False
        )
        db.query(Notification).filter(
            (Notification.team_id == team_id) | Notification.bill_id.in_(team_bills)
        ).delete(synchronize_session=False)
        db.query(Bill).filter(Bill.team_id == team_id).delete(synchronize_session=False)
        db.query(TeamMember).filter(TeamMember.team_id == team_id).delete(
            synchronize_session=False
        )
        db.query(Team).filter(Team.id == team_id).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("User %s deleted team %s", principal.user_id, team_id)
    return SuccessOut()


# Members


@teams_router.get("/teams/{team_id}/members", response_model=MemberList)
async def list_members(
    team_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_team_member(db, principal, team_id)
    members = (
        db.query(TeamMember)
        .join(User, TeamMember.user_id == User.id)
        .filter(TeamMember.team_id == team_id)
        .order_by(ROLE_ORDER, User.name.asc())
        .all()
    )
    return MemberList(
        members=[MemberOut.model_validate(m) for m in members],
        invitations=[InvitationOut.model_validate(i) for i in pending_invitations(db, team_id)],
    )


@teams_router.post("/teams/{team_id}/members", status_code=status.HTTP_201_CREATED)
async def add_member(
    team_id: str,
    data: TeamMemberIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_team_member(db, principal, team_id, TEAM_MANAGERS)

    member, invitation = add_member_or_invite(db, team_id, principal.user_id, data)
    db.commit()
    if member is not None:
        db.refresh(member)
        return MemberOut.model_validate(member)

    db.refresh(invitation)
    return InvitationCreated(
        invitation=InvitationOut.model_validate(invitation),
        message="Invitation sent",
    )


def get_team_member(db: Session, team_id: str, member_id: str) -> TeamMember:
    member = (
        db.query(TeamMember)
        .filter(TeamMember.id == member_id, TeamMember.team_id == team_id)
        .first()
    )
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    return member


@teams_router.get("/teams/{team_id}/members/{member_id}", response_model=MemberOut)
async def get_member(
    team_id: str,
    member_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_team_member(db, principal, team_id)
    return get_team_member(db, team_id, member_id)


@teams_router.patch("/teams/{team_id}/members/{member_id}", response_model=MemberOut)
async def update_member_role(
    team_id: str,
    member_id: str,
    data: MemberRoleUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_team_member(db, principal, team_id, ("OWNER",))
    member = get_team_member(db, team_id, member_id)

    if member.role == "OWNER" and data.role != "OWNER":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Transfer ownership to another member before changing the owner's role",
        )

    if member.role == data.role:
        return member

    try:
        if data.role == "OWNER":
            # Demote the caller first; only the current owner's demotion succeeds.
            if not set_owner_role(db, team_id, principal.user_id, "ADMIN"):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="You do not have permission for this action",
                )
            scope = TeamMember.team_id == team_id
        else:
            scope = TeamMember.team_id.in_(TeamScope(principal.user_id, ("OWNER",)).team_ids())

        count = (
            db.query(TeamMember)
            .filter(
                TeamMember.id == member_id,
                TeamMember.team_id == team_id,
                TeamMember.role != "OWNER",
                scope,
            )
            .update({TeamMember.role: data.role}, synchronize_session=False)
        )
        if count == 0:
            if data.role != "OWNER":
                require_team_member(db, principal, team_id, ("OWNER",))
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
        db.commit()
    except Exception:
        db.rollback()
        raise
    if data.role == "OWNER":
        logger.info("Team %s ownership moved to member %s", team_id, member_id)
    db.refresh(member)
    return member


@teams_router.delete("/teams/{team_id}/members/{member_id}", response_model=SuccessOut)
async def remove_member(
    team_id: str,
    member_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    caller = require_team_member(db, principal, team_id)
    member = get_team_member(db, team_id, member_id)

    if member.role == "OWNER":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The team owner cannot be removed",
        )
    if caller.role not in TEAM_MANAGERS and member.user_id != principal.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to remove this member",
        )

    count = (
        db.query(TeamMember)
        .filter(
            TeamMember.id == member_id,
            TeamMember.team_id == team_id,
            TeamMember.role != "OWNER",
            or_(
                TeamMember.user_id == principal.user_id,
                TeamMember.team_id.in_(TeamScope(principal.user_id, TEAM_MANAGERS).team_ids()),
            ),
        )
        .delete(synchronize_session=False)
    )
    if count == 0:
        db.rollback()
        get_team_member(db, team_id, member_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to remove this member",
        )
    db.commit()
    return SuccessOut()


# Invitations


def get_invitation(db: Session, invitation_id: str) -> TeamInvitation:
    invitation = db.query(TeamInvitation).filter(TeamInvitation.id == invitation_id).first()
    if invitation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")
    return invitation


def require_invitee(invitation: TeamInvitation, principal: Principal):
    if invitation.email != principal.email:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this invitation",
        )


@invitations_router.get("/invitations/{invitation_id}", response_model=InvitationWithTeam)
async def get_invitation_detail(
    invitation_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    invitation = get_invitation(db, invitation_id)
    require_invitee(invitation, principal)
    return invitation


@invitations_router.post("/invitations/{invitation_id}", response_model=InvitationResult)
async def respond_to_invitation(
    invitation_id: str,
    data: InvitationAction,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    invitation = get_invitation(db, invitation_id)
    require_invitee(invitation, principal)

    new_status = "ACCEPTED" if data.action == "accept" else "DECLINED"
    # Claim the invitation; a second concurrent answer finds it no longer PENDING.
    claimed = (
        db.query(TeamInvitation)
        .filter(TeamInvitation.id == invitation_id, TeamInvitation.status == "PENDING")
        .update({TeamInvitation.status: new_status}, synchronize_session=False)
    )
    if claimed == 0:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invitation has already been processed",
        )

    if data.action == "decline":
        db.commit()
        return InvitationResult(message="Invitation declined")

    if team_membership(db, invitation.team_id, principal.user_id) is not None:
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You are already a member of this team",
        )

    member = TeamMember(team_id=invitation.team_id, user_id=principal.user_id, role=invitation.role)
    db.add(member)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You are already a member of this team",
        )
    db.refresh(member)
    logger.info("User %s joined team %s via invitation", principal.user_id, invitation.team_id)
    return InvitationResult(message="Invitation accepted", member=MemberOut.model_validate(member))


@invitations_router.delete("/invitations/{invitation_id}", response_model=SuccessOut)
async def cancel_invitation(
    invitation_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    get_invitation(db, invitation_id)

    # Inviter, invitee or a manager of the invitation's team.
    count = (
        db.query(TeamInvitation)
        .filter(
            TeamInvitation.id == invitation_id,
            or_(
                TeamInvitation.invited_by_id == principal.user_id,
                TeamInvitation.email == principal.email,
                TeamInvitation.team_id.in_(
                    TeamScope(principal.user_id, TEAM_MANAGERS).team_ids()
                ),
            ),
        )
        .delete(synchronize_session=False)
    )
    if count == 0:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to cancel this invitation",
        )
    db.commit()
    return SuccessOut()
