"""Tenant scoping and role checks shared by every resource router.

A scope renders the SQL filter that confines a query to what the caller may
see: rows they own, rows of teams they belong to (optionally with a minimum
role), or rows of their workspace. Routers never filter by a tenant id taken
from the request body; the ids always come from the ``Principal``.

Status policy:

* 401 - no principal, or a principal without a workspace on a workspace route.
* 404 - the row is outside every scope the caller can read.
* 403 - the row is readable but not writable, or the caller names a team
  they are not a member of (missing and foreign teams look the same).
"""
import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Query, Session

from auth import Principal
from database import TeamMember

TEAM_MANAGERS = ("OWNER", "ADMIN")


@dataclass(frozen=True)
class OwnerScope:
    user_id: str

    def clause(self, model):
        return model.user_id == self.user_id


@dataclass(frozen=True)
class TeamScope:
    user_id: str
    roles: Optional[Tuple[str, ...]] = None

    def team_ids(self):
        query = select(TeamMember.team_id).where(TeamMember.user_id == self.user_id)
        if self.roles:
            query = query.where(TeamMember.role.in_(self.roles))
        return query

    def clause(self, model):
        return model.team_id.in_(self.team_ids())


@dataclass(frozen=True)
class WorkspaceScope:
    workspace_id: str

    def clause(self, model):
        return model.workspace_id == self.workspace_id


def require_workspace(principal: Principal) -> str:
    if not principal.workspace_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return principal.workspace_id


def scope_filter(model, scopes: Sequence):
    return or_(*(scope.clause(model) for scope in scopes))


class Policy:
    """Read and write scopes for one resource family."""

    def __init__(self, read: Callable[[Principal], Sequence], write: Optional[Callable] = None):
        self.read = read
        self.write = write or read

    def readable(self, model, principal: Principal):
        return scope_filter(model, self.read(principal))

    def writable(self, model, principal: Principal):
        return scope_filter(model, self.write(principal))

    def get(self, db: Session, model, resource_id: str, principal: Principal, detail="Not found"):
        obj = (
            db.query(model)
            .filter(model.id == resource_id, self.readable(model, principal))
            .first()
        )
        if obj is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
        return obj

    def get_for_write(
        self,
        db: Session,
        model,
        resource_id: str,
        principal: Principal,
        detail="Not found",
        forbidden="You do not have permission for this action",
    ):
        obj = self.get(db, model, resource_id, principal, detail)
        writable = (
            db.query(model.id)
            .filter(model.id == resource_id, self.writable(model, principal))
            .first()
        )
        if writable is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=forbidden)
        return obj

    def update(self, db: Session, model, resource_id: str, principal: Principal, values: dict, detail="Not found"):
        """Filtered UPDATE; zero affected rows means the row is not ours."""
        if not values:
            self.get(db, model, resource_id, principal, detail)
            return 0
        count = (
            db.query(model)
            .filter(model.id == resource_id, self.writable(model, principal))
            .update(values, synchronize_session=False)
        )
        if count == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
        return count

    def delete(self, db: Session, model, resource_id: str, principal: Principal, detail="Not found"):
        count = (
            db.query(model)
            .filter(model.id == resource_id, self.writable(model, principal))
            .delete(synchronize_session=False)
        )
        if count == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
        return count


bill_policy = Policy(
    read=lambda p: (OwnerScope(p.user_id), TeamScope(p.user_id)),
    write=lambda p: (OwnerScope(p.user_id), TeamScope(p.user_id, TEAM_MANAGERS)),
)
workspace_policy = Policy(read=lambda p: (WorkspaceScope(require_workspace(p)),))
owner_policy = Policy(read=lambda p: (OwnerScope(p.user_id),))


def team_membership(db: Session, team_id: str, user_id: str) -> Optional[TeamMember]:
    return (
        db.query(TeamMember)
        .filter(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        .first()
    )


def require_team_member(
    db: Session, principal: Principal, team_id: str, roles: Optional[Sequence[str]] = None
) -> TeamMember:
    member = team_membership(db, team_id, principal.user_id)
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this team",
        )
    if roles and member.role not in roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission for this action",
        )
    return member


def require_role(principal: Principal, roles: Sequence[str]):
    if principal.role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def paginate(query: Query, page: int, limit: int):
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    pagination = {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }
    return items, pagination
