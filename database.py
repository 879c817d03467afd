import uuid
from datetime import datetime

from sqlalchemy import (
    create_engine,
    Column,
    String,
    Float,
    Integer,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import sessionmaker, declarative_base, relationship

from config import DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def new_id():
    return uuid.uuid4().hex


def utcnow():
    # Naive UTC everywhere; incoming aware datetimes are normalised in schemas.
    return datetime.utcnow()


class Workspace(Base):
    __tablename__ = "workspaces"
    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    owner_id = Column(String(32), index=True)
    created_at = Column(DateTime, default=utcnow)

    users = relationship("User", back_populates="workspace")


class User(Base):
    __tablename__ = "users"
    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String)
    email = Column(String, unique=True, index=True, nullable=False)
    password = Column(String)
    phone = Column(String, nullable=True)
    role = Column(String, default="MEMBER", nullable=False)
    workspace_id = Column(String(32), ForeignKey("workspaces.id"), nullable=True)
    email_notifications = Column(Boolean, default=True, nullable=False)
    push_notifications = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    workspace = relationship("Workspace", back_populates="users")


class Team(Base):
    __tablename__ = "teams"
    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    created_at = Column(DateTime, default=utcnow)

    members = relationship("TeamMember", back_populates="team")
    bills = relationship("Bill", back_populates="team")
    invitations = relationship("TeamInvitation", back_populates="team")


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_member"),)
    id = Column(String(32), primary_key=True, default=new_id)
    team_id = Column(String(32), ForeignKey("teams.id"), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String, default="MEMBER", nullable=False)
    notifications_enabled = Column(Boolean, default=True, nullable=False)
    joined_at = Column(DateTime, default=utcnow)

    team = relationship("Team", back_populates="members")
    user = relationship("User")


class TeamInvitation(Base):
    __tablename__ = "team_invitations"
    id = Column(String(32), primary_key=True, default=new_id)
    team_id = Column(String(32), ForeignKey("teams.id"), nullable=False, index=True)
    email = Column(String, nullable=False, index=True)
    role = Column(String, default="MEMBER", nullable=False)
    invited_by_id = Column(String(32), ForeignKey("users.id"), nullable=True)
    status = Column(String, default="PENDING", nullable=False)
    created_at = Column(DateTime, default=utcnow)

    team = relationship("Team", back_populates="invitations")
    invited_by = relationship("User")


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("workspace_id", "name", name="uq_category_workspace_name"),
    )
    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    color = Column(String(7), default="#FFFFFF", nullable=False)
    workspace_id = Column(String(32), ForeignKey("workspaces.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)


class Bill(Base):
    __tablename__ = "bills"
    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    due_date = Column(DateTime, nullable=False, index=True)
    description = Column(Text, default="")
    is_recurring = Column(Boolean, default=False, nullable=False)
    recurring_period = Column(String, nullable=True)
    recurring_end_date = Column(DateTime, nullable=True)
    is_paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=True, index=True)
    team_id = Column(String(32), ForeignKey("teams.id"), nullable=True, index=True)
    category_id = Column(String(32), ForeignKey("categories.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User")
    team = relationship("Team", back_populates="bills")
    category = relationship("Category")
    reminders = relationship("Reminder", back_populates="bill", order_by="Reminder.days_before")


class Reminder(Base):
    __tablename__ = "reminders"
    id = Column(String(32), primary_key=True, default=new_id)
    bill_id = Column(String(32), ForeignKey("bills.id"), nullable=False, index=True)
    days_before = Column(Integer, nullable=False)
    sent_at = Column(DateTime, nullable=True)

    bill = relationship("Bill", back_populates="reminders")


class ReminderDispatch(Base):
    __tablename__ = "reminder_dispatches"
    __table_args__ = (
        UniqueConstraint("reminder_id", "email", name="uq_dispatch_reminder_email"),
    )
    id = Column(String(32), primary_key=True, default=new_id)
    reminder_id = Column(String(32), ForeignKey("reminders.id"), nullable=False, index=True)
    email = Column(String, nullable=False)
    status = Column(String, nullable=False)
    attempted_at = Column(DateTime, default=utcnow)


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    bill_id = Column(String(32), ForeignKey("bills.id"), nullable=True)
    team_id = Column(String(32), ForeignKey("teams.id"), nullable=True)
    type = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    bill = relationship("Bill")
    team = relationship("Team")


class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(String(32), primary_key=True, default=new_id)
    description = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    date = Column(DateTime, nullable=False)
    type = Column(String, nullable=False)
    workspace_id = Column(String(32), ForeignKey("workspaces.id"), nullable=False, index=True)
    category_id = Column(String(32), ForeignKey("categories.id"), nullable=True)
    approval_status = Column(String, default="PENDING", nullable=False)
    approved_by_id = Column(String(32), ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    category = relationship("Category")


class Asset(Base):
    __tablename__ = "assets"
    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    purchase_date = Column(DateTime, nullable=False)
    initial_value = Column(Float, nullable=False)
    workspace_id = Column(String(32), ForeignKey("workspaces.id"), nullable=False, index=True)


class ScheduledPayment(Base):
    __tablename__ = "scheduled_payments"
    id = Column(String(32), primary_key=True, default=new_id)
    description = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    due_date = Column(DateTime, nullable=False)
    is_recurring = Column(Boolean, default=False, nullable=False)
    frequency = Column(String, nullable=True)
    category_id = Column(String(32), ForeignKey("categories.id"), nullable=True)
    workspace_id = Column(String(32), ForeignKey("workspaces.id"), nullable=False, index=True)

    category = relationship("Category")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
