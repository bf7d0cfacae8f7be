"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Status and role columns hold the plain string values of the enums
below so the partial unique indexes can be written as literal SQL.

Uniqueness rules live in the schema rather than in application code:

- a group name is unique among groups that are not rejected
- a group has at most one member with the `manager` role
- a (group, user) pair has at most one pending join request
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_group_id() -> str:
    return uuid.uuid4().hex


class UserRole(str, Enum):
    USER = "user"
    ADMINISTRATOR = "administrator"


class GroupStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class MemberRole(str, Enum):
    MANAGER = "manager"
    MEMBER = "member"


class JoinRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: `user` or `administrator`
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: str = Field(default=UserRole.USER.value, nullable=False)
    created_at: datetime = Field(default_factory=_utcnow)


class StudyGroup(SQLModel, table=True):
    """A study group and its approval state.

    `manager_user_id` is the user who requested the group; they become
    its manager when an administrator approves it.
    """
    __table_args__ = (
        Index(
            "uq_studygroup_active_name",
            "name",
            unique=True,
            sqlite_where=text("status != 'rejected'"),
            postgresql_where=text("status != 'rejected'"),
        ),
    )

    id: str = Field(default_factory=_new_group_id, primary_key=True, max_length=32)
    name: str = Field(index=True, nullable=False)
    description: Optional[str] = None
    status: str = Field(default=GroupStatus.PENDING_APPROVAL.value, index=True, nullable=False)
    manager_user_id: int = Field(foreign_key='user.id', index=True)
    allow_direct_join: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None


class GroupMember(SQLModel, table=True):
    """Membership of a user in a group, keyed by the (group, user) pair."""
    __table_args__ = (
        Index(
            "uq_groupmember_single_manager",
            "group_id",
            unique=True,
            sqlite_where=text("role = 'manager'"),
            postgresql_where=text("role = 'manager'"),
        ),
    )

    group_id: str = Field(foreign_key='studygroup.id', primary_key=True, max_length=32)
    user_id: int = Field(foreign_key='user.id', primary_key=True)
    role: str = Field(default=MemberRole.MEMBER.value, nullable=False)
    joined_at: datetime = Field(default_factory=_utcnow)


class JoinRequest(SQLModel, table=True):
    """An application to join a group, resolved by the group manager."""
    __table_args__ = (
        Index(
            "uq_joinrequest_pending",
            "group_id",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: str = Field(foreign_key='studygroup.id', index=True, max_length=32)
    user_id: int = Field(foreign_key='user.id', index=True)
    status: str = Field(default=JoinRequestStatus.PENDING.value, nullable=False)
    requested_at: datetime = Field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None


class ActivityLog(SQLModel, table=True):
    """Append-only audit entry.

    `group_id` is not a foreign key: entries outlive the group they
    describe.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: str = Field(index=True, max_length=32)
    actor_user_id: Optional[int] = Field(default=None, index=True)
    action: str
    timestamp: datetime = Field(default_factory=_utcnow)
