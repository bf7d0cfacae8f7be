"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
groups, members, join requests, activity logs). Repositories return
SQLModel objects and stage changes with `flush()`; they never commit.
The calling service owns the transaction so a whole workflow step is
committed or rolled back together.
"""

from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy import delete, func
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def set_role(self, user: models.User, role: str) -> models.User:
        user.role = role
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class StudyGroupRepository:
    """Queries and staged writes for `StudyGroup` rows."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, group: models.StudyGroup) -> models.StudyGroup:
        self.session.add(group)
        self.session.flush()
        return group

    def get(self, group_id: str) -> Optional[models.StudyGroup]:
        """Fetch a group by id."""
        return self.session.get(models.StudyGroup, group_id)

    def get_for_update(self, group_id: str) -> Optional[models.StudyGroup]:
        """Fetch a group and lock its row until the transaction ends.

        SQLite has no row locks and ignores the clause; there the foreign
        keys reject rows added for a group removed in the meantime.
        """
        stmt = select(models.StudyGroup).where(models.StudyGroup.id == group_id).with_for_update()
        return self.session.exec(stmt).first()

    def list_all(self, status: Optional[str] = None) -> List[models.StudyGroup]:
        """Return every group, newest first, optionally filtered by status."""
        stmt = select(models.StudyGroup)
        if status:
            stmt = stmt.where(models.StudyGroup.status == status)
        stmt = stmt.order_by(models.StudyGroup.created_at.desc())
        return self.session.exec(stmt).all()

    def name_in_use(self, name: str) -> bool:
        """Return True if a pending or approved group already uses `name`."""
        stmt = select(models.StudyGroup.id).where(
            models.StudyGroup.name == name,
            models.StudyGroup.status != models.GroupStatus.REJECTED.value
        )
        return self.session.exec(stmt).first() is not None

    def list_by_ids(self, group_ids: List[str]) -> List[models.StudyGroup]:
        if not group_ids:
            return []
        stmt = select(models.StudyGroup).where(models.StudyGroup.id.in_(group_ids)).order_by(models.StudyGroup.created_at.desc())
        return self.session.exec(stmt).all()

    def list_requested_by(self, user_id: int, status: str) -> List[models.StudyGroup]:
        """Return groups requested by `user_id` that are in `status`."""
        stmt = select(models.StudyGroup).where(
            models.StudyGroup.manager_user_id == user_id,
            models.StudyGroup.status == status
        )
        return self.session.exec(stmt).all()

    def update(self, group: models.StudyGroup) -> models.StudyGroup:
        self.session.add(group)
        self.session.flush()
        return group

    def delete(self, group_id: str) -> int:
        """Delete the group row; returns the number of rows removed."""
        result = self.session.exec(delete(models.StudyGroup).where(models.StudyGroup.id == group_id))
        return result.rowcount


class GroupMemberRepository:
    """Membership roster queries and staged writes."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, member: models.GroupMember) -> models.GroupMember:
        self.session.add(member)
        self.session.flush()
        return member

    def get(self, group_id: str, user_id: int) -> Optional[models.GroupMember]:
        """Return the membership row for the pair or `None`."""
        return self.session.get(models.GroupMember, (group_id, user_id))

    def list_for_group(self, group_id: str) -> List[models.GroupMember]:
        stmt = select(models.GroupMember).where(models.GroupMember.group_id == group_id).order_by(models.GroupMember.joined_at)
        return self.session.exec(stmt).all()

    def list_managers(self, group_id: str) -> List[int]:
        """Return the user ids holding the manager role in `group_id`."""
        stmt = select(models.GroupMember.user_id).where(
            models.GroupMember.group_id == group_id,
            models.GroupMember.role == models.MemberRole.MANAGER.value
        )
        return list(self.session.exec(stmt).all())

    def list_group_ids_for_user(self, user_id: int) -> List[str]:
        stmt = select(models.GroupMember.group_id).where(models.GroupMember.user_id == user_id)
        return list(self.session.exec(stmt).all())

    def remove(self, member: models.GroupMember) -> None:
        self.session.delete(member)
        self.session.flush()

    def delete_for_group(self, group_id: str) -> int:
        """Delete every membership row of `group_id`."""
        result = self.session.exec(delete(models.GroupMember).where(models.GroupMember.group_id == group_id))
        return result.rowcount


class JoinRequestRepository:
    """Queries and staged writes for `JoinRequest` rows."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, request: models.JoinRequest) -> models.JoinRequest:
        self.session.add(request)
        self.session.flush()
        return request

    def get_pending(self, group_id: str, user_id: int) -> Optional[models.JoinRequest]:
        """Return the pending request for the pair or `None`."""
        stmt = select(models.JoinRequest).where(
            models.JoinRequest.group_id == group_id,
            models.JoinRequest.user_id == user_id,
            models.JoinRequest.status == models.JoinRequestStatus.PENDING.value
        )
        return self.session.exec(stmt).first()

    def get_latest(self, group_id: str, user_id: int) -> Optional[models.JoinRequest]:
        """Return the most recent request of `user_id` for `group_id`."""
        stmt = select(models.JoinRequest).where(
            models.JoinRequest.group_id == group_id,
            models.JoinRequest.user_id == user_id
        ).order_by(models.JoinRequest.id.desc())
        return self.session.exec(stmt).first()

    def list_for_group(self, group_id: str, status: Optional[str] = None) -> List[models.JoinRequest]:
        """List requests for a group, newest first."""
        stmt = select(models.JoinRequest).where(models.JoinRequest.group_id == group_id)
        if status:
            stmt = stmt.where(models.JoinRequest.status == status)
        stmt = stmt.order_by(models.JoinRequest.id.desc())
        return self.session.exec(stmt).all()

    def count_pending(self, group_id: str) -> int:
        stmt = select(func.count()).select_from(models.JoinRequest).where(
            models.JoinRequest.group_id == group_id,
            models.JoinRequest.status == models.JoinRequestStatus.PENDING.value
        )
        return self.session.exec(stmt).one()

    def update(self, request: models.JoinRequest) -> models.JoinRequest:
        self.session.add(request)
        self.session.flush()
        return request

    def delete_for_group(self, group_id: str) -> int:
        """Delete every join request of `group_id`."""
        result = self.session.exec(delete(models.JoinRequest).where(models.JoinRequest.group_id == group_id))
        return result.rowcount


class ActivityLogRepository:
    """Append-only access to `ActivityLog` entries."""
    def __init__(self, session: Session):
        self.session = session

    def append(self, group_id: str, actor_user_id: Optional[int], action: str) -> models.ActivityLog:
        """Stage a new log entry. Entries are never updated or deleted."""
        entry = models.ActivityLog(group_id=group_id, actor_user_id=actor_user_id, action=action)
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_for_group(self, group_id: str) -> List[models.ActivityLog]:
        """Return entries for `group_id` in the order they were written."""
        stmt = select(models.ActivityLog).where(models.ActivityLog.group_id == group_id).order_by(models.ActivityLog.id)
        return self.session.exec(stmt).all()
