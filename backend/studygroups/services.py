"""Business logic services used by HTTP controllers.

This module holds the service classes that coordinate repositories.
`AuthService` registers users and issues tokens. `StudyGroupService` is
the membership workflow: group creation and approval, join requests,
direct joins, leaving and dissolving groups, and the read-only queries
over rosters, requests and activity logs.

Every mutating workflow step runs inside `_transaction()`: the checks,
the row changes and the activity log entry are committed together or
rolled back together. Uniqueness races that slip past the checks are
caught by the database constraints and surface as the matching
`StudyGroupError`.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Type

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import (
    AlreadyMember,
    DuplicateName,
    DuplicatePending,
    Forbidden,
    InvalidState,
    ManagerCannotLeave,
    NotFound,
    NotMember,
    StudyGroupError,
)

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_ALGORITHM = settings.JWT_ALGORITHM
JWT_EXPIRE_HOURS = settings.JWT_EXPIRE_HOURS

logger = logging.getLogger("studygroups.workflow")


@dataclass(frozen=True)
class Caller:
    """An authenticated user as seen by the workflow.

    The HTTP layer resolves the bearer token into this value; services
    never look at credentials themselves.
    """
    user_id: int
    is_admin: bool = False

    @classmethod
    def from_user(cls, user: models.User) -> "Caller":
        return cls(user_id=user.id, is_admin=user.role == models.UserRole.ADMINISTRATOR.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    # 23503 is the SQLSTATE of PostgreSQL; SQLite only reports a message
    if getattr(exc.orig, "pgcode", None) == "23503":
        return True
    return "FOREIGN KEY" in str(exc.orig).upper()


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Usernames listed in `ADMIN_USERNAMES` are created with the
        administrator role. Returns the persisted `User` instance.
        """
        hashed = PWD_CTX.hash(password)
        role = models.UserRole.ADMINISTRATOR if username in settings.ADMIN_USERNAMES else models.UserRole.USER
        u = models.User(username=username, password_hash=hashed, role=role.value)
        return self.user_repo.create(u)

    def authenticate(self, username: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = _now() + timedelta(hours=JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "role": user.role, "exp": int(expire.timestamp())}
        return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


class StudyGroupService:
    """The study group membership workflow."""
    def __init__(self, session: Session):
        self.session = session
        self.group_repo = repositories.StudyGroupRepository(session)
        self.member_repo = repositories.GroupMemberRepository(session)
        self.request_repo = repositories.JoinRequestRepository(session)
        self.log_repo = repositories.ActivityLogRepository(session)

    @contextmanager
    def _transaction(self, on_conflict: Type[StudyGroupError] = InvalidState):
        """Commit the enclosed work or roll all of it back.

        A constraint violation raised on flush or commit becomes
        `on_conflict`, except a broken foreign key: the group was removed
        by a concurrent request, which is `NotFound`. Typed workflow errors
        and unexpected faults are re-raised after the rollback.
        """
        try:
            yield
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if _is_foreign_key_violation(exc):
                logger.warning("foreign key conflict mapped to NotFound: %s", exc.orig)
                raise NotFound("Study group not found.") from exc
            logger.warning("constraint conflict mapped to %s: %s", on_conflict.__name__, exc.orig)
            raise on_conflict() from exc
        except Exception:
            self.session.rollback()
            raise

    def _require_group(self, group_id: str, lock: bool = False) -> models.StudyGroup:
        group = self.group_repo.get_for_update(group_id) if lock else self.group_repo.get(group_id)
        if not group:
            raise NotFound("Study group not found.")
        return group

    def _require_approved_group(self, group_id: str) -> models.StudyGroup:
        """Load an approved group, row-locked until the transaction ends."""
        group = self.group_repo.get_for_update(group_id)
        if not group or group.status != models.GroupStatus.APPROVED.value:
            raise NotFound("Study group not found.")
        return group

    def _is_manager(self, group: models.StudyGroup, user_id: int) -> bool:
        """Return True if `user_id` manages `group`.

        Approved groups answer from the roster. Groups still waiting for
        approval have no roster; their requester is the prospective
        manager.
        """
        if group.status == models.GroupStatus.APPROVED.value:
            member = self.member_repo.get(group.id, user_id)
            return member is not None and member.role == models.MemberRole.MANAGER.value
        return group.manager_user_id == user_id

    # -- group lifecycle -------------------------------------------------

    def create_study_group(self, requester_id: int, name: str, description: Optional[str] = None, allow_direct_join: bool = True) -> models.StudyGroup:
        """Submit a new group for administrator approval.

        Raises `DuplicateName` when a pending or approved group already
        uses the name. Rejected names are free to reuse.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("name is required")
        with self._transaction(on_conflict=DuplicateName):
            if self.group_repo.name_in_use(name):
                raise DuplicateName("同名学习小组已经存在。")
            group = self.group_repo.add(models.StudyGroup(
                name=name,
                description=description,
                manager_user_id=requester_id,
                allow_direct_join=allow_direct_join,
            ))
            self.log_repo.append(group.id, requester_id, f"requested creation of study group '{name}'")
        self.session.refresh(group)
        logger.info("study group %s (%s) submitted by user %s", group.id, name, requester_id)
        return group

    def approve_study_group(self, caller: Caller, group_id: str) -> models.StudyGroup:
        """Approve a pending group and enrol its requester as manager."""
        return self._resolve_group(caller, group_id, models.GroupStatus.APPROVED)

    def reject_study_group(self, caller: Caller, group_id: str) -> models.StudyGroup:
        """Reject a pending group. No membership is created."""
        return self._resolve_group(caller, group_id, models.GroupStatus.REJECTED)

    def _resolve_group(self, caller: Caller, group_id: str, outcome: models.GroupStatus) -> models.StudyGroup:
        if not caller.is_admin:
            raise Forbidden("Only administrators can review study group requests.")
        with self._transaction(on_conflict=InvalidState):
            group = self._require_group(group_id, lock=True)
            if group.status != models.GroupStatus.PENDING_APPROVAL.value:
                raise InvalidState(f"Study group is already {group.status}.")
            group.status = outcome.value
            group.resolved_at = _now()
            self.group_repo.update(group)
            if outcome == models.GroupStatus.APPROVED:
                self.member_repo.add(models.GroupMember(
                    group_id=group.id,
                    user_id=group.manager_user_id,
                    role=models.MemberRole.MANAGER.value,
                ))
            self.log_repo.append(group.id, caller.user_id, f"{outcome.value} study group '{group.name}'")
        self.session.refresh(group)
        logger.info("study group %s %s by administrator %s", group.id, outcome.value, caller.user_id)
        return group

    def dissolve_study_group(self, user_id: int, group_id: str) -> None:
        """Remove a group, its roster and its join requests.

        Only the manager may dissolve. Activity logs are kept.
        """
        with self._transaction():
            group = self._require_group(group_id, lock=True)
            if not self._is_manager(group, user_id):
                raise Forbidden("Only the group manager can dissolve the study group.")
            self._remove_group(group, user_id, "dissolved")
        logger.info("study group %s dissolved by user %s", group_id, user_id)

    def delete_study_group(self, group_id: str, caller: Caller) -> bool:
        """Delete a group on behalf of its manager or an administrator.

        Same cascade as `dissolve_study_group`, but reports a missing
        group or a denied caller by returning False.
        """
        try:
            with self._transaction():
                group = self._require_group(group_id, lock=True)
                if not (caller.is_admin or self._is_manager(group, caller.user_id)):
                    raise Forbidden()
                self._remove_group(group, caller.user_id, "deleted")
        except (NotFound, Forbidden) as exc:
            logger.info("delete of study group %s by user %s refused: %s", group_id, caller.user_id, exc.kind)
            return False
        logger.info("study group %s deleted by user %s", group_id, caller.user_id)
        return True

    def _remove_group(self, group: models.StudyGroup, actor_id: int, verb: str) -> None:
        members = self.member_repo.delete_for_group(group.id)
        requests = self.request_repo.delete_for_group(group.id)
        self.group_repo.delete(group.id)
        self.log_repo.append(group.id, actor_id, f"{verb} study group '{group.name}'")
        logger.debug("removed group %s with %s members and %s join requests", group.id, members, requests)

    # -- membership ------------------------------------------------------

    def apply_to_join(self, user_id: int, group_id: str) -> models.JoinRequest:
        """Create a pending join request for an approved group."""
        with self._transaction(on_conflict=DuplicatePending):
            group = self._require_approved_group(group_id)
            if self.member_repo.get(group.id, user_id):
                raise AlreadyMember()
            if self.request_repo.get_pending(group.id, user_id):
                raise DuplicatePending()
            request = self.request_repo.add(models.JoinRequest(group_id=group.id, user_id=user_id))
            self.log_repo.append(group.id, user_id, "applied to join")
        self.session.refresh(request)
        logger.info("user %s applied to join study group %s", user_id, group_id)
        return request

    def update_application_status(self, actor: Caller, group_id: str, user_id: int, new_status) -> models.JoinRequest:
        """Approve or reject the pending application of `user_id`.

        Only the group manager may decide. Approving enrols the applicant
        as a member; deciding twice raises `InvalidState`.
        """
        if isinstance(new_status, models.JoinRequestStatus):
            value = new_status.value
        else:
            value = str(new_status or "").strip().lower()
        if value not in (models.JoinRequestStatus.APPROVED.value, models.JoinRequestStatus.REJECTED.value):
            raise InvalidState("Status must be approved or rejected.")
        with self._transaction(on_conflict=InvalidState):
            group = self._require_approved_group(group_id)
            if not self._is_manager(group, actor.user_id):
                raise Forbidden("Only the group manager can review applications.")
            request = self.request_repo.get_latest(group.id, user_id)
            if not request:
                raise NotFound("Join request not found.")
            if request.status != models.JoinRequestStatus.PENDING.value:
                raise InvalidState(f"Join request is already {request.status}.")
            request.status = value
            request.resolved_at = _now()
            request.resolved_by = actor.user_id
            self.request_repo.update(request)
            if value == models.JoinRequestStatus.APPROVED.value:
                if self.member_repo.get(group.id, user_id):
                    raise AlreadyMember()
                self.member_repo.add(models.GroupMember(group_id=group.id, user_id=user_id))
            self.log_repo.append(group.id, actor.user_id, f"{value} application of user {user_id}")
        self.session.refresh(request)
        logger.info("application of user %s to study group %s %s by user %s", user_id, group_id, value, actor.user_id)
        return request

    def join_group(self, group_id: str, user_id: int) -> models.GroupMember:
        """Join an approved group directly, without an application."""
        with self._transaction(on_conflict=AlreadyMember):
            group = self._require_approved_group(group_id)
            if self.member_repo.get(group.id, user_id):
                raise AlreadyMember()
            if not group.allow_direct_join:
                raise Forbidden("This study group only accepts applications.")
            member = self.member_repo.add(models.GroupMember(group_id=group.id, user_id=user_id))
            pending = self.request_repo.get_pending(group.id, user_id)
            if pending:
                pending.status = models.JoinRequestStatus.APPROVED.value
                pending.resolved_at = _now()
                self.request_repo.update(pending)
            self.log_repo.append(group.id, user_id, "joined the group")
        self.session.refresh(member)
        logger.info("user %s joined study group %s", user_id, group_id)
        return member

    def leave_study_group(self, user_id: int, group_id: str, actor_id: Optional[int] = None) -> None:
        """Remove `user_id` from the roster.

        The manager cannot leave; they have to dissolve the group.
        `actor_id` records who performed the removal when it is not the
        member themselves.
        """
        with self._transaction():
            member = self.member_repo.get(group_id, user_id)
            if not member:
                raise NotMember("User was not a member of the study group.")
            if member.role == models.MemberRole.MANAGER.value:
                raise ManagerCannotLeave()
            self.member_repo.remove(member)
            actor = actor_id if actor_id is not None else user_id
            action = "left the group" if actor == user_id else f"removed user {user_id} from the group"
            self.log_repo.append(group_id, actor, action)
        if actor == user_id:
            logger.info("user %s left study group %s", user_id, group_id)
        else:
            logger.info("user %s removed from study group %s by user %s", user_id, group_id, actor)

    # -- queries ---------------------------------------------------------

    def get_all_study_groups(self, status: Optional[str] = None) -> List[models.StudyGroup]:
        return self.group_repo.list_all(status)

    def get_study_group_by_id(self, group_id: str) -> models.StudyGroup:
        return self._require_group(group_id)

    def get_user_role_in_group(self, group_id: str, user_id: int) -> Optional[str]:
        """Return `manager`, `member` or None when the user has no role."""
        member = self.member_repo.get(group_id, user_id)
        return member.role if member else None

    def get_study_group_members(self, group_id: str) -> List[models.GroupMember]:
        self._require_group(group_id)
        return self.member_repo.list_for_group(group_id)

    def get_group_managers(self, group_id: str) -> List[int]:
        return self.member_repo.list_managers(group_id)

    def get_study_groups_by_user(self, target_user_id: int, requester: Caller) -> List[models.StudyGroup]:
        """Return the groups `target_user_id` belongs to.

        Looking up yourself (or any user, as an administrator) also lists
        the groups you requested that still wait for approval. Other
        users only see approved memberships.
        """
        groups = self.group_repo.list_by_ids(self.member_repo.list_group_ids_for_user(target_user_id))
        if requester.user_id == target_user_id or requester.is_admin:
            groups = list(groups) + list(self.group_repo.list_requested_by(target_user_id, models.GroupStatus.PENDING_APPROVAL.value))
        return groups

    def get_join_requests(self, group_id: str, status: Optional[str] = None) -> List[models.JoinRequest]:
        self._require_group(group_id)
        return self.request_repo.list_for_group(group_id, status)

    def get_pending_join_requests_count(self, group_id: str) -> int:
        return self.request_repo.count_pending(group_id)

    def get_activity_logs(self, group_id: str) -> List[models.ActivityLog]:
        """Return the audit trail of a group, including dissolved groups."""
        return self.log_repo.list_for_group(group_id)

    def view_create_study_group_requests(self, caller: Caller) -> List[models.StudyGroup]:
        """List groups waiting for administrator approval."""
        if not caller.is_admin:
            raise Forbidden("Only administrators can review study group requests.")
        return self.group_repo.list_all(models.GroupStatus.PENDING_APPROVAL.value)
