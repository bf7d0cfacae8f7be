"""Typed failures raised by the study group workflow.

Each error names an expected business-rule violation and carries the
HTTP status the API answers with. Anything that is not a
`StudyGroupError` is an unexpected fault and is reported as a 500.
"""


class StudyGroupError(Exception):
    """Base class for workflow failures."""
    status_code = 400
    kind = "study_group_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class NotFound(StudyGroupError):
    """Study group or request not found."""
    status_code = 404
    kind = "not_found"


class Forbidden(StudyGroupError):
    """Caller is not allowed to perform this action."""
    status_code = 403
    kind = "forbidden"


# the workflow rules name this failure "Unauthorized"; HTTP calls it 403
Unauthorized = Forbidden


class DuplicateName(StudyGroupError):
    """A study group with the same name already exists."""
    kind = "duplicate_name"


class DuplicatePending(StudyGroupError):
    """A pending join request already exists for this user."""
    kind = "duplicate_pending"


class AlreadyMember(StudyGroupError):
    """User is already a member of the study group."""
    kind = "already_member"


class NotMember(StudyGroupError):
    """User is not a member of the study group."""
    status_code = 404
    kind = "not_member"


class InvalidState(StudyGroupError):
    """Transition is not allowed from the current state."""
    kind = "invalid_state"


class ManagerCannotLeave(StudyGroupError):
    """The group manager cannot leave; dissolve the group instead."""
    kind = "manager_cannot_leave"
