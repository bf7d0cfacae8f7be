"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Field aliases follow the camelCase names
the study group clients send (`studyGroupId`, `userId`, ...); the
snake_case names are accepted as well.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class RegisterIn(BaseModel):
    """Payload for user registration/login endpoints."""
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class StudyGroupIn(BaseModel):
    """Request to create a study group."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    allow_direct_join: bool = Field(default=True, alias="allowDirectJoin")


class ApplyToJoinIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    study_group_id: str = Field(min_length=1, alias="studyGroupId")


class GroupMembershipIn(BaseModel):
    """Body of the leave and dissolve endpoints."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    group_id: str = Field(min_length=1, alias="groupId")


class UpdateStatusIn(BaseModel):
    """A manager's decision on a join request.

    `status` is `approved` or `rejected`; any other value is refused by
    the workflow.
    """
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    study_group_id: str = Field(min_length=1, alias="studyGroupId")
    status: str = Field(min_length=1)
