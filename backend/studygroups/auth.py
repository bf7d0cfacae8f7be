"""Authentication helpers and FastAPI security dependencies.

This module provides utilities to decode JWT tokens and the FastAPI
dependencies used by the routes:

- `get_current_user` validates the bearer token and returns the
  corresponding `User` row
- `get_current_caller` turns that user into the `Caller` value the
  workflow service expects
- `require_admin` additionally insists on the administrator role

Token verification raises HTTPExceptions on failure so the helpers can
be used directly inside route dependencies.
"""

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .services import JWT_SECRET, JWT_ALGORITHM, Caller
from .database import get_session
from . import models, repositories

bearer_scheme = HTTPBearer()


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme), db: Session = Depends(get_session)) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The function extracts the bearer token from the request, decodes it
    and performs a database lookup to return the `User` object. It raises
    an HTTPException(401) for any authentication issue.
    """
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='User is not authenticated.')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return user


def get_current_caller(user: models.User = Depends(get_current_user)) -> Caller:
    """Resolve the authenticated user into a workflow `Caller`."""
    return Caller.from_user(user)


def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    """Reject callers without the administrator role with a 403."""
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail='administrator role required')
    return caller
