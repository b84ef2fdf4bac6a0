"""
session.py - Current user from the user_session cookie.

The login flow stores {"id", "role", "email", ...} as JSON in user_session,
possibly URL-encoded. This module only reads it; issuing and clearing the
cookie belong to the auth service.
"""
import json
from enum import Enum
from typing import Optional
from urllib.parse import unquote

from fastapi import Cookie, HTTPException
from pydantic import BaseModel, ValidationError

SESSION_COOKIE = "user_session"


class Role(str, Enum):
    ADMIN   = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


class Session(BaseModel):
    id:    str
    role:  Role
    email: str = ""


def parse_session(raw: Optional[str]) -> Optional[Session]:
    if not raw:
        return None
    try:
        data = json.loads(unquote(raw))
        if isinstance(data, dict) and isinstance(data.get("role"), str):
            data["role"] = data["role"].upper()
        return Session.model_validate(data)
    except (ValueError, ValidationError):
        return None


def current_session(user_session: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE)) -> Session:
    session = parse_session(user_session)
    if session is None:
        raise HTTPException(401, detail={"error": "not_authenticated"})
    return session
