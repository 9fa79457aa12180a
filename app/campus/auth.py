from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash

from app.campus.audit import record_event
from app.campus.db import db_session
from app.campus.errors import CampusError, ValidationError
from app.campus.models import User
from app.campus.rbac import current_actor
from app.campus.utils import clean_str, ok, request_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


class TooManyAttempts(CampusError):
    status_code = 429
    default_message = "Too many login attempts. Please wait 5 minutes."


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def serialize_user(user: User) -> dict:
    perms = sorted({p.key for r in (user.roles or []) for p in (r.permissions or [])})
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "roles": sorted({r.key for r in (user.roles or [])}),
        "permissions": perms,
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except SQLAlchemyError as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.post("/login")
def login_post():
    payload = request_payload()
    email = clean_str(payload.get("email")).lower()
    password = str(payload.get("password") or "")
    ip = request.remote_addr or "unknown"

    if not email or not password:
        raise ValidationError({"email": ["Email and password are required."]})

    if _check_rate_limit(ip):
        raise TooManyAttempts()

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        current_app.logger.warning("Failed login for %s from %s", email, ip)
        return {"success": False, "message": "Invalid credentials."}, 401

    session.clear()
    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return ok(serialize_user(user), "Logged in.")


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return ok(message="Logged out.")


@bp.get("/me")
def me():
    return ok(serialize_user(current_actor()))
