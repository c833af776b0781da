# offsite_api/common/auth.py
from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Iterable

from flask_jwt_extended import jwt_required, get_jwt, get_jwt_identity

from offsite_api.common.errors import Forbidden
from offsite_api.extensions import db
from offsite_api.models.user import User
from offsite_api.models.security import user_permission_codes, user_role_codes


@dataclass(frozen=True)
class Actor:
    """Caller identity handed to every workflow operation."""
    user_id: int
    role: str


def _active_user() -> User:
    uid = get_jwt_identity()
    user = db.session.get(User, int(uid)) if uid is not None else None
    if not user or user.status != "active":
        raise Forbidden("UNAUTHORIZED", "Unknown or inactive user", status_code=401)
    return user


def current_actor() -> Actor:
    """Resolve the JWT identity to an Actor with a fresh read of the user's role."""
    user = _active_user()
    return Actor(user_id=user.id, role=user.role)


def perm_granted(held: Iterable[str], wanted: str) -> bool:
    """'permit.*' covers 'permit.approve'; anything else must match exactly."""
    for code in held:
        if code == wanted or (code.endswith(".*") and wanted.startswith(code[:-1])):
            return True
    return False


def requires_perms(*perm_codes: str):
    """
    Gate a view on ANY of ``perm_codes``.

    Token claims are tried first. When they do not grant access the role
    mappings are re-read from the database, so a token minted before a grant
    still works. Holders of the ``admin`` role pass every gate.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            claims = get_jwt() or {}
            if not perm_codes or "admin" in (claims.get("roles") or []):
                return fn(*args, **kwargs)

            token_perms = claims.get("perms") or []
            if any(perm_granted(token_perms, p) for p in perm_codes):
                return fn(*args, **kwargs)

            user = _active_user()
            if "admin" not in user_role_codes(user.id):
                granted = user_permission_codes(user.id)
                if not any(perm_granted(granted, p) for p in perm_codes):
                    raise Forbidden(message="Missing permission: " + " | ".join(perm_codes))
            return fn(*args, **kwargs)
        return inner
    return outer
