from flask import Blueprint, jsonify
from flask_jwt_extended import (
    create_access_token, create_refresh_token,
    jwt_required, get_jwt_identity
)

from offsite_api.common.errors import Conflict, ValidationFailed
from offsite_api.common.http import json_body, ok
from offsite_api.extensions import db
from offsite_api.models.security import user_permission_codes
from offsite_api.models.user import ROLES, User
from offsite_api.seed_rbac import grant_role
from offsite_api.services.sequence import offsite_id_for_role

bp = Blueprint("auth_v1", __name__, url_prefix="/api/v1/auth")

def _user_payload(u: User):
    return {
        "id": u.id,
        "offsite_id": u.offsite_id,
        "email": u.email,
        "full_name": u.full_name,
        "phone": u.phone,
        "role": u.role,
        "roles": u.role_codes(),
    }

def _claims(u: User):
    roles = sorted(set(u.role_codes()) | {u.role})
    return {"roles": roles, "perms": sorted(user_permission_codes(u.id)), "email": u.email, "name": u.full_name}

@bp.post("/register")
def register():
    """
    POST /api/v1/auth/register
    {"email", "password", "full_name", "role", "phone"?}
    Issues the user's OffSite id (OSSE0001, OSPM0001, ...).
    """
    d = json_body()
    email = (d.get("email") or "").strip().lower()
    password = d.get("password") or ""
    full_name = (d.get("full_name") or d.get("name") or "").strip()
    role = (d.get("role") or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationFailed(message="valid email is required")
    if len(password) < 6:
        raise ValidationFailed(message="password must be at least 6 characters")
    if not full_name:
        raise ValidationFailed(message="full_name is required")
    if role not in ROLES:
        raise ValidationFailed(message=f"role must be one of {', '.join(ROLES)}")
    if User.query.filter_by(email=email).first():
        raise Conflict("EMAIL_TAKEN", "Email already registered")

    u = User(email=email, full_name=full_name, role=role, phone=(d.get("phone") or "").strip() or None)
    u.set_password(password)
    # id and counter advance commit together with the user row
    u.offsite_id = offsite_id_for_role(role)
    db.session.add(u)
    db.session.flush()
    grant_role(u, role)
    db.session.commit()
    return ok(_user_payload(u), status=201)

@bp.post("/login")
def login():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    u = User.query.filter_by(email=email).first()
    if not u or not u.check_password(password) or u.status != "active":
        return jsonify({"success": False, "error": {"message": "Invalid credentials"}}), 401

    add_claims = _claims(u)
    access  = create_access_token(identity=str(u.id), additional_claims=add_claims)
    refresh = create_refresh_token(identity=str(u.id), additional_claims={"roles": add_claims["roles"]})
    return jsonify({"success": True, "access": access, "refresh": refresh, "user": _user_payload(u)}), 200

@bp.post("/refresh")
@jwt_required(refresh=True)
def refresh():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid else None
    if not u or u.status != "active":
        return jsonify({"success": False, "error": {"message": "User not found"}}), 401
    new_access = create_access_token(identity=str(u.id), additional_claims=_claims(u))
    return jsonify({"success": True, "access": new_access}), 200

@bp.get("/me")
@jwt_required()
def me():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid))
    if not u:
        return jsonify({"success": False, "error": {"message": "User not found"}}), 404
    return jsonify({"success": True, "data": _user_payload(u)}), 200
