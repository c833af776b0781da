# offsite_api/blueprints/permits.py
from flask import Blueprint

from offsite_api.common.auth import current_actor, requires_perms
from offsite_api.common.http import json_body, ok
from offsite_api.common.paging import paginate
from offsite_api.common.parsing import as_int
from offsite_api.services import permits as svc

bp = Blueprint("permits", __name__, url_prefix="/api/v1/permits")


@bp.post("")
@requires_perms("permit.create")
def create_permit():
    """
    POST /api/v1/permits
    {"project_id", "task_description", "hazard_type", "safety_measures": [..], "notes"?}
    """
    d = json_body()
    permit = svc.create_permit(
        current_actor(),
        as_int(d.get("project_id"), "project_id", required=True),
        d.get("task_description"),
        d.get("hazard_type"),
        d.get("safety_measures"),
        d.get("notes"),
    )
    return ok(svc.serialize_permit(permit), status=201)


@bp.get("/my")
@requires_perms("permit.read")
def my_permits():
    items, meta = paginate(svc.my_permits(current_actor()), svc.serialize_permit)
    return ok(items, **meta)


@bp.get("/pending")
@requires_perms("permit.approve", "project.manage")
def pending_permits():
    items, meta = paginate(svc.pending_permits(current_actor()), svc.serialize_permit)
    return ok(items, **meta)


@bp.get("/project/<int:project_id>")
@requires_perms("permit.read")
def project_permits(project_id: int):
    items, meta = paginate(svc.project_permits(current_actor(), project_id), svc.serialize_permit)
    return ok(items, **meta)


@bp.post("/<int:permit_id>/approve")
@requires_perms("permit.approve")
def approve_permit(permit_id: int):
    # the code itself goes out through the requester's notifications only
    permit = svc.approve_permit(current_actor(), permit_id)
    return ok(svc.serialize_permit(permit))


@bp.post("/<int:permit_id>/verify-otp")
@requires_perms("permit.verify")
def verify_otp(permit_id: int):
    """POST {"otp": "123456"}"""
    d = json_body()
    permit = svc.verify_permit_otp(current_actor(), permit_id, str(d.get("otp") or ""))
    return ok(svc.serialize_permit(permit))
