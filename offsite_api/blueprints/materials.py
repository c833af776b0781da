# offsite_api/blueprints/materials.py
from flask import Blueprint, request

from offsite_api.common.auth import current_actor, requires_perms
from offsite_api.common.errors import ValidationFailed
from offsite_api.common.http import json_body, ok
from offsite_api.common.paging import paginate
from offsite_api.common.parsing import as_float, as_int
from offsite_api.services import anomaly
from offsite_api.services import materials as svc

bp = Blueprint("materials", __name__, url_prefix="/api/v1/materials")


@bp.post("")
@requires_perms("material.request")
def create_request():
    """
    POST /api/v1/materials
    {"project_id", "material_id", "material_name", "quantity", "unit", "reason"}

    Unusually large quantities are flagged (anomaly_detected) but still accepted.
    """
    d = json_body()
    req = svc.create_request(
        current_actor(),
        as_int(d.get("project_id"), "project_id", required=True),
        d.get("material_id"),
        d.get("material_name"),
        d.get("quantity"),
        d.get("unit"),
        d.get("reason"),
    )
    return ok(req.to_dict(), status=201)


@bp.get("")
@requires_perms("material.read")
def list_requests():
    q = svc.list_requests(
        current_actor(),
        status=request.args.get("status"),
        project_id=as_int(request.args.get("project_id"), "project_id"),
    )
    items, meta = paginate(q, lambda r: r.to_dict())
    return ok(items, **meta)


@bp.get("/anomaly-check")
@requires_perms("material.request", "material.approve")
def anomaly_check():
    """GET ?material_id=&quantity=&project_id= ; preview only, nothing is stored."""
    material_id = (request.args.get("material_id") or "").strip()
    if not material_id:
        raise ValidationFailed(message="material_id is required")
    qty = as_float(request.args.get("quantity"), "quantity")
    if qty is None or qty <= 0:
        raise ValidationFailed(message="quantity must be greater than zero")
    result = anomaly.detect(material_id, qty, as_int(request.args.get("project_id"), "project_id"))
    return ok(result.to_dict())


@bp.post("/<int:request_id>/approve")
@requires_perms("material.approve")
def approve(request_id: int):
    return ok(svc.approve_request(current_actor(), request_id).to_dict())


@bp.post("/<int:request_id>/reject")
@requires_perms("material.approve")
def reject(request_id: int):
    """POST {"reason"?}"""
    req = svc.reject_request(current_actor(), request_id, json_body().get("reason"))
    return ok(req.to_dict())
