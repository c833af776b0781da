# offsite_api/blueprints/petty_cash.py
import logging

from flask import Blueprint, request

from offsite_api.common.auth import current_actor, requires_perms
from offsite_api.common.errors import APIError, ValidationFailed
from offsite_api.common.http import json_body, ok
from offsite_api.common.paging import paginate
from offsite_api.common.parsing import as_int
from offsite_api.services import petty_cash as svc
from offsite_api.storage import get_storage

log = logging.getLogger(__name__)

bp = Blueprint("petty_cash", __name__, url_prefix="/api/v1/petty-cash")

RECEIPT_TYPES = {"image/jpeg", "image/png", "application/pdf"}


@bp.post("")
@requires_perms("petty_cash.submit")
def submit():
    """
    POST /api/v1/petty-cash
    {"project_id", "amount", "description", "category", "receipt_url"?,
     "latitude"?, "longitude"?, "geo_label"?}

    Coordinates outside the site geofence are accepted and flagged.
    """
    d = json_body()
    expense = svc.submit_expense(
        current_actor(),
        as_int(d.get("project_id"), "project_id", required=True),
        d.get("amount"),
        d.get("description"),
        d.get("category"),
        receipt_url=d.get("receipt_url"),
        latitude=d.get("latitude"),
        longitude=d.get("longitude"),
        geo_label=d.get("geo_label"),
    )
    return ok(svc.serialize_expense(expense), status=201)


@bp.post("/receipts")
@requires_perms("petty_cash.submit")
def upload_receipt():
    """multipart/form-data with a `file` part; returns the stored URL for receipt_url."""
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationFailed(message="file is required")
    if f.mimetype not in RECEIPT_TYPES:
        raise ValidationFailed(message="receipt must be a JPEG, PNG or PDF")
    data = f.read()
    if not data:
        raise ValidationFailed(message="file is empty")
    try:
        url = get_storage().store(data, "receipts", f.filename, f.mimetype)
    except Exception as e:
        log.warning("receipt upload failed: %s", e)
        raise APIError("STORAGE_UNAVAILABLE", "Could not store the receipt, please retry", 502) from e
    return ok({"receipt_url": url}, status=201)


@bp.get("/my")
@requires_perms("petty_cash.read")
def my_expenses():
    items, meta = paginate(svc.my_expenses(current_actor()), svc.serialize_expense)
    return ok(items, **meta)


@bp.get("/pending")
@requires_perms("petty_cash.approve")
def pending():
    items, meta = paginate(svc.pending_for(current_actor()), svc.serialize_expense)
    return ok(items, **meta)


@bp.get("/all")
@requires_perms("petty_cash.read")
def all_expenses():
    """Owner view. ?status=&project_id=&page=&size="""
    q = svc.all_for_owner(
        current_actor(),
        status=request.args.get("status"),
        project_id=as_int(request.args.get("project_id"), "project_id"),
    )
    items, meta = paginate(q, svc.serialize_expense)
    return ok(items, **meta)


@bp.post("/<int:expense_id>/approve")
@requires_perms("petty_cash.approve")
def approve(expense_id: int):
    expense = svc.approve_expense(current_actor(), expense_id)
    return ok(svc.serialize_expense(expense))


@bp.post("/<int:expense_id>/reject")
@requires_perms("petty_cash.approve")
def reject(expense_id: int):
    """POST {"reason"?}"""
    expense = svc.reject_expense(current_actor(), expense_id, json_body().get("reason"))
    return ok(svc.serialize_expense(expense))
