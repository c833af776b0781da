# offsite_api/blueprints/contractor.py
"""
Contractor workflow routes: contracts, labour registry, face-verified
attendance and weekly invoices.
"""
from flask import Blueprint, request

from offsite_api.common.auth import current_actor, requires_perms
from offsite_api.common.errors import ValidationFailed
from offsite_api.common.http import json_body, ok
from offsite_api.common.paging import paginate
from offsite_api.common.parsing import as_int, parse_ymd
from offsite_api.services import contractor_invoices as invoices
from offsite_api.services import labour_attendance as labour

bp = Blueprint("contractor", __name__, url_prefix="/api/v1/contractor")


# ---------- contracts ----------

@bp.post("/contracts")
@requires_perms("contractor.contract.manage")
def assign_contract():
    """
    POST {"contractor_id" | "offsite_id", "project_id", "rate_per_labour_per_day",
          "start_date", "end_date"?, "labour_count_per_day"?, "gst_rate"?}
    """
    d = json_body()
    ref = d.get("contractor_id") if d.get("contractor_id") is not None else d.get("offsite_id")
    if ref in (None, ""):
        raise ValidationFailed(message="contractor_id or offsite_id is required")
    if d.get("rate_per_labour_per_day") in (None, ""):
        raise ValidationFailed(message="rate_per_labour_per_day is required")
    contract = labour.assign_contract(
        current_actor(),
        ref,
        as_int(d.get("project_id"), "project_id", required=True),
        d.get("rate_per_labour_per_day"),
        parse_ymd(d.get("start_date"), "start_date"),
        parse_ymd(d.get("end_date"), "end_date", required=False),
        labour_count_per_day=d.get("labour_count_per_day") or 0,
        gst_rate=d.get("gst_rate"),
    )
    return ok(contract.to_dict(), status=201)


# ---------- labours ----------

@bp.post("/labours")
@requires_perms("contractor.labour.manage")
def register_labour():
    """
    JSON {"project_id", "name", "phone"?, "face_embedding"?: [..]}
    or multipart with the same fields plus a `photo` file; the embedding is
    then computed server-side.
    """
    photo = request.files.get("photo")
    if photo is not None:
        d = request.form
        data, filename = photo.read(), photo.filename
        embedding = None
    else:
        d = json_body()
        data, filename = None, None
        embedding = d.get("face_embedding")
    item = labour.register_labour(
        current_actor(),
        as_int(d.get("project_id"), "project_id", required=True),
        d.get("name"),
        d.get("phone"),
        face_embedding=embedding,
        photo=data,
        photo_filename=filename,
    )
    return ok(item.to_dict(), status=201)


@bp.get("/labours")
@requires_perms("contractor.labour.manage")
def list_labours():
    q = labour.list_labours(current_actor(), as_int(request.args.get("project_id"), "project_id"))
    items, meta = paginate(q, lambda l: l.to_dict())
    return ok(items, **meta)


# ---------- attendance ----------

@bp.post("/attendance")
@requires_perms("contractor.attendance.upload")
def upload_attendance():
    """
    POST {"project_id", "date", "present_labour_ids": [..], "detected_faces": [[..], ..],
          "latitude"?, "longitude"?, "group_photo_url"?}
    """
    d = json_body()
    summary = labour.upload_attendance(
        current_actor(),
        as_int(d.get("project_id"), "project_id", required=True),
        parse_ymd(d.get("date"), "date"),
        d.get("present_labour_ids"),
        d.get("detected_faces") if d.get("detected_faces") is not None else [],
        latitude=d.get("latitude"),
        longitude=d.get("longitude"),
        group_photo_url=d.get("group_photo_url"),
    )
    return ok(summary, status=201)


# ---------- invoices ----------

@bp.post("/invoices")
@requires_perms("contractor.invoice.create")
def generate_invoice():
    """POST {"project_id", "week_start", "week_end"}"""
    d = json_body()
    inv = invoices.generate_invoice(
        current_actor(),
        as_int(d.get("project_id"), "project_id", required=True),
        parse_ymd(d.get("week_start"), "week_start"),
        parse_ymd(d.get("week_end"), "week_end"),
    )
    return ok(invoices.serialize_invoice(inv), status=201)


@bp.get("/invoices/my")
@requires_perms("contractor.invoice.create")
def my_invoices():
    items, meta = paginate(invoices.my_invoices(current_actor()), invoices.serialize_invoice)
    return ok(items, **meta)


@bp.get("/invoices/pending")
@requires_perms("contractor.invoice.approve")
def pending_invoices():
    items, meta = paginate(invoices.pending_invoices(current_actor()), invoices.serialize_invoice)
    return ok(items, **meta)


@bp.get("/invoices/approved")
@requires_perms("contractor.invoice.read")
def owner_invoices():
    items, meta = paginate(invoices.owner_invoices(current_actor()), invoices.serialize_invoice)
    return ok(items, **meta)


@bp.post("/invoices/<int:invoice_id>/approve")
@requires_perms("contractor.invoice.approve")
def approve_invoice(invoice_id: int):
    inv = invoices.approve_invoice(current_actor(), invoice_id)
    return ok(invoices.serialize_invoice(inv))


@bp.post("/invoices/<int:invoice_id>/reject")
@requires_perms("contractor.invoice.approve")
def reject_invoice(invoice_id: int):
    """POST {"reason"?}"""
    inv = invoices.reject_invoice(current_actor(), invoice_id, json_body().get("reason"))
    return ok(invoices.serialize_invoice(inv))


@bp.post("/invoices/<int:invoice_id>/document")
@requires_perms("contractor.invoice.create")
def upload_document(invoice_id: int):
    """multipart/form-data with a `file` part holding the PDF."""
    f = request.files.get("file")
    data = f.read() if f else b""
    inv = invoices.upload_invoice_document(current_actor(), invoice_id, data, f.filename if f else None)
    return ok(invoices.serialize_invoice(inv))
