# offsite_api/services/labour_attendance.py
"""
Contractor side of site attendance: contracts, labour registry and the daily
group-photo upload that produces the records invoices are billed from.
"""
from __future__ import annotations

import logging
import os
import tempfile
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import current_app

from offsite_api.common.errors import Forbidden, ValidationFailed
from offsite_api.extensions import db
from offsite_api.models.contractor import Contractor, ContractorContract, Labour, LabourAttendance
from offsite_api.models.project import Project, ProjectMember
from offsite_api.models.user import User
from offsite_api.services import geofence
from offsite_api.services.face_engine import FaceEngine
from offsite_api.services.guards import ensure_project_manager, ensure_project_owner, ensure_role, get_or_404
from offsite_api.services.sequence import labour_code
from offsite_api.storage import get_storage

log = logging.getLogger(__name__)


def ensure_contractor(user_id: int) -> Contractor:
    contractor = Contractor.query.filter_by(user_id=user_id).first()
    if not contractor:
        contractor = Contractor(user_id=user_id)
        db.session.add(contractor)
        db.session.flush()
    return contractor


def contractor_for_user(user_id: int) -> Optional[Contractor]:
    return Contractor.query.filter_by(user_id=user_id).first()


def active_contracts(contractor_id: int, project_id: int, start: Optional[date] = None,
                     end: Optional[date] = None) -> list[ContractorContract]:
    """Active contracts, optionally only those overlapping [start, end]."""
    q = ContractorContract.query.filter_by(contractor_id=contractor_id, project_id=project_id, is_active=True)
    if end is not None:
        q = q.filter(ContractorContract.start_date <= end)
    if start is not None:
        q = q.filter(db.or_(ContractorContract.end_date.is_(None), ContractorContract.end_date >= start))
    return q.order_by(ContractorContract.start_date.desc(), ContractorContract.id.desc()).all()


def _parse_money(raw, field: str) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationFailed(message=f"{field} must be a number")
    if not value.is_finite() or value < 0:
        raise ValidationFailed(message=f"{field} must be >= 0")
    return value


def _resolve_contractor_user(ref) -> User:
    """Accept a numeric user id or an OffSite id such as OSCT0002."""
    user = None
    if isinstance(ref, int) or (isinstance(ref, str) and ref.strip().isdigit()):
        user = db.session.get(User, int(ref))
    elif isinstance(ref, str) and ref.strip():
        user = User.query.filter(db.func.upper(User.offsite_id) == ref.strip().upper()).first()
    if not user or user.role != "contractor":
        raise ValidationFailed("INVALID_USER", "User is not a contractor")
    return user


def assign_contract(actor, contractor_ref, project_id: int, rate_per_labour_per_day,
                    start_date: date, end_date: Optional[date] = None,
                    labour_count_per_day: int = 0, gst_rate=None) -> ContractorContract:
    """Create or replace the contractor's active contract on a project."""
    rate = _parse_money(rate_per_labour_per_day, "rate_per_labour_per_day")
    gst = _parse_money(gst_rate if gst_rate is not None else current_app.config["INVOICE_DEFAULT_GST_RATE"], "gst_rate")
    if gst > 100:
        raise ValidationFailed(message="gst_rate must be between 0 and 100")
    if not isinstance(start_date, date):
        raise ValidationFailed(message="start_date is required")
    if end_date is not None and end_date < start_date:
        raise ValidationFailed(message="end_date must not be before start_date")
    try:
        labour_count_per_day = int(labour_count_per_day or 0)
    except (TypeError, ValueError):
        raise ValidationFailed(message="labour_count_per_day must be an integer")

    ensure_role(actor, "owner", "manager", action="assign contractors")
    project = get_or_404(Project, project_id, "Project")
    if actor.role == "owner":
        ensure_project_owner(actor, project, action="assign contractors")
    else:
        ensure_project_manager(actor, project, action="assign contractors")

    user = _resolve_contractor_user(contractor_ref)
    contractor = ensure_contractor(user.id)

    contract = ContractorContract.query.filter_by(
        contractor_id=contractor.id, project_id=project.id, is_active=True
    ).first()
    if contract is None:
        contract = ContractorContract(contractor_id=contractor.id, project_id=project.id, is_active=True)
        db.session.add(contract)
    contract.rate_per_labour_per_day = rate
    contract.gst_rate = gst
    contract.labour_count_per_day = labour_count_per_day
    contract.start_date = start_date
    contract.end_date = end_date
    contract.created_by = actor.user_id

    # contractor sees the project through membership
    if db.session.get(ProjectMember, (project.id, user.id)) is None:
        db.session.add(ProjectMember(project_id=project.id, user_id=user.id))

    db.session.commit()
    log.info("contract %s for contractor %s on project %s set by user %s",
             contract.id, contractor.id, project.id, actor.user_id)
    return contract


def _embedding_from_photo(photo: bytes, filename: str) -> Optional[list]:
    ext = os.path.splitext(filename or "")[1] or ".jpg"
    fd, path = tempfile.mkstemp(suffix=ext)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(photo)
        return FaceEngine.get_embedding(path)
    finally:
        os.unlink(path)


def register_labour(actor, project_id: int, name: str, phone: Optional[str] = None,
                    face_embedding: Optional[list] = None, photo: Optional[bytes] = None,
                    photo_filename: Optional[str] = None) -> Labour:
    name = (name or "").strip()
    if not name:
        raise ValidationFailed(message="name is required")
    if face_embedding is not None:
        if not isinstance(face_embedding, list) or not face_embedding or \
                not all(isinstance(x, (int, float)) for x in face_embedding):
            raise ValidationFailed(message="face_embedding must be a non-empty list of numbers")

    ensure_role(actor, "contractor", action="register labours")
    project = get_or_404(Project, project_id, "Project")
    contractor = contractor_for_user(actor.user_id)
    if not contractor or not active_contracts(contractor.id, project.id):
        raise Forbidden(message="Not assigned to this project")

    photo_url = None
    if photo:
        # nothing is stored for a photo that cannot be enrolled
        if face_embedding is None:
            face_embedding = _embedding_from_photo(photo, photo_filename)
            if not face_embedding:
                raise ValidationFailed("NO_FACE", "Face detection failed or multiple faces found")
        photo_url = get_storage().store(photo, "labours/faces", photo_filename or "face.jpg", "image/jpeg")

    labour = Labour(
        code=labour_code(),
        contractor_id=contractor.id,
        project_id=project.id,
        name=name,
        phone=(phone or "").strip() or None,
        photo_url=photo_url,
        face_embedding=[float(x) for x in face_embedding] if face_embedding else None,
        is_active=True,
    )
    db.session.add(labour)
    db.session.commit()
    log.info("labour %s registered by contractor %s", labour.code, contractor.id)
    return labour


def list_labours(actor, project_id: Optional[int] = None):
    ensure_role(actor, "contractor", action="list labours")
    contractor = contractor_for_user(actor.user_id)
    if not contractor:
        return Labour.query.filter(db.false())
    q = Labour.query.filter_by(contractor_id=contractor.id, is_active=True)
    if project_id is not None:
        q = q.filter_by(project_id=project_id)
    return q.order_by(Labour.code)


def upload_attendance(actor, project_id: int, work_date: date, present_labour_ids: list,
                      detected_faces: list, latitude=None, longitude=None,
                      group_photo_url: Optional[str] = None) -> dict:
    """
    Mark the day's attendance from a group photo.

    detected_faces are embeddings of the faces found in the photo. Each is
    matched against the registered faces of the listed labours; only
    matched labours count as face-verified. Re-uploading the same day
    updates the existing (labour, date) record.
    """
    if not isinstance(work_date, date):
        raise ValidationFailed(message="date is required")
    if not isinstance(present_labour_ids, list) or not present_labour_ids:
        raise ValidationFailed(message="present_labour_ids must be a non-empty list")
    if not isinstance(detected_faces, list):
        raise ValidationFailed(message="detected_faces must be a list of embeddings")
    latitude, longitude = geofence.validate_coordinates(latitude, longitude)

    ensure_role(actor, "contractor", action="upload attendance")
    project = get_or_404(Project, project_id, "Project")
    contractor = contractor_for_user(actor.user_id)
    if not contractor or not active_contracts(contractor.id, project.id, work_date, work_date):
        raise Forbidden(message="No active contract for this project on that date")

    check = geofence.check_point(project, latitude, longitude)
    if check is not None and check.violation:
        fence = geofence.fence_for_project(project)
        raise ValidationFailed(
            "OUTSIDE_GEOFENCE",
            f"You are {round(check.distance_m)} meters away from the project site. "
            f"Please be within {round(fence.allowed_m)} meters to mark attendance.",
            payload=check.to_dict(),
        )

    try:
        wanted = {int(x) for x in present_labour_ids}
    except (TypeError, ValueError):
        raise ValidationFailed(message="present_labour_ids must be labour ids")
    labours = Labour.query.filter(
        Labour.id.in_(wanted), Labour.contractor_id == contractor.id, Labour.is_active.is_(True)
    ).all()
    unknown = wanted - {l.id for l in labours}
    if unknown:
        log.warning("attendance upload by contractor %s skipped unknown labours %s", contractor.id, sorted(unknown))

    threshold = current_app.config["FACE_MATCH_THRESHOLD"]
    gallery = {l.id: l.face_embedding for l in labours if l.face_embedding}
    matched: dict[int, float] = {}
    for probe in detected_faces:
        if not gallery:
            break
        labour_id, score = FaceEngine.best_match(probe, gallery, threshold)
        if labour_id is not None:
            matched[labour_id] = score
            gallery.pop(labour_id)  # one face per labour

    if not matched:
        raise ValidationFailed(
            "NO_FACES_DETECTED",
            "No labours with detected faces found. Please ensure faces are registered and visible in the group photo.",
        )

    now = datetime.utcnow()
    marked = []
    for labour in labours:
        is_match = labour.id in matched
        rec = LabourAttendance.query.filter_by(labour_id=labour.id, work_date=work_date).first()
        if rec is None:
            rec = LabourAttendance(labour_id=labour.id, work_date=work_date, contractor_id=contractor.id,
                                   project_id=project.id, present=True, face_matched=False)
            db.session.add(rec)
        elif rec.face_matched and not is_match:
            # a later photo never un-verifies an earlier match
            continue
        rec.present = True
        rec.face_matched = is_match
        rec.match_score = round(matched[labour.id], 4) if is_match else None
        rec.latitude = latitude
        rec.longitude = longitude
        rec.distance_from_site_m = round(check.distance_m, 2) if check else None
        rec.geofence_valid = check.inside if check else None
        rec.group_photo_url = group_photo_url
        rec.marked_by = actor.user_id
        rec.updated_at = now
        if is_match:
            marked.append(labour.id)

    db.session.commit()
    log.info("attendance for project %s on %s: %s matched of %s listed",
             project.id, work_date, len(marked), len(wanted))
    return {
        "work_date": work_date.isoformat(),
        "total_requested": len(wanted),
        "faces_detected": len(detected_faces),
        "marked_present": len(marked),
        "matched_labour_ids": sorted(marked),
        "geofence": check.to_dict() if check else None,
    }


def billable_attendance(contractor_id: int, project_id: int, start: date, end: date):
    """(labour_id, work_date) pairs that are present and face-verified in [start, end]."""
    return (
        db.session.query(LabourAttendance.labour_id, LabourAttendance.work_date)
        .filter(
            LabourAttendance.contractor_id == contractor_id,
            LabourAttendance.project_id == project_id,
            LabourAttendance.work_date >= start,
            LabourAttendance.work_date <= end,
            LabourAttendance.present.is_(True),
            LabourAttendance.face_matched.is_(True),
        )
        .all()
    )

