# offsite_api/services/materials.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from offsite_api.common.errors import Conflict, Forbidden, ValidationFailed
from offsite_api.extensions import db
from offsite_api.models.material import MaterialRequest, MaterialRequestStatus
from offsite_api.models.project import Project, ProjectMember
from offsite_api.services import anomaly
from offsite_api.services.guards import (
    conditional_transition,
    ensure_not_self,
    ensure_project_access,
    ensure_role,
    get_or_404,
    is_project_member,
    project_manager_ids,
)
from offsite_api.services.notifications import notify, notify_many

log = logging.getLogger(__name__)

REVIEWER_ROLES = ("manager", "purchase_manager")


def create_request(actor, project_id: int, material_id: str, material_name: str, quantity,
                   unit: str, reason: str, now: Optional[datetime] = None) -> MaterialRequest:
    material_id = (material_id or "").strip()
    material_name = (material_name or "").strip()
    unit = (unit or "").strip()
    reason = (reason or "").strip()
    if not material_id or not material_name or not unit:
        raise ValidationFailed(message="material_id, material_name and unit are required")
    if not reason:
        raise ValidationFailed(message="reason is required")
    try:
        qty = Decimal(str(quantity))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationFailed(message="quantity must be a number")
    if not qty.is_finite() or qty <= 0:
        raise ValidationFailed(message="quantity must be greater than zero")

    ensure_role(actor, "engineer", "manager", action="request materials")
    project = get_or_404(Project, project_id, "Project")
    ensure_project_access(actor, project)

    verdict = anomaly.detect(material_id, qty, project.id, now=now)
    req = MaterialRequest(
        project_id=project.id,
        requested_by=actor.user_id,
        material_id=material_id,
        material_name=material_name,
        quantity=qty,
        unit=unit,
        reason=reason,
        status=MaterialRequestStatus.PENDING,
        anomaly_detected=verdict.is_anomaly,
        anomaly_reason=verdict.reason,
    )
    if now is not None:
        req.created_at = now
    db.session.add(req)
    db.session.commit()
    log.info("material request %s by user %s (anomaly=%s)", req.id, actor.user_id, verdict.is_anomaly)

    title = "Unusual material request" if verdict.is_anomaly else "New material request"
    notify_many(
        [uid for uid in project_manager_ids(project.id) if uid != actor.user_id],
        "material_request",
        title,
        f"{material_name}: {qty.normalize()} {unit}" + (f" ({verdict.reason})" if verdict.reason else ""),
        {"material_request_id": req.id, "project_id": project.id},
    )
    return req


def _ensure_reviewer(actor, req: MaterialRequest, action: str):
    ensure_role(actor, *REVIEWER_ROLES, action=f"{action} material requests")
    if not is_project_member(req.project_id, actor.user_id):
        raise Forbidden(message="You are not assigned to this project")
    ensure_not_self(actor.user_id, req.requested_by, action=action)
    if req.status != MaterialRequestStatus.PENDING:
        raise Conflict("ALREADY_PROCESSED", f"Request is already {req.status.value.lower()}")


def approve_request(actor, request_id: int, now: Optional[datetime] = None) -> MaterialRequest:
    req = get_or_404(MaterialRequest, request_id, "Material request")
    _ensure_reviewer(actor, req, "approve")
    req = conditional_transition(MaterialRequest, req.id, [MaterialRequestStatus.PENDING], {
        "status": MaterialRequestStatus.APPROVED,
        "approved_by": actor.user_id,
        "approved_at": now or datetime.utcnow(),
    }, conflict_code="ALREADY_PROCESSED")
    db.session.commit()
    log.info("material request %s approved by user %s", req.id, actor.user_id)
    notify(req.requested_by, "material_approved", "Material request approved",
           f"{req.material_name} request approved", {"material_request_id": req.id})
    return req


def reject_request(actor, request_id: int, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> MaterialRequest:
    req = get_or_404(MaterialRequest, request_id, "Material request")
    _ensure_reviewer(actor, req, "reject")
    reason = (reason or "").strip() or "No reason provided"
    req = conditional_transition(MaterialRequest, req.id, [MaterialRequestStatus.PENDING], {
        "status": MaterialRequestStatus.REJECTED,
        "rejected_by": actor.user_id,
        "rejected_at": now or datetime.utcnow(),
        "rejection_reason": reason,
    }, conflict_code="ALREADY_PROCESSED")
    db.session.commit()
    log.info("material request %s rejected by user %s", req.id, actor.user_id)
    notify(req.requested_by, "material_rejected", "Material request rejected",
           f"{req.material_name} request rejected: {reason}", {"material_request_id": req.id})
    return req


def list_requests(actor, status: Optional[str] = None, project_id: Optional[int] = None):
    q = MaterialRequest.query
    if actor.role == "engineer":
        q = q.filter(MaterialRequest.requested_by == actor.user_id)
    elif actor.role == "owner":
        q = q.join(Project, Project.id == MaterialRequest.project_id).filter(Project.owner_id == actor.user_id)
    else:
        q = q.join(ProjectMember, ProjectMember.project_id == MaterialRequest.project_id).filter(
            ProjectMember.user_id == actor.user_id
        )
    if status:
        try:
            q = q.filter(MaterialRequest.status == MaterialRequestStatus(status.upper()))
        except ValueError:
            raise ValidationFailed(message=f"unknown status {status!r}")
    if project_id is not None:
        q = q.filter(MaterialRequest.project_id == project_id)
    return q.order_by(MaterialRequest.created_at.desc(), MaterialRequest.id.desc())
