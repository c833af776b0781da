# offsite_api/services/permits.py
"""
Permit-to-work lifecycle.

    PENDING --approve--> OTP_GENERATED --verify (in time)--> COMPLETED
                                       --verify (late)-----> EXPIRED

The one-time code is stored only as a werkzeug hash and reaches the
requester through the notification channel. Expiry is judged against the
stored timestamp at verification time; `expire_stale_permits` is a sweep
for housekeeping only.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import update
from werkzeug.security import check_password_hash, generate_password_hash

from offsite_api.common.errors import Conflict, Forbidden, ValidationFailed
from offsite_api.extensions import db
from offsite_api.models.notification import Notification
from offsite_api.models.permit import Permit, PermitStatus
from offsite_api.models.project import Project, ProjectMember
from offsite_api.services.guards import (
    conditional_transition,
    ensure_not_self,
    ensure_project_access,
    ensure_project_manager,
    ensure_role,
    get_or_404,
    project_manager_ids,
)
from offsite_api.services.notifications import notify, notify_many
from offsite_api.services.side_effects import best_effort

log = logging.getLogger(__name__)

PERMIT_TRANSITIONS = {
    PermitStatus.PENDING: {PermitStatus.OTP_GENERATED},
    # manually approved permits still need a code before work starts
    PermitStatus.APPROVED: {PermitStatus.OTP_GENERATED},
    PermitStatus.OTP_GENERATED: {PermitStatus.COMPLETED, PermitStatus.EXPIRED},
    PermitStatus.COMPLETED: set(),
    PermitStatus.EXPIRED: set(),
}


def sources_of(target: PermitStatus) -> list[PermitStatus]:
    return [s for s, targets in PERMIT_TRANSITIONS.items() if target in targets]


def _generate_code(length: int) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def serialize_permit(p: Permit) -> dict:
    return {
        "id": p.id,
        "project_id": p.project_id,
        "requested_by": p.requested_by,
        "task_description": p.task_description,
        "hazard_type": p.hazard_type,
        "safety_measures": list(p.safety_measures or []),
        "notes": p.notes,
        "status": p.status.value,
        "approved_by": p.approved_by,
        "approved_at": p.approved_at.isoformat() if p.approved_at else None,
        "otp_generated_at": p.otp_generated_at.isoformat() if p.otp_generated_at else None,
        "otp_expires_at": p.otp_expires_at.isoformat() if p.otp_expires_at else None,
        "otp_used": bool(p.otp_used),
        "work_started_at": p.work_started_at.isoformat() if p.work_started_at else None,
        "completed_at": p.completed_at.isoformat() if p.completed_at else None,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def create_permit(actor, project_id: int, task_description: str, hazard_type: str,
                  safety_measures, notes: Optional[str] = None) -> Permit:
    task_description = (task_description or "").strip()
    hazard_type = (hazard_type or "").strip()
    if not task_description:
        raise ValidationFailed(message="task_description is required")
    if not hazard_type:
        raise ValidationFailed(message="hazard_type is required")
    if not isinstance(safety_measures, list) or not all(isinstance(m, str) and m.strip() for m in safety_measures):
        raise ValidationFailed(message="safety_measures must be a list of non-empty strings")

    ensure_role(actor, "engineer", action="request a permit")
    project = get_or_404(Project, project_id, "Project")
    ensure_project_access(actor, project)

    permit = Permit(
        project_id=project.id,
        requested_by=actor.user_id,
        task_description=task_description,
        hazard_type=hazard_type,
        safety_measures=[m.strip() for m in safety_measures],
        notes=(notes or "").strip() or None,
        status=PermitStatus.PENDING,
    )
    db.session.add(permit)
    db.session.commit()
    log.info("permit %s requested by user %s on project %s", permit.id, actor.user_id, project.id)

    notify_many(
        project_manager_ids(project.id),
        "permit_request",
        "Permit approval required",
        f"New permit request for hazardous task: {hazard_type}",
        {"permit_id": permit.id, "project_id": project.id},
    )
    return permit


def approve_permit(actor, permit_id: int, now: Optional[datetime] = None) -> Permit:
    """Approve a pending permit and issue its one-time code."""
    ensure_role(actor, "manager", action="approve permits")
    permit = get_or_404(Permit, permit_id, "Permit")
    project = get_or_404(Project, permit.project_id, "Project")
    ensure_project_manager(actor, project, action="approve permits")
    ensure_not_self(actor.user_id, permit.requested_by, action="approve")

    allowed = sources_of(PermitStatus.OTP_GENERATED)
    if permit.status not in allowed:
        raise Conflict("INVALID_STATUS", f"Permit is {permit.status.value}, cannot approve")

    cfg = current_app.config
    now = now or datetime.utcnow()
    code = _generate_code(cfg["PERMIT_OTP_LENGTH"])
    ttl = cfg["PERMIT_OTP_TTL_MINUTES"]

    permit = conditional_transition(Permit, permit.id, allowed, {
        "status": PermitStatus.OTP_GENERATED,
        "approved_by": actor.user_id,
        "approved_at": now,
        "otp_hash": generate_password_hash(code),
        "otp_generated_at": now,
        "otp_expires_at": now + timedelta(minutes=ttl),
        "otp_used": False,
    })
    db.session.commit()
    log.info("permit %s approved by user %s, code issued", permit.id, actor.user_id)

    # the only place the plain code ever leaves the service; text only, never in data
    notify(
        permit.requested_by,
        "permit_approved",
        "Permit Approved - OTP Generated",
        f"Your permit has been approved. OTP: {code} (Valid for {ttl} minutes)",
        {"permit_id": permit.id},
    )
    return permit


def _redact_issued_code(user_id: int, permit_id: int) -> int:
    """Strip a spent code from the requester's approval notifications."""
    changed = 0
    for n in Notification.query.filter_by(user_id=user_id, type="permit_approved"):
        if (n.data or {}).get("permit_id") == permit_id:
            n.message = "Your permit has been approved. The OTP has been used."
            changed += 1
    db.session.commit()
    return changed


def verify_permit_otp(actor, permit_id: int, code: str, now: Optional[datetime] = None) -> Permit:
    code = (code or "").strip()
    length = current_app.config["PERMIT_OTP_LENGTH"]
    if len(code) != length or not code.isdigit():
        raise ValidationFailed(message=f"OTP must be {length} digits")

    permit = get_or_404(Permit, permit_id, "Permit")
    if permit.requested_by != actor.user_id:
        raise Forbidden("NOT_YOUR_PERMIT", "Only the requester can verify this permit")
    if permit.otp_used:
        raise Conflict("OTP_USED", "OTP already used")
    if permit.status != PermitStatus.OTP_GENERATED:
        raise Conflict("INVALID_STATUS", f"Permit is {permit.status.value}, not awaiting verification")

    now = now or datetime.utcnow()
    if permit.otp_expires_at is None or now > permit.otp_expires_at:
        # the expiry itself is persisted even though the attempt fails
        conditional_transition(Permit, permit.id, [PermitStatus.OTP_GENERATED],
                               {"status": PermitStatus.EXPIRED})
        db.session.commit()
        log.info("permit %s expired at verification by user %s", permit.id, actor.user_id)
        raise Conflict("OTP_EXPIRED", "OTP has expired. Request a new permit.")

    if not permit.otp_hash or not check_password_hash(permit.otp_hash, code):
        raise Conflict("OTP_MISMATCH", "Incorrect OTP")

    # racing verifications: exactly one sees otp_used = false
    permit = conditional_transition(Permit, permit.id, [PermitStatus.OTP_GENERATED], {
        "status": PermitStatus.COMPLETED,
        "otp_used": True,
        "work_started_at": now,
        "completed_at": now,
    }, conflict_code="OTP_USED", otp_used=False)
    db.session.commit()
    log.info("permit %s verified by user %s, work started", permit.id, actor.user_id)
    best_effort("permit:redact-code", _redact_issued_code, permit.requested_by, permit.id)
    return permit


def expire_stale_permits(now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    res = db.session.execute(
        update(Permit)
        .where(Permit.status == PermitStatus.OTP_GENERATED, Permit.otp_expires_at < now)
        .values(status=PermitStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    if res.rowcount:
        log.info("expired %s stale permits", res.rowcount)
    return res.rowcount


# ---------- reads ----------

def my_permits(actor):
    return Permit.query.filter_by(requested_by=actor.user_id).order_by(Permit.created_at.desc(), Permit.id.desc())


def pending_permits(actor):
    q = Permit.query.filter(Permit.status == PermitStatus.PENDING)
    if actor.role == "owner":
        q = q.join(Project, Project.id == Permit.project_id).filter(Project.owner_id == actor.user_id)
    else:
        ensure_role(actor, "manager", action="review permits")
        q = q.join(ProjectMember, ProjectMember.project_id == Permit.project_id).filter(
            ProjectMember.user_id == actor.user_id
        )
    return q.order_by(Permit.created_at.desc(), Permit.id.desc())


def project_permits(actor, project_id: int):
    project = get_or_404(Project, project_id, "Project")
    ensure_project_access(actor, project)
    return Permit.query.filter_by(project_id=project.id).order_by(Permit.created_at.desc(), Permit.id.desc())
