# offsite_api/services/petty_cash.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from offsite_api.common.errors import Conflict, Forbidden, ValidationFailed
from offsite_api.extensions import db
from offsite_api.models.petty_cash import PettyCashExpense, PettyCashStatus
from offsite_api.models.project import Project, ProjectMember
from offsite_api.services import geofence
from offsite_api.services.guards import (
    conditional_transition,
    ensure_not_self,
    ensure_project_access,
    ensure_project_manager,
    ensure_project_owner,
    ensure_role,
    get_or_404,
    project_manager_ids,
)
from offsite_api.services.notifications import notify, notify_many

log = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "No reason provided"

PETTY_CASH_TRANSITIONS = {
    PettyCashStatus.PENDING_PM_APPROVAL: {PettyCashStatus.PENDING_OWNER_APPROVAL, PettyCashStatus.REJECTED},
    PettyCashStatus.PENDING_OWNER_APPROVAL: {PettyCashStatus.APPROVED, PettyCashStatus.REJECTED},
    PettyCashStatus.APPROVED: set(),
    PettyCashStatus.REJECTED: set(),
}

# approver role -> the one status that role may move forward
_APPROVAL_TIER = {
    "manager": PettyCashStatus.PENDING_PM_APPROVAL,
    "owner": PettyCashStatus.PENDING_OWNER_APPROVAL,
}


def _forward_target(status: PettyCashStatus) -> PettyCashStatus:
    return next(s for s in PETTY_CASH_TRANSITIONS[status] if s != PettyCashStatus.REJECTED)


def _rejectable() -> list[PettyCashStatus]:
    return [s for s, targets in PETTY_CASH_TRANSITIONS.items() if PettyCashStatus.REJECTED in targets]


def _money(raw) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationFailed(message="amount must be a number")
    if not value.is_finite() or value <= 0:
        raise ValidationFailed(message="amount must be greater than zero")
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def geofence_flag(e: PettyCashExpense) -> str:
    if e.geofence_valid is None:
        return "UNVALIDATED"
    return geofence.INSIDE if e.geofence_valid else geofence.OUTSIDE


def serialize_expense(e: PettyCashExpense) -> dict:
    return {
        "id": e.id,
        "project_id": e.project_id,
        "submitted_by": e.submitted_by,
        "amount": str(e.amount),
        "description": e.description,
        "category": e.category,
        "receipt_url": e.receipt_url,
        "latitude": e.latitude,
        "longitude": e.longitude,
        "geo_label": e.geo_label,
        "distance_from_site_m": e.distance_from_site_m,
        "geofence_valid": e.geofence_valid,
        "geofence_flag": geofence_flag(e),
        "status": e.status.value,
        "pm_approved_by": e.pm_approved_by,
        "pm_approved_at": e.pm_approved_at.isoformat() if e.pm_approved_at else None,
        "owner_approved_by": e.owner_approved_by,
        "owner_approved_at": e.owner_approved_at.isoformat() if e.owner_approved_at else None,
        "rejected_by": e.rejected_by,
        "rejected_at": e.rejected_at.isoformat() if e.rejected_at else None,
        "rejection_reason": e.rejection_reason,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


def submit_expense(actor, project_id: int, amount, description: str, category: str,
                   receipt_url: Optional[str] = None, latitude=None, longitude=None,
                   geo_label: Optional[str] = None) -> PettyCashExpense:
    amount = _money(amount)
    description = (description or "").strip()
    category = (category or "").strip()
    if not description:
        raise ValidationFailed(message="description is required")
    if not category:
        raise ValidationFailed(message="category is required")
    latitude, longitude = geofence.validate_coordinates(latitude, longitude)

    ensure_role(actor, "engineer", "manager", action="submit petty cash expenses")
    project = get_or_404(Project, project_id, "Project")
    ensure_project_access(actor, project)

    # recorded for approvers, never blocks the submission
    check = geofence.check_point(project, latitude, longitude)

    expense = PettyCashExpense(
        project_id=project.id,
        submitted_by=actor.user_id,
        amount=amount,
        description=description,
        category=category,
        receipt_url=receipt_url or None,
        latitude=latitude,
        longitude=longitude,
        geo_label=(geo_label or "").strip() or None,
        distance_from_site_m=round(check.distance_m, 2) if check else None,
        geofence_valid=check.inside if check else None,
        status=PettyCashStatus.PENDING_PM_APPROVAL,
    )
    db.session.add(expense)
    db.session.commit()
    log.info("petty cash %s submitted by user %s amount=%s geofence=%s",
             expense.id, actor.user_id, amount, geofence_flag(expense))

    note = "" if expense.geofence_valid is not False else " (outside site geofence)"
    notify_many(
        [uid for uid in project_manager_ids(project.id) if uid != actor.user_id],
        "petty_cash",
        "New petty cash claim",
        f"Expense of Rs. {amount} submitted for approval{note}",
        {"expense_id": expense.id, "project_id": project.id},
    )
    return expense


def approve_expense(actor, expense_id: int, now: Optional[datetime] = None) -> PettyCashExpense:
    expense = get_or_404(PettyCashExpense, expense_id, "Expense")
    project = get_or_404(Project, expense.project_id, "Project")
    ensure_not_self(actor.user_id, expense.submitted_by, action="approve")

    tier = _APPROVAL_TIER.get(actor.role)
    if tier is None:
        raise Forbidden(message="Only project managers and owners can approve expenses")
    if actor.role == "manager":
        ensure_project_manager(actor, project)
    else:
        ensure_project_owner(actor, project)

    if expense.status != tier:
        raise Conflict("INVALID_STATUS", f"Expense is {expense.status.value}; {actor.role} cannot approve it now")

    now = now or datetime.utcnow()
    target = _forward_target(tier)
    if actor.role == "manager":
        values = {
            "status": target,
            "pm_approved_by": actor.user_id,
            "pm_approved_at": now,
        }
    else:
        values = {
            "status": target,
            "owner_approved_by": actor.user_id,
            "owner_approved_at": now,
        }
    expense = conditional_transition(PettyCashExpense, expense.id, [tier], values)
    db.session.commit()
    log.info("petty cash %s -> %s by user %s", expense.id, expense.status.value, actor.user_id)

    if expense.status == PettyCashStatus.PENDING_OWNER_APPROVAL:
        notify(project.owner_id, "petty_cash", "Petty cash awaiting final approval",
               f"Expense of Rs. {expense.amount} approved by project manager",
               {"expense_id": expense.id, "project_id": project.id})
    else:
        notify(expense.submitted_by, "petty_cash", "Petty cash approved",
               f"Your expense of Rs. {expense.amount} has been approved",
               {"expense_id": expense.id})
    return expense


def reject_expense(actor, expense_id: int, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> PettyCashExpense:
    expense = get_or_404(PettyCashExpense, expense_id, "Expense")
    project = get_or_404(Project, expense.project_id, "Project")
    ensure_not_self(actor.user_id, expense.submitted_by, action="reject")

    if actor.role == "manager":
        ensure_project_manager(actor, project, action="reject")
        allowed = [PettyCashStatus.PENDING_PM_APPROVAL]
    elif actor.role == "owner":
        ensure_project_owner(actor, project, action="reject")
        allowed = _rejectable()
    else:
        raise Forbidden(message="Only project managers and owners can reject expenses")

    if expense.status not in allowed:
        raise Conflict("INVALID_STATUS", f"Expense is {expense.status.value}; {actor.role} cannot reject it now")

    reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
    expense = conditional_transition(PettyCashExpense, expense.id, allowed, {
        "status": PettyCashStatus.REJECTED,
        "rejected_by": actor.user_id,
        "rejected_at": now or datetime.utcnow(),
        "rejection_reason": reason,
    })
    db.session.commit()
    log.info("petty cash %s rejected by user %s", expense.id, actor.user_id)

    notify(expense.submitted_by, "petty_cash", "Petty cash rejected",
           f"Your expense of Rs. {expense.amount} was rejected: {reason}",
           {"expense_id": expense.id})
    return expense


# ---------- reads ----------

def my_expenses(actor):
    return PettyCashExpense.query.filter_by(submitted_by=actor.user_id).order_by(
        PettyCashExpense.created_at.desc(), PettyCashExpense.id.desc()
    )


def pending_for(actor):
    """The queue an approver can act on right now."""
    q = PettyCashExpense.query
    if actor.role == "manager":
        q = q.join(ProjectMember, ProjectMember.project_id == PettyCashExpense.project_id).filter(
            ProjectMember.user_id == actor.user_id,
            PettyCashExpense.status == PettyCashStatus.PENDING_PM_APPROVAL,
            PettyCashExpense.submitted_by != actor.user_id,
        )
    elif actor.role == "owner":
        q = q.join(Project, Project.id == PettyCashExpense.project_id).filter(
            Project.owner_id == actor.user_id,
            PettyCashExpense.status == PettyCashStatus.PENDING_OWNER_APPROVAL,
        )
    else:
        raise Forbidden(message="Only project managers and owners have an approval queue")
    return q.order_by(PettyCashExpense.created_at.asc(), PettyCashExpense.id.asc())


def all_for_owner(actor, status: Optional[str] = None, project_id: Optional[int] = None):
    ensure_role(actor, "owner", action="list all expenses")
    q = PettyCashExpense.query.join(Project, Project.id == PettyCashExpense.project_id).filter(
        Project.owner_id == actor.user_id
    )
    if status:
        try:
            q = q.filter(PettyCashExpense.status == PettyCashStatus(status.upper()))
        except ValueError:
            raise ValidationFailed(message=f"unknown status {status!r}")
    if project_id is not None:
        q = q.filter(PettyCashExpense.project_id == project_id)
    return q.order_by(PettyCashExpense.created_at.desc(), PettyCashExpense.id.desc())


