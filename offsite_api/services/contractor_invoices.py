# offsite_api/services/contractor_invoices.py
"""
Weekly contractor invoices.

Generation turns face-verified attendance into labour-days, prices them at a
blended daily rate plus GST and puts the invoice in front of the project's
managers. Approval is the financial decision; document generation, storage
and the owner email that follow it are best-effort and never undo it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import update

from offsite_api.common.errors import APIError, Conflict, Forbidden, ValidationFailed
from offsite_api.extensions import db
from offsite_api.models.contractor import (
    Contractor,
    ContractorInvoice,
    DocumentSource,
    InvoiceStatus,
)
from offsite_api.models.project import Project, ProjectMember
from offsite_api.models.user import User
from offsite_api.services import labour_attendance
from offsite_api.services.guards import (
    conditional_transition,
    ensure_not_self,
    ensure_project_manager,
    ensure_role,
    get_or_404,
    lock_row,
    project_manager_ids,
)
from offsite_api.services.invoice_pdf import render_invoice_document
from offsite_api.services.mailer import send_with_attachment
from offsite_api.services.notifications import notify, notify_many
from offsite_api.services.side_effects import best_effort
from offsite_api.services.sequence import invoice_number
from offsite_api.storage import get_storage

log = logging.getLogger(__name__)

CENT = Decimal("0.01")
DEFAULT_REJECTION_REASON = "No reason provided"
DOCUMENT_FOLDER = "contractor/invoices"
MAX_WINDOW_DAYS = 7

INVOICE_TRANSITIONS = {
    InvoiceStatus.PENDING_PM_APPROVAL: {InvoiceStatus.APPROVED, InvoiceStatus.REJECTED},
    InvoiceStatus.APPROVED: set(),
    InvoiceStatus.REJECTED: set(),
}


def round2(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ---------- pricing ----------

@dataclass(frozen=True)
class RatePolicy:
    market_rate: Decimal
    contract_rate_max: Decimal
    market_weight: Decimal
    contract_weight: Decimal

    @classmethod
    def from_config(cls, cfg) -> "RatePolicy":
        return cls(
            market_rate=Decimal(str(cfg["INVOICE_MARKET_RATE"])),
            contract_rate_max=Decimal(str(cfg["INVOICE_CONTRACT_RATE_MAX"])),
            market_weight=Decimal(str(cfg["INVOICE_MARKET_WEIGHT"])),
            contract_weight=Decimal(str(cfg["INVOICE_CONTRACT_WEIGHT"])),
        )


@dataclass(frozen=True)
class InvoiceAmounts:
    taxable_amount: Decimal
    gst_amount: Decimal
    total_amount: Decimal


def count_labour_days(records: Iterable) -> int:
    """Distinct (labour_id, work_date) pairs; a worker counts once per day."""
    return len({(labour_id, work_date) for labour_id, work_date in records})


def blended_rate(contract_rates: Iterable, policy: RatePolicy) -> Decimal:
    """
    Market rate, or a weighted blend with the mean contract rate when that
    mean is within (0, contract_rate_max]. Each step is rounded to paise.
    """
    market = round2(policy.market_rate)
    rates = [Decimal(str(r)) for r in contract_rates if r is not None]
    if not rates:
        return market
    avg = round2(sum(rates, Decimal("0")) / len(rates))
    if avg <= 0 or avg > policy.contract_rate_max:
        return market
    return round2(round2(market * policy.market_weight) + round2(avg * policy.contract_weight))


def compute_invoice_amounts(labour_days: int, rate, gst_rate) -> InvoiceAmounts:
    taxable = round2(Decimal(labour_days) * round2(rate))
    gst = round2(taxable * Decimal(str(gst_rate)) / 100)
    total = round2(taxable + gst)
    return InvoiceAmounts(taxable_amount=taxable, gst_amount=gst, total_amount=total)


# ---------- serialisation ----------

def serialize_invoice(inv: ContractorInvoice) -> dict:
    contractor_user = inv.contractor.user if inv.contractor else None
    return {
        "id": inv.id,
        "invoice_number": inv.invoice_number,
        "contractor_id": inv.contractor_id,
        "contractor_name": contractor_user.full_name if contractor_user else None,
        "project_id": inv.project_id,
        "project_name": inv.project.name if inv.project else None,
        "week_start": inv.week_start.isoformat(),
        "week_end": inv.week_end.isoformat(),
        "labour_days": inv.labour_days,
        "blended_rate": str(inv.blended_rate),
        "taxable_amount": str(inv.taxable_amount),
        "gst_rate": str(inv.gst_rate),
        "gst_amount": str(inv.gst_amount),
        "total_amount": str(inv.total_amount),
        "status": inv.status.value,
        "approved_by": inv.approved_by,
        "approved_at": inv.approved_at.isoformat() if inv.approved_at else None,
        "rejected_by": inv.rejected_by,
        "rejected_at": inv.rejected_at.isoformat() if inv.rejected_at else None,
        "rejection_reason": inv.rejection_reason,
        "visible_to_owner": bool(inv.visible_to_owner),
        "document_url": inv.document_url,
        "document_source": inv.document_source.value if inv.document_source else None,
        "document_uploaded_by": inv.document_uploaded_by,
        "document_uploaded_at": inv.document_uploaded_at.isoformat() if inv.document_uploaded_at else None,
        "created_at": inv.created_at.isoformat() if inv.created_at else None,
    }


def _document_data(inv: ContractorInvoice) -> dict:
    data = serialize_invoice(inv)
    approver = db.session.get(User, inv.approved_by) if inv.approved_by else None
    data["approved_by_name"] = approver.full_name if approver else None
    return data


# ---------- generation ----------

def generate_invoice(actor, project_id: int, week_start: date, week_end: date,
                     now: Optional[datetime] = None) -> ContractorInvoice:
    if not isinstance(week_start, date) or not isinstance(week_end, date):
        raise ValidationFailed(message="week_start and week_end are required")
    if week_end < week_start:
        raise ValidationFailed(message="week_end must not be before week_start")
    if (week_end - week_start).days >= MAX_WINDOW_DAYS:
        raise ValidationFailed(message=f"invoice window cannot exceed {MAX_WINDOW_DAYS} days")

    ensure_role(actor, "contractor", action="create invoices")
    project = get_or_404(Project, project_id, "Project")
    contractor = labour_attendance.contractor_for_user(actor.user_id)
    contracts = (
        labour_attendance.active_contracts(contractor.id, project.id, week_start, week_end)
        if contractor else []
    )
    if not contracts:
        raise Conflict("NO_CONTRACT", "No active contract for this project")

    # one generator per contractor at a time; held until commit
    lock_row(Contractor, contractor.id)
    duplicate = ContractorInvoice.query.filter(
        ContractorInvoice.contractor_id == contractor.id,
        ContractorInvoice.project_id == project.id,
        ContractorInvoice.week_start <= week_end,
        ContractorInvoice.week_end >= week_start,
        ContractorInvoice.status != InvoiceStatus.REJECTED,
    ).first()
    if duplicate:
        raise Conflict(
            "DUPLICATE_INVOICE",
            f"Invoice {duplicate.invoice_number} already covers "
            f"{duplicate.week_start.isoformat()} to {duplicate.week_end.isoformat()}",
        )

    records = labour_attendance.billable_attendance(contractor.id, project.id, week_start, week_end)
    labour_days = count_labour_days(records)
    if labour_days == 0:
        raise ValidationFailed("NO_ATTENDANCE", "No attendance records found for this week")

    cfg = current_app.config
    rate = blended_rate([c.rate_per_labour_per_day for c in contracts], RatePolicy.from_config(cfg))
    # most recently started contract carries the GST terms
    gst_rate = contracts[0].gst_rate if contracts[0].gst_rate is not None else cfg["INVOICE_DEFAULT_GST_RATE"]
    amounts = compute_invoice_amounts(labour_days, rate, gst_rate)

    now = now or datetime.utcnow()
    inv = ContractorInvoice(
        invoice_number=invoice_number(now.date()),
        contractor_id=contractor.id,
        project_id=project.id,
        week_start=week_start,
        week_end=week_end,
        labour_days=labour_days,
        blended_rate=rate,
        taxable_amount=amounts.taxable_amount,
        gst_rate=round2(gst_rate),
        gst_amount=amounts.gst_amount,
        total_amount=amounts.total_amount,
        status=InvoiceStatus.PENDING_PM_APPROVAL,
        visible_to_owner=False,
    )
    db.session.add(inv)
    db.session.commit()
    log.info("contractor invoice %s generated by user %s: %s labour-days, total %s",
             inv.invoice_number, actor.user_id, labour_days, amounts.total_amount)

    msg = f"Contractor invoice {inv.invoice_number} requires approval (Rs. {inv.total_amount})"
    notify_many(project_manager_ids(project.id), "contractor_invoice", "Contractor Invoice Pending", msg,
                {"invoice_id": inv.id, "project_id": project.id})
    notify(project.owner_id, "contractor_invoice", "New Contractor Invoice",
           f"Contractor invoice {inv.invoice_number} created (Rs. {inv.total_amount}). Status: Pending PM approval.",
           {"invoice_id": inv.id, "project_id": project.id})
    return inv


# ---------- approval ----------

def _load_for_review(actor, invoice_id: int, action: str, target: InvoiceStatus):
    ensure_role(actor, "manager", action=f"{action} invoices")
    inv = get_or_404(ContractorInvoice, invoice_id, "Invoice")
    project = get_or_404(Project, inv.project_id, "Project")
    ensure_project_manager(actor, project, action=f"{action} invoices")
    ensure_not_self(actor.user_id, inv.contractor.user_id, action=action)
    if target not in INVOICE_TRANSITIONS[inv.status]:
        raise Conflict("ALREADY_PROCESSED", "Invoice already processed")
    return inv, project


def _render(inv: ContractorInvoice) -> bytes:
    return render_invoice_document(_document_data(inv))


def _store_generated_document(invoice_id: int, number: str, pdf: bytes) -> str:
    url = get_storage().store(pdf, DOCUMENT_FOLDER, f"{number}.pdf", "application/pdf")
    # a contractor-uploaded document takes precedence over the generated one
    db.session.execute(
        update(ContractorInvoice)
        .where(
            ContractorInvoice.id == invoice_id,
            db.or_(ContractorInvoice.document_source.is_(None),
                   ContractorInvoice.document_source == DocumentSource.GENERATED),
        )
        .values(document_url=url, document_source=DocumentSource.GENERATED)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return url


def _email_owner(project: Project, number: str, total, pdf: bytes):
    owner = db.session.get(User, project.owner_id)
    if not owner or not owner.email:
        raise ValueError(f"project {project.id} owner has no email")
    send_with_attachment(
        [owner.email],
        f"Approved contractor invoice {number}",
        f"Invoice {number} for {project.name} was approved by the project manager.\n"
        f"Total payable: Rs. {total}\n",
        [(f"{number.replace('/', '-')}.pdf", pdf, "application/pdf")],
    )


def approve_invoice(actor, invoice_id: int, now: Optional[datetime] = None) -> ContractorInvoice:
    inv, project = _load_for_review(actor, invoice_id, "approve", InvoiceStatus.APPROVED)
    inv = conditional_transition(ContractorInvoice, inv.id, [InvoiceStatus.PENDING_PM_APPROVAL], {
        "status": InvoiceStatus.APPROVED,
        "approved_by": actor.user_id,
        "approved_at": now or datetime.utcnow(),
        "visible_to_owner": True,
    }, conflict_code="ALREADY_PROCESSED")
    db.session.commit()
    log.info("contractor invoice %s approved by user %s", inv.invoice_number, actor.user_id)

    # everything below is delivery; the approval above already stands
    number, total, inv_id = inv.invoice_number, inv.total_amount, inv.id
    pdf = best_effort("invoice:render", _render, inv)
    if pdf:
        best_effort("invoice:store", _store_generated_document, inv_id, number, pdf)
        best_effort("invoice:email", _email_owner, project, number, total, pdf)

    notify(project.owner_id, "contractor_invoice", "Contractor invoice approved",
           f"Invoice {number} approved (Rs. {total})", {"invoice_id": inv_id})
    notify(inv.contractor.user_id, "contractor_invoice", "Invoice approved",
           f"Your invoice {number} was approved", {"invoice_id": inv_id})
    return db.session.get(ContractorInvoice, inv_id, populate_existing=True)


def reject_invoice(actor, invoice_id: int, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> ContractorInvoice:
    inv, _project = _load_for_review(actor, invoice_id, "reject", InvoiceStatus.REJECTED)
    reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
    inv = conditional_transition(ContractorInvoice, inv.id, [InvoiceStatus.PENDING_PM_APPROVAL], {
        "status": InvoiceStatus.REJECTED,
        "rejected_by": actor.user_id,
        "rejected_at": now or datetime.utcnow(),
        "rejection_reason": reason,
    }, conflict_code="ALREADY_PROCESSED")
    db.session.commit()
    log.info("contractor invoice %s rejected by user %s", inv.invoice_number, actor.user_id)

    notify(inv.contractor.user_id, "contractor_invoice", "Invoice rejected",
           f"Your invoice {inv.invoice_number} was rejected: {reason}", {"invoice_id": inv.id})
    return inv


def upload_invoice_document(actor, invoice_id: int, data: bytes, filename: str,
                            now: Optional[datetime] = None) -> ContractorInvoice:
    """Attach a contractor-prepared PDF; approval status is left as it is."""
    if not data:
        raise ValidationFailed("MISSING_FILE", "PDF file is required")
    if not data.startswith(b"%PDF"):
        raise ValidationFailed(message="Only PDF documents are accepted")

    ensure_role(actor, "contractor", action="upload invoice documents")
    inv = get_or_404(ContractorInvoice, invoice_id, "Invoice")
    if inv.contractor.user_id != actor.user_id:
        raise Forbidden(message="You can only upload documents for your own invoices")
    allowed = [InvoiceStatus.PENDING_PM_APPROVAL, InvoiceStatus.APPROVED]
    if inv.status not in allowed:
        raise Conflict("INVALID_STATUS", f"Invoice is {inv.status.value}")

    try:
        url = get_storage().store(data, DOCUMENT_FOLDER, filename or f"{inv.invoice_number}.pdf", "application/pdf")
    except Exception as e:
        log.warning("document upload for invoice %s failed: %s", inv.id, e)
        raise APIError("STORAGE_UNAVAILABLE", "Could not store the document, please retry", 502) from e

    inv = conditional_transition(ContractorInvoice, inv.id, allowed, {
        "document_url": url,
        "document_source": DocumentSource.UPLOADED,
        "document_uploaded_by": actor.user_id,
        "document_uploaded_at": now or datetime.utcnow(),
        "visible_to_owner": True,
    })
    db.session.commit()
    log.info("document uploaded for contractor invoice %s by user %s", inv.invoice_number, actor.user_id)

    notify(inv.project.owner_id, "contractor_invoice", "Contractor invoice document",
           f"Document uploaded for invoice {inv.invoice_number}", {"invoice_id": inv.id})
    return inv


# ---------- reads ----------

def my_invoices(actor):
    ensure_role(actor, "contractor", action="list their invoices")
    contractor = labour_attendance.contractor_for_user(actor.user_id)
    if not contractor:
        return ContractorInvoice.query.filter(db.false())
    return ContractorInvoice.query.filter_by(contractor_id=contractor.id).order_by(
        ContractorInvoice.created_at.desc(), ContractorInvoice.id.desc()
    )


def pending_invoices(actor):
    ensure_role(actor, "manager", action="review invoices")
    return (
        ContractorInvoice.query.join(ProjectMember, ProjectMember.project_id == ContractorInvoice.project_id)
        .filter(ProjectMember.user_id == actor.user_id,
                ContractorInvoice.status == InvoiceStatus.PENDING_PM_APPROVAL)
        .order_by(ContractorInvoice.created_at.asc(), ContractorInvoice.id.asc())
    )


def owner_invoices(actor):
    ensure_role(actor, "owner", action="view approved invoices")
    return (
        ContractorInvoice.query.join(Project, Project.id == ContractorInvoice.project_id)
        .filter(Project.owner_id == actor.user_id, ContractorInvoice.visible_to_owner.is_(True))
        .order_by(ContractorInvoice.created_at.desc(), ContractorInvoice.id.desc())
    )
