from datetime import date, datetime
from decimal import Decimal

import pytest

from offsite_api.common.errors import APIError, Conflict, Forbidden, ValidationFailed
from offsite_api.extensions import db
from offsite_api.models.contractor import ContractorInvoice, DocumentSource, InvoiceStatus
from offsite_api.models.notification import Notification
from offsite_api.services import contractor_invoices as invoices
from offsite_api.services import labour_attendance as labour
from offsite_api.services.contractor_invoices import RatePolicy
from offsite_api.storage import set_storage

from conftest import FailingStorage, MemoryStorage, actor_for, build_team, make_user, race

MON, SUN = date(2026, 1, 12), date(2026, 1, 18)
POLICY = RatePolicy(Decimal("700"), Decimal("1500"), Decimal("0.7"), Decimal("0.3"))


def _face(i, size=8):
    v = [0.0] * size
    v[i] = 1.0
    return v


def _build_crew(team):
    """A contractor on the team project with five face-enrolled labours."""
    ct = make_user("contractor")
    labour.assign_contract(actor_for(team["owner"]), ct.offsite_id, team["project"].id, "700",
                           date(2026, 1, 1), labour_count_per_day=5)
    labours = [
        labour.register_labour(actor_for(ct), team["project"].id, f"Worker {i}", face_embedding=_face(i))
        for i in range(5)
    ]
    return {**team, "ct": ct, "labours": labours}


@pytest.fixture
def crew(team, storage):
    return _build_crew(team)


def _attend(crew, day, idx=range(5)):
    ids = [crew["labours"][i].id for i in idx]
    return labour.upload_attendance(actor_for(crew["ct"]), crew["project"].id, day, ids,
                                    [_face(i) for i in idx])


def _generate(crew, start=MON, end=SUN):
    return invoices.generate_invoice(actor_for(crew["ct"]), crew["project"].id, start, end,
                                     now=datetime(2026, 1, 19, 10, 0))


# ---------- pricing ----------

def test_blended_rate_uses_contract_average():
    assert invoices.blended_rate([700], POLICY) == Decimal("700.00")
    assert invoices.blended_rate([1000], POLICY) == Decimal("790.00")
    assert invoices.blended_rate([800, 900], POLICY) == Decimal("745.00")


def test_blended_rate_falls_back_to_market():
    assert invoices.blended_rate([], POLICY) == Decimal("700.00")
    assert invoices.blended_rate([0], POLICY) == Decimal("700.00")
    assert invoices.blended_rate([1600], POLICY) == Decimal("700.00")


def test_amounts_round_each_step():
    a = invoices.compute_invoice_amounts(10, Decimal("700"), Decimal("18"))
    assert (a.taxable_amount, a.gst_amount, a.total_amount) == (
        Decimal("7000.00"), Decimal("1260.00"), Decimal("8260.00"))
    b = invoices.compute_invoice_amounts(3, Decimal("333.335"), 18)
    assert b.taxable_amount == Decimal("1000.02")
    assert b.gst_amount == Decimal("180.00")


def test_labour_days_are_distinct_pairs():
    pairs = [(1, MON), (1, MON), (2, MON)]
    assert invoices.count_labour_days(pairs) == 2


# ---------- generation ----------

def test_generate_prices_verified_attendance(crew):
    _attend(crew, MON)
    _attend(crew, date(2026, 1, 13))
    _attend(crew, date(2026, 1, 13))  # re-upload counts once

    inv = _generate(crew)
    assert inv.invoice_number == "OS/CI/2025-26/0001"
    assert inv.labour_days == 10
    assert inv.blended_rate == Decimal("700.00")
    assert inv.taxable_amount == Decimal("7000.00")
    assert inv.gst_amount == Decimal("1260.00")
    assert inv.total_amount == Decimal("8260.00")
    assert inv.status == InvoiceStatus.PENDING_PM_APPROVAL
    assert inv.visible_to_owner is False

    notified = {n.user_id for n in Notification.query.filter_by(type="contractor_invoice")}
    assert notified == {crew["pm"].id, crew["pm2"].id, crew["owner"].id}


def test_generate_rejects_duplicate_week(crew):
    _attend(crew, MON)
    _generate(crew)
    with pytest.raises(Conflict) as ei:
        _generate(crew)
    assert ei.value.code == "DUPLICATE_INVOICE"


def test_overlapping_window_cannot_rebill_days(crew):
    _attend(crew, date(2026, 1, 13))
    first = _generate(crew)
    assert first.labour_days == 5

    with pytest.raises(Conflict) as ei:
        _generate(crew, date(2026, 1, 13), date(2026, 1, 19))
    assert ei.value.code == "DUPLICATE_INVOICE"
    assert first.invoice_number in ei.value.message
    db.session.rollback()

    # touching windows do not overlap
    _attend(crew, date(2026, 1, 19))
    nxt = _generate(crew, date(2026, 1, 19), date(2026, 1, 25))
    assert nxt.labour_days == 5
    assert ContractorInvoice.query.count() == 2


def test_rejected_invoice_frees_overlapping_window(crew):
    _attend(crew, date(2026, 1, 13))
    first = _generate(crew)
    invoices.reject_invoice(actor_for(crew["pm"]), first.id, "wrong week")

    shifted = _generate(crew, date(2026, 1, 13), date(2026, 1, 19))
    assert shifted.labour_days == 5


def test_parallel_generation_bills_week_once(shared_app):
    set_storage(shared_app, MemoryStorage())
    crew = _build_crew(build_team())
    _attend(crew, MON)
    ct, project_id = actor_for(crew["ct"]), crew["project"].id
    db.session.commit()

    outcomes = race(shared_app, lambda: invoices.generate_invoice(
        ct, project_id, MON, SUN, now=datetime(2026, 1, 19, 10, 0)))
    assert outcomes == ["DUPLICATE_INVOICE", "DUPLICATE_INVOICE", "DUPLICATE_INVOICE", "ok"]
    db.session.expire_all()
    assert ContractorInvoice.query.count() == 1


def test_generate_without_attendance(crew):
    with pytest.raises(ValidationFailed) as ei:
        _generate(crew)
    assert ei.value.code == "NO_ATTENDANCE"


def test_generate_without_contract(team):
    stranger = make_user("contractor")
    with pytest.raises(Conflict) as ei:
        invoices.generate_invoice(actor_for(stranger), team["project"].id, MON, SUN)
    assert ei.value.code == "NO_CONTRACT"


def test_window_longer_than_a_week(crew):
    with pytest.raises(ValidationFailed):
        _generate(crew, MON, date(2026, 1, 19))


# ---------- approval ----------

def test_approve_stores_generated_document(crew, storage):
    _attend(crew, MON)
    inv = _generate(crew)

    done = invoices.approve_invoice(actor_for(crew["pm"]), inv.id)
    assert done.status == InvoiceStatus.APPROVED
    assert done.visible_to_owner is True
    assert done.document_source == DocumentSource.GENERATED
    stored = [k for k in storage.objects if k.startswith("contractor/invoices/")]
    assert len(stored) == 1
    assert storage.objects[stored[0]][0].startswith(b"%PDF")

    owner_view = list(invoices.owner_invoices(actor_for(crew["owner"])))
    assert [i.id for i in owner_view] == [inv.id]


def test_storage_failure_keeps_approval(crew, app):
    _attend(crew, MON)
    inv = _generate(crew)
    set_storage(app, FailingStorage())

    done = invoices.approve_invoice(actor_for(crew["pm"]), inv.id)
    assert done.status == InvoiceStatus.APPROVED
    assert done.document_url is None

    db.session.expire_all()
    assert db.session.get(ContractorInvoice, inv.id).status == InvoiceStatus.APPROVED


def test_second_review_conflicts(crew):
    _attend(crew, MON)
    inv = _generate(crew)
    invoices.approve_invoice(actor_for(crew["pm"]), inv.id)
    with pytest.raises(Conflict) as ei:
        invoices.reject_invoice(actor_for(crew["pm2"]), inv.id, "wrong rate")
    assert ei.value.code == "ALREADY_PROCESSED"


def test_parallel_approval_decides_once(shared_app):
    storage = MemoryStorage()
    set_storage(shared_app, storage)
    crew = _build_crew(build_team())
    _attend(crew, MON)
    inv = _generate(crew)
    pm, invoice_id = actor_for(crew["pm"]), inv.id
    db.session.commit()

    outcomes = race(shared_app, lambda: invoices.approve_invoice(pm, invoice_id))
    assert outcomes == ["ALREADY_PROCESSED", "ALREADY_PROCESSED", "ALREADY_PROCESSED", "ok"]
    assert len([k for k in storage.objects if k.startswith("contractor/invoices/")]) == 1


def test_owner_does_not_review_invoices(crew):
    _attend(crew, MON)
    inv = _generate(crew)
    with pytest.raises(Forbidden):
        invoices.approve_invoice(actor_for(crew["owner"]), inv.id)


def test_rejected_week_can_be_invoiced_again(crew):
    _attend(crew, MON)
    inv = _generate(crew)
    rejected = invoices.reject_invoice(actor_for(crew["pm"]), inv.id)
    assert rejected.rejection_reason == invoices.DEFAULT_REJECTION_REASON
    assert list(invoices.owner_invoices(actor_for(crew["owner"]))) == []

    again = _generate(crew)
    assert again.invoice_number == "OS/CI/2025-26/0002"


# ---------- uploaded documents ----------

def test_upload_document_makes_invoice_visible(crew, storage):
    _attend(crew, MON)
    inv = _generate(crew)
    done = invoices.upload_invoice_document(actor_for(crew["ct"]), inv.id, b"%PDF-1.4 test", "bill.pdf")
    assert done.status == InvoiceStatus.PENDING_PM_APPROVAL
    assert done.document_source == DocumentSource.UPLOADED
    assert done.visible_to_owner is True

    # approval keeps the contractor's document
    approved = invoices.approve_invoice(actor_for(crew["pm"]), inv.id)
    assert approved.document_source == DocumentSource.UPLOADED
    assert approved.document_url == done.document_url


def test_upload_requires_pdf(crew):
    _attend(crew, MON)
    inv = _generate(crew)
    with pytest.raises(ValidationFailed):
        invoices.upload_invoice_document(actor_for(crew["ct"]), inv.id, b"GIF89a", "bill.gif")


def test_upload_storage_failure_is_retryable(crew, app):
    _attend(crew, MON)
    inv = _generate(crew)
    set_storage(app, FailingStorage())
    with pytest.raises(APIError) as ei:
        invoices.upload_invoice_document(actor_for(crew["ct"]), inv.id, b"%PDF-1.4", "bill.pdf")
    assert ei.value.code == "STORAGE_UNAVAILABLE"
    assert ei.value.status_code == 502
