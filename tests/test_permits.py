import re
from datetime import datetime, timedelta

import pytest

from offsite_api.common.errors import Conflict, Forbidden, ValidationFailed
from offsite_api.extensions import db
from offsite_api.models.notification import Notification
from offsite_api.models.permit import PermitStatus
from offsite_api.services import permits

from conftest import actor_for, build_team, make_user, race

T0 = datetime(2026, 1, 12, 9, 0, 0)


def _request(team):
    return permits.create_permit(
        actor_for(team["eng"]), team["project"].id,
        "Welding on level 4", "hot_work", ["fire extinguisher", "fire watch"],
    )


def _issued_code(user_id, permit_id):
    n = (Notification.query.filter_by(user_id=user_id, type="permit_approved")
         .order_by(Notification.id.desc()).first())
    assert n.data == {"permit_id": permit_id}
    return re.search(r"OTP: (\d+)", n.message).group(1)


def test_request_notifies_project_managers(team):
    p = _request(team)
    assert p.status == PermitStatus.PENDING
    notified = {n.user_id for n in Notification.query.filter_by(type="permit_request")}
    assert notified == {team["pm"].id, team["pm2"].id}


def test_only_engineers_request(team):
    with pytest.raises(Forbidden):
        permits.create_permit(actor_for(team["pm"]), team["project"].id, "x", "height", ["harness"])


def test_safety_measures_must_be_strings(team):
    with pytest.raises(ValidationFailed):
        permits.create_permit(actor_for(team["eng"]), team["project"].id, "x", "height", "harness")


def test_approve_issues_hashed_code(team):
    p = _request(team)
    p = permits.approve_permit(actor_for(team["pm"]), p.id, now=T0)
    assert p.status == PermitStatus.OTP_GENERATED
    assert p.approved_by == team["pm"].id
    assert p.otp_expires_at == T0 + timedelta(minutes=10)

    code = _issued_code(team["eng"].id, p.id)
    assert len(code) == 6 and code.isdigit()
    assert p.otp_hash and code not in p.otp_hash
    assert "otp_hash" not in permits.serialize_permit(p)


def test_manager_outside_project_cannot_approve(team):
    p = _request(team)
    stranger = make_user("manager")
    with pytest.raises(Forbidden):
        permits.approve_permit(actor_for(stranger), p.id)


def test_second_approval_conflicts(team):
    p = _request(team)
    permits.approve_permit(actor_for(team["pm"]), p.id, now=T0)
    with pytest.raises(Conflict) as ei:
        permits.approve_permit(actor_for(team["pm2"]), p.id, now=T0)
    assert ei.value.code == "INVALID_STATUS"


def test_verify_happy_path_then_replay(team):
    p = _request(team)
    permits.approve_permit(actor_for(team["pm"]), p.id, now=T0)
    code = _issued_code(team["eng"].id, p.id)

    done = permits.verify_permit_otp(actor_for(team["eng"]), p.id, code, now=T0 + timedelta(minutes=5))
    assert done.status == PermitStatus.COMPLETED
    assert done.otp_used is True
    assert done.work_started_at == T0 + timedelta(minutes=5)

    with pytest.raises(Conflict) as ei:
        permits.verify_permit_otp(actor_for(team["eng"]), p.id, code, now=T0 + timedelta(minutes=6))
    assert ei.value.code == "OTP_USED"


def test_spent_code_is_scrubbed_from_notifications(team):
    p = _request(team)
    permits.approve_permit(actor_for(team["pm"]), p.id, now=T0)
    code = _issued_code(team["eng"].id, p.id)
    permits.verify_permit_otp(actor_for(team["eng"]), p.id, code, now=T0 + timedelta(minutes=1))

    n = Notification.query.filter_by(user_id=team["eng"].id, type="permit_approved").one()
    assert code not in n.message
    assert n.data == {"permit_id": p.id}


def test_parallel_verification_completes_once(shared_app):
    team = build_team()
    p = _request(team)
    permits.approve_permit(actor_for(team["pm"]), p.id, now=T0)
    code = _issued_code(team["eng"].id, p.id)
    eng, permit_id = actor_for(team["eng"]), p.id
    db.session.commit()

    outcomes = race(shared_app, lambda: permits.verify_permit_otp(eng, permit_id, code, now=T0))
    assert outcomes == ["OTP_USED", "OTP_USED", "OTP_USED", "ok"]
    db.session.expire_all()
    assert db.session.get(type(p), permit_id).status == PermitStatus.COMPLETED


def test_wrong_code_leaves_permit_waiting(team):
    p = _request(team)
    permits.approve_permit(actor_for(team["pm"]), p.id, now=T0)
    code = _issued_code(team["eng"].id, p.id)
    wrong = "000000" if code != "000000" else "111111"

    with pytest.raises(Conflict) as ei:
        permits.verify_permit_otp(actor_for(team["eng"]), p.id, wrong, now=T0)
    assert ei.value.code == "OTP_MISMATCH"
    db.session.refresh(p)
    assert p.status == PermitStatus.OTP_GENERATED
    assert p.otp_used is False


def test_late_verification_expires_permit(team):
    p = _request(team)
    permits.approve_permit(actor_for(team["pm"]), p.id, now=T0)
    code = _issued_code(team["eng"].id, p.id)

    with pytest.raises(Conflict) as ei:
        permits.verify_permit_otp(actor_for(team["eng"]), p.id, code, now=T0 + timedelta(minutes=11))
    assert ei.value.code == "OTP_EXPIRED"
    db.session.expire_all()
    assert db.session.get(type(p), p.id).status == PermitStatus.EXPIRED


def test_only_requester_verifies(team):
    p = _request(team)
    permits.approve_permit(actor_for(team["pm"]), p.id, now=T0)
    with pytest.raises(Forbidden) as ei:
        permits.verify_permit_otp(actor_for(team["pm"]), p.id, "123456", now=T0)
    assert ei.value.code == "NOT_YOUR_PERMIT"


def test_code_format_checked_first(team):
    p = _request(team)
    with pytest.raises(ValidationFailed):
        permits.verify_permit_otp(actor_for(team["eng"]), p.id, "12ab56")


def test_verify_before_approval(team):
    p = _request(team)
    with pytest.raises(Conflict) as ei:
        permits.verify_permit_otp(actor_for(team["eng"]), p.id, "123456")
    assert ei.value.code == "INVALID_STATUS"


def test_sweep_expires_only_lapsed_codes(team):
    a = _request(team)
    b = _request(team)
    permits.approve_permit(actor_for(team["pm"]), a.id, now=T0)
    permits.approve_permit(actor_for(team["pm"]), b.id, now=T0 + timedelta(minutes=30))

    assert permits.expire_stale_permits(now=T0 + timedelta(minutes=20)) == 1
    db.session.expire_all()
    assert db.session.get(type(a), a.id).status == PermitStatus.EXPIRED
    assert db.session.get(type(b), b.id).status == PermitStatus.OTP_GENERATED


def test_pending_queue_by_role(team):
    p = _request(team)
    assert [x.id for x in permits.pending_permits(actor_for(team["pm"]))] == [p.id]
    assert [x.id for x in permits.pending_permits(actor_for(team["owner"]))] == [p.id]
    with pytest.raises(Forbidden):
        permits.pending_permits(actor_for(team["eng"])).all()
