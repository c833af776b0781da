from decimal import Decimal

import pytest

from offsite_api.common.errors import Conflict, Forbidden, ValidationFailed
from offsite_api.extensions import db
from offsite_api.models.petty_cash import PettyCashStatus
from offsite_api.services import petty_cash

from conftest import actor_for, build_team, race

SITE = (18.5204, 73.8567)


def _fence(project, radius=100, buffer=20):
    project.geo_enabled = True
    project.geo_center_lat, project.geo_center_lon = SITE
    project.geo_radius_m, project.geo_buffer_m = radius, buffer
    db.session.commit()


def _submit(team, who="eng", amount="1500", **kw):
    return petty_cash.submit_expense(actor_for(team[who]), team["project"].id, amount,
                                     "Cement bags", "materials", **kw)


def test_amount_rounds_to_paise(team):
    e = _submit(team, amount="12.345")
    assert e.amount == Decimal("12.35")
    assert e.status == PettyCashStatus.PENDING_PM_APPROVAL


@pytest.mark.parametrize("bad", ["0", "-5", "abc", None])
def test_amount_must_be_positive(team, bad):
    with pytest.raises(ValidationFailed):
        _submit(team, amount=bad)


def test_no_fence_is_unvalidated(team):
    e = _submit(team, latitude=SITE[0], longitude=SITE[1])
    assert e.geofence_valid is None
    assert petty_cash.geofence_flag(e) == "UNVALIDATED"


def test_outside_fence_is_flagged_not_blocked(team):
    _fence(team["project"])
    inside = _submit(team, latitude=SITE[0], longitude=SITE[1])
    outside = _submit(team, latitude=SITE[0] + 0.05, longitude=SITE[1])
    assert inside.geofence_valid is True
    assert outside.geofence_valid is False
    assert outside.status == PettyCashStatus.PENDING_PM_APPROVAL
    assert petty_cash.serialize_expense(outside)["geofence_flag"] == "OUTSIDE"
    assert outside.distance_from_site_m > 5000


def test_two_tier_approval(team):
    e = _submit(team)
    e = petty_cash.approve_expense(actor_for(team["pm"]), e.id)
    assert e.status == PettyCashStatus.PENDING_OWNER_APPROVAL
    assert e.pm_approved_by == team["pm"].id

    e = petty_cash.approve_expense(actor_for(team["owner"]), e.id)
    assert e.status == PettyCashStatus.APPROVED
    assert e.owner_approved_by == team["owner"].id


def test_owner_cannot_skip_manager_tier(team):
    e = _submit(team)
    with pytest.raises(Conflict) as ei:
        petty_cash.approve_expense(actor_for(team["owner"]), e.id)
    assert ei.value.code == "INVALID_STATUS"


def test_second_manager_approval_conflicts(team):
    e = _submit(team)
    petty_cash.approve_expense(actor_for(team["pm"]), e.id)
    with pytest.raises(Conflict):
        petty_cash.approve_expense(actor_for(team["pm2"]), e.id)


def test_manager_cannot_approve_own_claim(team):
    e = _submit(team, who="pm")
    with pytest.raises(Conflict) as ei:
        petty_cash.approve_expense(actor_for(team["pm"]), e.id)
    assert ei.value.code == "SELF_APPROVAL"
    # another manager on the project can
    e = petty_cash.approve_expense(actor_for(team["pm2"]), e.id)
    assert e.status == PettyCashStatus.PENDING_OWNER_APPROVAL


def test_purchase_manager_cannot_approve(team):
    e = _submit(team)
    with pytest.raises(Forbidden):
        petty_cash.approve_expense(actor_for(team["pur"]), e.id)


def test_reject_rules(team):
    e = _submit(team)
    petty_cash.approve_expense(actor_for(team["pm"]), e.id)
    with pytest.raises(Conflict):
        petty_cash.reject_expense(actor_for(team["pm2"]), e.id, "too high")

    e = petty_cash.reject_expense(actor_for(team["owner"]), e.id)
    assert e.status == PettyCashStatus.REJECTED
    assert e.rejection_reason == petty_cash.DEFAULT_REJECTION_REASON

    with pytest.raises(Conflict):
        petty_cash.approve_expense(actor_for(team["owner"]), e.id)


def test_queues(team):
    a = _submit(team)
    b = _submit(team)
    petty_cash.approve_expense(actor_for(team["pm"]), b.id)

    assert [x.id for x in petty_cash.pending_for(actor_for(team["pm"]))] == [a.id]
    assert [x.id for x in petty_cash.pending_for(actor_for(team["owner"]))] == [b.id]
    assert {x.id for x in petty_cash.all_for_owner(actor_for(team["owner"]))} == {a.id, b.id}
    assert [x.id for x in petty_cash.all_for_owner(actor_for(team["owner"]), status="pending_owner_approval")] == [b.id]
    with pytest.raises(ValidationFailed):
        petty_cash.all_for_owner(actor_for(team["owner"]), status="paid")


def test_parallel_pm_approval_moves_one_tier(shared_app):
    team = build_team()
    e = _submit(team)
    pm, expense_id = actor_for(team["pm"]), e.id
    db.session.commit()

    outcomes = race(shared_app, lambda: petty_cash.approve_expense(pm, expense_id))
    assert outcomes == ["INVALID_STATUS", "INVALID_STATUS", "INVALID_STATUS", "ok"]
    db.session.expire_all()
    assert db.session.get(type(e), expense_id).status == PettyCashStatus.PENDING_OWNER_APPROVAL
