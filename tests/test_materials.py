from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from offsite_api.common.errors import Conflict, Forbidden
from offsite_api.extensions import db
from offsite_api.models.material import MaterialRequest, MaterialRequestStatus
from offsite_api.services import anomaly, materials

from conftest import actor_for

NOW = datetime(2026, 1, 12, 12, 0, 0)


def _history(team, quantities, days_ago=1, status=MaterialRequestStatus.APPROVED, material_id="CEM-43",
             unit="bags"):
    for q in quantities:
        db.session.add(MaterialRequest(
            project_id=team["project"].id, requested_by=team["eng"].id,
            material_id=material_id, material_name="OPC 43 cement", quantity=Decimal(str(q)),
            unit=unit, reason="slab", status=status, created_at=NOW - timedelta(days=days_ago),
        ))
    db.session.commit()


def test_no_history_is_not_an_anomaly(team):
    res = anomaly.detect("CEM-43", 1000, team["project"].id, now=NOW)
    assert res.is_anomaly is False
    assert res.average_usage is None


def test_threshold_is_strict(team):
    _history(team, [100, 100, 100])
    assert anomaly.detect("CEM-43", 130, now=NOW).is_anomaly is False
    res = anomaly.detect("CEM-43", 131, now=NOW)
    assert res.is_anomaly is True
    assert res.reason == "31% higher than average usage (100 bags)"
    assert res.average_usage == 100.0


def test_window_and_status_filter(team):
    _history(team, [10], days_ago=8)
    _history(team, [10], status=MaterialRequestStatus.REJECTED)
    _history(team, [100])
    res = anomaly.detect("CEM-43", 125, now=NOW)
    assert res.is_anomaly is False
    assert res.average_usage == 100.0


def test_reason_rounds_half_up(team):
    _history(team, [40, 41])  # mean 40.5
    res = anomaly.detect("CEM-43", 81, now=NOW)
    assert res.reason == "100% higher than average usage (41 bags)"


def test_request_carries_anomaly_flag(team):
    _history(team, [50, 50])
    req = materials.create_request(actor_for(team["eng"]), team["project"].id, "CEM-43", "OPC 43 cement",
                                   200, "bags", "raft pour", now=NOW)
    assert req.status == MaterialRequestStatus.PENDING
    assert req.anomaly_detected is True
    assert "300% higher" in req.anomaly_reason


def test_review_flow(team):
    req = materials.create_request(actor_for(team["eng"]), team["project"].id, "STL-12", "TMT 12mm",
                                   "2.5", "tonnes", "columns", now=NOW)
    done = materials.approve_request(actor_for(team["pur"]), req.id, now=NOW)
    assert done.status == MaterialRequestStatus.APPROVED
    assert done.approved_by == team["pur"].id

    with pytest.raises(Conflict) as ei:
        materials.reject_request(actor_for(team["pm"]), req.id, "late")
    assert ei.value.code == "ALREADY_PROCESSED"


def test_requester_cannot_review_own_request(team):
    req = materials.create_request(actor_for(team["pm"]), team["project"].id, "STL-12", "TMT 12mm",
                                   3, "tonnes", "beams", now=NOW)
    with pytest.raises(Conflict) as ei:
        materials.approve_request(actor_for(team["pm"]), req.id)
    assert ei.value.code == "SELF_APPROVAL"


def test_engineer_cannot_review(team):
    req = materials.create_request(actor_for(team["pm"]), team["project"].id, "STL-12", "TMT 12mm",
                                   3, "tonnes", "beams", now=NOW)
    with pytest.raises(Forbidden):
        materials.approve_request(actor_for(team["eng"]), req.id)
