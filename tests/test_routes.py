import io
import re


def _register(client, role, email):
    r = client.post("/api/v1/auth/register", json={
        "email": email, "password": "secret123", "full_name": email.split("@")[0].title(), "role": role,
    })
    assert r.status_code == 201, r.get_json()
    return r.get_json()["data"]


def _login(client, email):
    r = client.post("/api/v1/auth/login", json={"email": email, "password": "secret123"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.get_json()['access']}"}


def _site(client):
    owner = _register(client, "owner", "owner@site.test")
    pm = _register(client, "manager", "pm@site.test")
    eng = _register(client, "engineer", "eng@site.test")
    h = {"owner": _login(client, "owner@site.test"), "pm": _login(client, "pm@site.test"),
         "eng": _login(client, "eng@site.test")}

    r = client.post("/api/v1/projects", json={"name": "Tower B", "location": "Nashik"}, headers=h["owner"])
    assert r.status_code == 201
    pid = r.get_json()["data"]["id"]
    for u in (pm, eng):
        r = client.post(f"/api/v1/projects/{pid}/members", json={"offsite_id": u["offsite_id"]}, headers=h["owner"])
        assert r.status_code == 201
    return pid, h, {"owner": owner, "pm": pm, "eng": eng}


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "ok"


def test_register_issues_offsite_ids(client):
    assert _register(client, "engineer", "a@site.test")["offsite_id"] == "OSSE0001"
    assert _register(client, "engineer", "b@site.test")["offsite_id"] == "OSSE0002"
    assert _register(client, "purchase_manager", "c@site.test")["offsite_id"] == "OSPR0001"

    r = client.post("/api/v1/auth/register", json={
        "email": "a@site.test", "password": "secret123", "full_name": "Again", "role": "engineer"})
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "EMAIL_TAKEN"


def test_register_validates_role(client):
    r = client.post("/api/v1/auth/register", json={
        "email": "x@site.test", "password": "secret123", "full_name": "X", "role": "admin"})
    assert r.status_code == 422
    assert r.get_json()["success"] is False


def test_permit_flow_over_http(client):
    pid, h, _users = _site(client)

    r = client.post("/api/v1/permits", json={
        "project_id": pid, "task_description": "Scaffold work at 12m", "hazard_type": "height",
        "safety_measures": ["harness", "guard rails"]}, headers=h["eng"])
    assert r.status_code == 201
    permit_id = r.get_json()["data"]["id"]

    r = client.get("/api/v1/permits/pending", headers=h["pm"])
    assert [p["id"] for p in r.get_json()["data"]] == [permit_id]

    # engineers hold no approve permission
    r = client.post(f"/api/v1/permits/{permit_id}/approve", headers=h["eng"])
    assert r.status_code == 403

    r = client.post(f"/api/v1/permits/{permit_id}/approve", headers=h["pm"])
    assert r.status_code == 200
    body = r.get_json()["data"]
    assert body["status"] == "OTP_GENERATED"
    assert "otp" not in body and "otp_hash" not in body

    notes = client.get("/api/v1/notifications?unread=1", headers=h["eng"]).get_json()["data"]
    note = next(n for n in notes if n["type"] == "permit_approved")
    assert "otp" not in note["data"]
    code = re.search(r"OTP: (\d+)", note["message"]).group(1)

    r = client.post(f"/api/v1/permits/{permit_id}/verify-otp", json={"otp": code}, headers=h["eng"])
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "COMPLETED"

    r = client.post(f"/api/v1/permits/{permit_id}/verify-otp", json={"otp": code}, headers=h["eng"])
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "OTP_USED"


def test_petty_cash_over_http(client, storage):
    pid, h, _users = _site(client)

    r = client.post("/api/v1/petty-cash/receipts", headers=h["eng"], content_type="multipart/form-data",
                    data={"file": (io.BytesIO(b"%PDF-1.4 receipt"), "receipt.pdf", "application/pdf")})
    assert r.status_code == 201
    url = r.get_json()["data"]["receipt_url"]

    r = client.post("/api/v1/petty-cash", json={
        "project_id": pid, "amount": "450.50", "description": "Diesel for pump", "category": "fuel",
        "receipt_url": url}, headers=h["eng"])
    assert r.status_code == 201
    expense = r.get_json()["data"]
    assert expense["amount"] == "450.50"
    assert expense["geofence_flag"] == "UNVALIDATED"

    r = client.post(f"/api/v1/petty-cash/{expense['id']}/approve", headers=h["owner"])
    assert r.status_code == 409

    r = client.post(f"/api/v1/petty-cash/{expense['id']}/approve", headers=h["pm"])
    assert r.get_json()["data"]["status"] == "PENDING_OWNER_APPROVAL"

    r = client.get("/api/v1/petty-cash/all?status=PENDING_OWNER_APPROVAL", headers=h["owner"])
    payload = r.get_json()
    assert payload["meta"]["total"] == 1
    assert payload["data"][0]["id"] == expense["id"]


def test_validation_envelope(client):
    pid, h, _users = _site(client)
    r = client.post("/api/v1/petty-cash", json={"project_id": pid, "amount": "-1",
                                                "description": "x", "category": "y"}, headers=h["eng"])
    assert r.status_code == 422
    err = r.get_json()["error"]
    assert err["code"] == "VALIDATION_ERROR"


def test_unknown_project_is_404(client):
    _pid, h, _users = _site(client)
    r = client.get("/api/v1/projects/999", headers=h["owner"])
    assert r.status_code == 404
    assert r.get_json()["error"]["code"] == "NOT_FOUND"
