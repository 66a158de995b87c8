"""
Visit lifecycle tests

- POST /visits/checkin - check-in, passport activation, access grant
- POST /visits/{id}/checkout - staff check-out, grant revocation
- POST /visits/self-checkout - patient check-out
- GET /visits/active - the hospital queue
"""

import time
from datetime import datetime

from sqlalchemy import select, func

from carepass.models import AccessGrant, AuditLog, EHealthPassport, GrantStatus, Visit, VisitStatus
from carepass.services import visit_service


async def _check_in(client, auth, staff, payload):
    return await client.post("/api/visits/checkin", json=payload, headers=auth(staff))


class TestCheckIn:
    """Tests for POST /visits/checkin"""

    async def test_first_check_in_activates_passport(self, client, auth, seeded, checkin_payload, session_factory):
        """Should create the visit, an active grant and a fresh passport on first check-in"""
        resp = await _check_in(client, auth, seeded.staff, checkin_payload)

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Patient checked in + E-Health Passport activated!"
        data = body["data"]
        assert data["eHealthPassportActivated"] is True
        assert data["status"] == "checked_in"
        assert data["isFirstVisit"] is True
        assert data["patientId"] == "p1"
        assert data["hospitalId"] == "h1"
        assert data["visitId"].startswith("visit_p1_")
        assert data["visitHistory"]["totalVisits"] == 1
        assert data["visitHistory"]["hospitals"] == ["h1"]

        async with session_factory() as s:
            grant = (await s.execute(select(AccessGrant).where(AccessGrant.visit_id == data["id"]))).scalar_one()
            assert grant.status == GrantStatus.ACTIVE
            assert grant.permissions == ["read", "write"]
            assert grant.hospital_id == "h1"

            passport = (await s.execute(select(EHealthPassport))).scalar_one()
            assert passport.is_active is True
            assert passport.activated_by == "h1"
            assert passport.personal_info["firstName"] == "Ada"
            assert passport.personal_info["bloodType"] == "O+"
            assert passport.addresses["primary"]["country"] == "Nigeria"
            assert passport.emergency_contacts[0]["name"] == "Ike Obi"

            actions = (await s.execute(select(AuditLog.action))).scalars().all()
            assert actions == ["EHEALTH_PASSPORT_ACTIVATED"]

    async def test_second_check_in_while_open_is_rejected(self, client, auth, seeded, checkin_payload, session_factory):
        """Should refuse a second open visit at the same hospital"""
        await _check_in(client, auth, seeded.staff, checkin_payload)
        resp = await _check_in(client, auth, seeded.staff, checkin_payload)

        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Patient already checked in"}
        async with session_factory() as s:
            assert (await s.execute(select(func.count(Visit.id)))).scalar() == 1

    async def test_unique_index_rejects_check_in_missed_by_lookup(
        self, client, auth, seeded, checkin_payload, session_factory, monkeypatch
    ):
        """Should answer 400 and roll back when only the open-visit index sees the duplicate"""
        async def no_open_visit(db, patient_id, hospital_id):
            return None

        monkeypatch.setattr(visit_service, "find_open_visit", no_open_visit)

        first = await _check_in(client, auth, seeded.staff, checkin_payload)
        second = await _check_in(client, auth, seeded.staff, checkin_payload)

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json() == {"success": False, "error": "Patient already checked in"}
        async with session_factory() as s:
            assert (await s.execute(select(func.count(Visit.id)))).scalar() == 1
            assert (await s.execute(select(func.count(AccessGrant.id)))).scalar() == 1
            passport = (await s.execute(select(EHealthPassport))).scalar_one()
            assert passport.visit_history["totalVisits"] == 1

    async def test_visit_id_carries_utc_epoch_millis(self, client, auth, seeded, checkin_payload):
        before = int(time.time() * 1000)
        resp = await _check_in(client, auth, seeded.staff, checkin_payload)
        after = int(time.time() * 1000)

        millis = int(resp.json()["data"]["id"].rsplit("_", 1)[1])
        assert before - 1000 <= millis <= after + 1000

    async def test_open_visits_at_two_hospitals_are_allowed(self, client, auth, seeded, checkin_payload):
        """Should allow one open visit per hospital"""
        first = await _check_in(client, auth, seeded.staff, checkin_payload)
        second = await _check_in(client, auth, seeded.staff2, checkin_payload)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["data"]["eHealthPassportActivated"] is False
        assert second.json()["data"]["visitHistory"]["hospitals"] == ["h1", "h2"]

    async def test_email_lookup_is_case_insensitive(self, client, auth, seeded, checkin_payload):
        resp = await _check_in(client, auth, seeded.staff, {**checkin_payload, "patientEmail": "P1@Example.COM"})
        assert resp.status_code == 200

    async def test_missing_fields(self, client, auth, seeded):
        """Should return 400 when purpose or department is absent"""
        resp = await _check_in(client, auth, seeded.staff, {"patientEmail": "p1@example.com", "purpose": "fever"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing fields"

    async def test_unknown_patient(self, client, auth, seeded, checkin_payload):
        resp = await _check_in(client, auth, seeded.staff, {**checkin_payload, "patientEmail": "ghost@example.com"})
        assert resp.status_code == 404
        assert resp.json()["error"] == "Patient not found"

    async def test_wrong_role(self, client, auth, seeded, checkin_payload):
        """Should reject callers outside the front-desk roles"""
        resp = await _check_in(client, auth, seeded.doctor, checkin_payload)
        assert resp.status_code == 403
        assert resp.json()["error"] == "Unauthorized or hospital not configured"

    async def test_no_session(self, client, seeded, checkin_payload):
        resp = await client.post("/api/visits/checkin", json=checkin_payload)
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Unauthorized - No session"}

    async def test_invalid_session(self, client, seeded, checkin_payload):
        resp = await client.post(
            "/api/visits/checkin", json=checkin_payload, headers={"Authorization": "Bearer not-a-token"}
        )
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Invalid session"}

    async def test_session_cookie_is_accepted(self, client, seeded, checkin_payload):
        from carepass.api.middleware.auth import create_session_token

        resp = await client.post(
            "/api/visits/checkin",
            json=checkin_payload,
            headers={"Cookie": f"session={create_session_token(seeded.staff)}"},
        )
        assert resp.status_code == 200


class TestCheckOut:
    """Tests for POST /visits/{id}/checkout"""

    async def test_check_out_revokes_grant(self, client, auth, seeded, checkin_payload, session_factory):
        """Should close the visit and revoke its grant"""
        visit_id = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]["id"]

        resp = await client.post(f"/api/visits/{visit_id}/checkout", headers=auth(seeded.staff))

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "checked_out"
        assert data["checkOutMethod"] == "staff"
        assert data["checkOutTime"] is not None
        assert data["revokedGrants"] == 1

        async with session_factory() as s:
            grant = (await s.execute(select(AccessGrant).where(AccessGrant.visit_id == visit_id))).scalar_one()
            assert grant.status == GrantStatus.REVOKED
            assert grant.revoked_at is not None
            audit = (
                await s.execute(select(AuditLog).where(AuditLog.action == "PATIENT_CHECK_OUT"))
            ).scalar_one()
            assert audit.resource_id == visit_id
            assert audit.details["revokedGrants"] == 1

    async def test_full_cycle_counts_visits(self, client, auth, seeded, checkin_payload):
        """Check-in, check-out, check-in again: two visits, one hospital, one activation"""
        visit_id = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]["id"]
        await client.post(f"/api/visits/{visit_id}/checkout", headers=auth(seeded.staff))

        resp = await _check_in(client, auth, seeded.staff, checkin_payload)

        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Patient checked in successfully"
        assert body["data"]["eHealthPassportActivated"] is False
        assert body["data"]["id"] != visit_id
        assert body["data"]["visitHistory"]["totalVisits"] == 2
        assert body["data"]["visitHistory"]["hospitals"] == ["h1"]

    async def test_check_out_leaves_other_hospital_visit_open(
        self, client, auth, seeded, checkin_payload, session_factory
    ):
        """Should close only the visit and grant of the checking-out hospital"""
        first = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]
        second = (await _check_in(client, auth, seeded.staff2, checkin_payload)).json()["data"]

        resp = await client.post(f"/api/visits/{first['id']}/checkout", headers=auth(seeded.staff))

        assert resp.status_code == 200
        assert resp.json()["data"]["revokedGrants"] == 1
        async with session_factory() as s:
            other = (await s.execute(select(Visit).where(Visit.id == second["id"]))).scalar_one()
            assert other.status == VisitStatus.CHECKED_IN
            grants = {g.id: g.status for g in (await s.execute(select(AccessGrant))).scalars().all()}
            assert grants[first["accessGrantId"]] == GrantStatus.REVOKED
            assert grants[second["accessGrantId"]] == GrantStatus.ACTIVE

    async def test_medical_history_survives_revisit(self, client, auth, seeded, checkin_payload):
        """Check-in, edit allergies, check-out, check-in again: the edit is kept"""
        visit_id = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]["id"]
        patch = await client.patch(
            "/api/patient/ehealth-passport",
            json={"medicalHistory": {"allergies": ["penicillin"]}},
            headers=auth(seeded.patient),
        )
        assert patch.status_code == 200
        await client.post(f"/api/visits/{visit_id}/checkout", headers=auth(seeded.staff))

        again = await _check_in(client, auth, seeded.staff, checkin_payload)

        assert again.status_code == 200
        assert again.json()["data"]["eHealthPassportActivated"] is False
        view = (await client.get("/api/patient/ehealth-passport", headers=auth(seeded.patient))).json()["data"]
        assert view["allergies"] == ["penicillin"]
        assert view["medicalHistory"]["allergies"] == ["penicillin"]
        assert view["visitHistory"]["totalVisits"] == 2

    async def test_other_hospital_cannot_check_out(self, client, auth, seeded, checkin_payload, session_factory):
        visit_id = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]["id"]

        resp = await client.post(f"/api/visits/{visit_id}/checkout", headers=auth(seeded.staff2))

        assert resp.status_code == 403
        assert resp.json()["error"] == "Unauthorized to check out this visit"
        async with session_factory() as s:
            visit = (await s.execute(select(Visit).where(Visit.id == visit_id))).scalar_one()
            assert visit.status == VisitStatus.CHECKED_IN

    async def test_already_checked_out(self, client, auth, seeded, checkin_payload):
        visit_id = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]["id"]
        await client.post(f"/api/visits/{visit_id}/checkout", headers=auth(seeded.staff))

        resp = await client.post(f"/api/visits/{visit_id}/checkout", headers=auth(seeded.staff))
        assert resp.status_code == 403

    async def test_unknown_visit(self, client, auth, seeded):
        resp = await client.post("/api/visits/visit_nope_0/checkout", headers=auth(seeded.staff))
        assert resp.status_code == 404
        assert resp.json()["error"] == "Visit not found"


class TestSelfCheckOut:
    """Tests for POST /visits/self-checkout"""

    async def test_patient_checks_out_own_visit(self, client, auth, seeded, checkin_payload, session_factory):
        visit_id = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]["id"]

        resp = await client.post("/api/visits/self-checkout", json={"visitId": visit_id}, headers=auth(seeded.patient))

        assert resp.status_code == 200
        assert resp.json()["data"]["checkOutMethod"] == "self_service"
        async with session_factory() as s:
            grant = (await s.execute(select(AccessGrant))).scalar_one()
            assert grant.status == GrantStatus.REVOKED
            actions = (await s.execute(select(AuditLog.action))).scalars().all()
            assert "PATIENT_SELF_CHECKOUT" in actions

    async def test_staff_cannot_self_check_out(self, client, auth, seeded, checkin_payload):
        visit_id = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]["id"]
        resp = await client.post("/api/visits/self-checkout", json={"visitId": visit_id}, headers=auth(seeded.staff))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Forbidden - Patient access only"

    async def test_missing_visit_id(self, client, auth, seeded):
        resp = await client.post("/api/visits/self-checkout", json={}, headers=auth(seeded.patient))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Visit ID required"

    async def test_ended_visit(self, client, auth, seeded, checkin_payload):
        visit_id = (await _check_in(client, auth, seeded.staff, checkin_payload)).json()["data"]["id"]
        await client.post("/api/visits/self-checkout", json={"visitId": visit_id}, headers=auth(seeded.patient))

        resp = await client.post("/api/visits/self-checkout", json={"visitId": visit_id}, headers=auth(seeded.patient))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Visit already ended"


class TestQueues:
    """Tests for GET /visits/active and GET /patient/visits"""

    async def test_active_queue(self, client, auth, seeded, checkin_payload):
        await _check_in(client, auth, seeded.staff, checkin_payload)

        resp = await client.get("/api/visits/active", headers=auth(seeded.nurse))

        assert resp.status_code == 200
        queue = resp.json()["data"]
        assert len(queue) == 1
        assert queue[0]["patient"] == {"name": "Ada Obi", "email": "p1@example.com"}

    async def test_queue_is_per_hospital(self, client, auth, seeded, checkin_payload):
        await _check_in(client, auth, seeded.staff, checkin_payload)
        resp = await client.get("/api/visits/active", headers=auth(seeded.staff2))
        assert resp.json()["data"] == []

    async def test_patient_visit_history(self, client, auth, seeded, checkin_payload):
        await _check_in(client, auth, seeded.staff, checkin_payload)

        resp = await client.get("/api/patient/visits", headers=auth(seeded.patient))

        assert resp.status_code == 200
        visits = resp.json()["data"]
        assert visits[0]["hospital"]["name"] == "Lagos General"
        assert visits[0]["purpose"] == "fever"


class TestVisitIds:

    def test_naive_time_is_read_as_utc(self):
        assert Visit.make_id("p1", datetime(2024, 1, 1)) == "visit_p1_1704067200000"
        assert Visit.make_id("p1", datetime(2024, 1, 1, 0, 0, 0, 5000)) == "visit_p1_1704067200005"
