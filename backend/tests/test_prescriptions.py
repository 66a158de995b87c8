"""
Prescription and clinical history tests

- GET /doctor/prescriptions, /doctor/history
- GET /doctor/patients/{id}/history - gated by the access grant
- GET /patient/prescriptions, /patient/scheduler/today
"""

from datetime import datetime

import pytest

from carepass.models import MedicalRecord
from carepass.services import prescription_service

PRESCRIPTIONS = [
    {"medication": "Artemether", "dosage": "80mg", "frequency": "twice daily"},
    {"medication": "Paracetamol", "dosage": "500mg", "frequency": "3x a day"},
]


@pytest.fixture
def consulted(client, auth, seeded, checkin_payload):
    """Check p1 in at h1 and record a consultation by doctor1; returns the check-in data."""
    async def _run(prescriptions=PRESCRIPTIONS):
        data = (
            await client.post("/api/visits/checkin", json=checkin_payload, headers=auth(seeded.staff))
        ).json()["data"]
        resp = await client.post(
            "/api/consultations/complete",
            json={"visitId": data["id"], "diagnosis": "Malaria", "prescriptions": prescriptions},
            headers=auth(seeded.doctor),
        )
        assert resp.status_code == 201
        return data
    return _run


class TestDoctorPrescriptions:
    """Tests for GET /doctor/prescriptions"""

    async def test_lists_own_prescriptions(self, client, auth, seeded, consulted):
        """Should flatten the consultation's prescriptions with the patient attached"""
        visit = await consulted()

        resp = await client.get("/api/doctor/prescriptions", headers=auth(seeded.doctor))

        assert resp.status_code == 200
        prescriptions = resp.json()["data"]
        assert [p["medication"] for p in prescriptions] == ["Artemether", "Paracetamol"]
        first = prescriptions[0]
        assert first["id"].endswith(":0")
        assert first["status"] == "active"
        assert first["visitId"] == visit["id"]
        assert first["doctorName"] == "Emeka Okafor"
        assert first["patient"] == {"id": "p1", "name": "Ada Obi", "email": "p1@example.com"}

    async def test_status_filter(self, client, auth, seeded, consulted):
        await consulted()

        completed = await client.get("/api/doctor/prescriptions?status=completed", headers=auth(seeded.doctor))
        everything = await client.get("/api/doctor/prescriptions?status=all", headers=auth(seeded.doctor))

        assert completed.json()["data"] == []
        assert len(everything.json()["data"]) == 2

    async def test_only_the_prescriber_sees_them(self, client, auth, seeded, consulted):
        """Should not show another clinician's prescriptions, even at the same hospital"""
        await consulted()

        resp = await client.get("/api/doctor/prescriptions", headers=auth(seeded.admin))

        assert resp.status_code == 200
        assert resp.json()["data"] == []

    async def test_nurse_forbidden(self, client, auth, seeded):
        resp = await client.get("/api/doctor/prescriptions", headers=auth(seeded.nurse))
        assert resp.status_code == 403

    async def test_patient_forbidden(self, client, auth, seeded):
        resp = await client.get("/api/doctor/prescriptions", headers=auth(seeded.patient))
        assert resp.status_code == 403


class TestDoctorHistory:
    """Tests for GET /doctor/history and /doctor/patients/{id}/history"""

    async def test_history_lists_consultations(self, client, auth, seeded, consulted):
        await consulted()

        resp = await client.get("/api/doctor/history?patientId=p1", headers=auth(seeded.doctor))

        assert resp.status_code == 200
        history = resp.json()["data"]
        assert len(history) == 1
        assert history[0]["diagnosis"] == "Malaria"
        assert history[0]["patient"]["name"] == "Ada Obi"
        assert [(p["medication"], p["dosage"]) for p in history[0]["prescriptions"]] == [
            ("Artemether", "80mg"),
            ("Paracetamol", "500mg"),
        ]

    async def test_patient_history_while_granted(self, client, auth, seeded, consulted):
        visit = await consulted()

        resp = await client.get("/api/doctor/patients/p1/history", headers=auth(seeded.doctor))

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["patient"]["email"] == "p1@example.com"
        assert [r["diagnosis"] for r in data["records"]] == ["Malaria"]
        assert len(data["prescriptions"]) == 2
        assert [v["id"] for v in data["visits"]] == [visit["id"]]

    async def test_patient_history_closed_after_check_out(self, client, auth, seeded, consulted):
        """Should refuse the patient-wide history once the visit grant is revoked"""
        visit = await consulted()
        await client.post(f"/api/visits/{visit['id']}/checkout", headers=auth(seeded.staff))

        resp = await client.get("/api/doctor/patients/p1/history", headers=auth(seeded.doctor))

        assert resp.status_code == 403
        assert resp.json()["error"] == "No active access grant for this patient"
        # The clinician's own record of the consultation stays readable
        own = await client.get("/api/doctor/history", headers=auth(seeded.doctor))
        assert len(own.json()["data"]) == 1

    async def test_other_hospital_grant_does_not_count(self, client, auth, seeded, checkin_payload):
        await client.post("/api/visits/checkin", json=checkin_payload, headers=auth(seeded.staff2))

        resp = await client.get("/api/doctor/patients/p1/history", headers=auth(seeded.doctor))

        assert resp.status_code == 403


class TestPatientPrescriptions:
    """Tests for GET /patient/prescriptions"""

    async def test_active_by_default(self, client, auth, seeded, consulted):
        await consulted()

        resp = await client.get("/api/patient/prescriptions", headers=auth(seeded.patient))

        assert resp.status_code == 200
        prescriptions = resp.json()["data"]
        assert [p["medication"] for p in prescriptions] == ["Artemether", "Paracetamol"]
        assert prescriptions[0]["hospital"] == "Lagos General"
        assert prescriptions[0]["doctorName"] == "Emeka Okafor"

    async def test_status_filter(self, client, auth, seeded, consulted):
        await consulted(PRESCRIPTIONS + [{"medication": "Amoxicillin", "status": "completed"}])

        completed = await client.get("/api/patient/prescriptions?status=completed", headers=auth(seeded.patient))
        everything = await client.get("/api/patient/prescriptions?status=all", headers=auth(seeded.patient))

        assert [p["medication"] for p in completed.json()["data"]] == ["Amoxicillin"]
        assert len(everything.json()["data"]) == 3

    async def test_staff_forbidden(self, client, auth, seeded):
        resp = await client.get("/api/patient/prescriptions", headers=auth(seeded.staff))
        assert resp.status_code == 403


class TestSchedulerToday:
    """Tests for GET /patient/scheduler/today"""

    async def test_doses_from_active_prescriptions(self, db, seeded):
        db.add(MedicalRecord(
            patient_id="p1",
            hospital_id="h1",
            doctor_id="doctor1",
            doctor_name="Emeka Okafor",
            diagnosis="Malaria",
            prescriptions=PRESCRIPTIONS + [{"medication": "Amoxicillin", "status": "completed"}],
        ))
        await db.flush()

        today = await prescription_service.scheduler_today(db, seeded.patient, now=datetime(2024, 5, 1, 12, 0))

        assert today["date"] == "2024-05-01"
        assert [(d["time"], d["medicationName"]) for d in today["schedule"]] == [
            ("08:00", "Artemether"),
            ("08:00", "Paracetamol"),
            ("14:00", "Paracetamol"),
            ("20:00", "Artemether"),
            ("20:00", "Paracetamol"),
        ]
        assert [d["status"] for d in today["schedule"]] == ["missed", "missed", "pending", "pending", "pending"]
        assert len(today["upcoming"]) == 3
        assert today["stats"] == {
            "totalMedications": 2,
            "todayDoses": 5,
            "takenToday": 0,
            "missedToday": 2,
            "adherenceRate": 0,
        }

    async def test_empty_day(self, client, auth, seeded):
        resp = await client.get("/api/patient/scheduler/today", headers=auth(seeded.patient))

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["schedule"] == []
        assert data["stats"]["adherenceRate"] == 100

    def test_dose_times(self):
        assert prescription_service.dose_times({"specificTimes": ["21:30", "07:00", "bad"]}) == ["07:00", "21:30"]
        assert prescription_service.dose_times({"frequency": "BID"}) == ["08:00", "20:00"]
        assert prescription_service.dose_times({"frequency": "four times daily"}) == [
            "06:00", "12:00", "18:00", "22:00",
        ]
        assert prescription_service.dose_times({"frequency": "at bedtime"}) == ["21:00"]
        assert prescription_service.dose_times({"frequency": "once daily"}) == ["08:00"]
        assert prescription_service.dose_times({}) == ["08:00"]
