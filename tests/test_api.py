"""
API endpoint tests covering the staff -> HOD -> dispatch flow
"""
from datetime import timedelta

from app.models.user import UserRole

from conftest import NOW, auth_headers_for, make_user

API = "/api/v1"

MARKSHEET_BODY = {
    "student_details": {
        "name": "Kavya R",
        "reg_number": "21CS042",
        "department": "CSE",
        "year": "III",
        "section": "A",
        "parent_phone_number": "9876543210",
    },
    "examination_name": "Internal Assessment 1",
    "examination_date": "2026-09-15",
    "semester": "5",
    "subjects": [
        {"subject_name": "Compiler Design", "marks": 78},
        {"subject_name": "Computer Networks", "marks": "AB"},
    ],
}


class TestAuth:

    def test_register_and_login(self, client):
        response = client.post(f"{API}/auth/register", json={
            "email": "Meena@msec.edu.in",
            "name": "Meena S",
            "password": "s3cret-pass",
            "role": "staff",
            "department": "CSE",
            "year": "II",
            "section": "B",
        })
        assert response.status_code == 201
        assert response.json()["email"] == "meena@msec.edu.in"

        response = client.post(f"{API}/auth/login", json={"email": "meena@msec.edu.in", "password": "s3cret-pass"})
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["role"] == "staff"

        me = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.json()["name"] == "Meena S"

    def test_register_rejects_other_domains(self, client):
        response = client.post(f"{API}/auth/register", json={
            "email": "someone@gmail.com",
            "name": "Someone",
            "password": "s3cret-pass",
            "role": "hod",
            "department": "CSE",
        })

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_staff_registration_needs_class(self, client):
        response = client.post(f"{API}/auth/register", json={
            "email": "nila@msec.edu.in",
            "name": "Nila",
            "password": "s3cret-pass",
            "role": "staff",
            "department": "CSE",
        })

        assert response.status_code == 422

    def test_wrong_password(self, client, staff_user):
        response = client.post(f"{API}/auth/login", json={"email": staff_user.email, "password": "nope"})

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "AUTH_FAILED"

    def test_missing_token(self, client):
        response = client.get(f"{API}/marksheets")

        assert response.status_code == 401

    def test_update_signature(self, client, hod_user):
        response = client.put(
            f"{API}/auth/me/signature",
            json={"e_signature": "data:image/png;base64,AAAA"},
            headers=auth_headers_for(hod_user),
        )

        assert response.status_code == 200
        assert response.json()["has_signature"] is True


class TestUserManagement:

    def test_update_profile(self, client, staff_user):
        response = client.put(
            f"{API}/auth/me",
            json={"name": "Priya K", "phone_number": "9123456780"},
            headers=auth_headers_for(staff_user),
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Priya K"
        assert response.json()["phone_number"] == "9123456780"

    def test_change_password(self, client, staff_user):
        headers = auth_headers_for(staff_user)

        wrong = client.post(
            f"{API}/auth/change-password",
            json={"current_password": "not-it", "new_password": "n3w-password"},
            headers=headers,
        )
        assert wrong.status_code == 401

        changed = client.post(
            f"{API}/auth/change-password",
            json={"current_password": "password123", "new_password": "n3w-password"},
            headers=headers,
        )
        assert changed.status_code == 200

        old = client.post(f"{API}/auth/login", json={"email": staff_user.email, "password": "password123"})
        assert old.status_code == 401
        new = client.post(f"{API}/auth/login", json={"email": staff_user.email, "password": "n3w-password"})
        assert new.status_code == 200

    def test_short_new_password(self, client, staff_user):
        response = client.post(
            f"{API}/auth/change-password",
            json={"current_password": "password123", "new_password": "short"},
            headers=auth_headers_for(staff_user),
        )

        assert response.status_code == 422

    def test_hod_lists_department_users(self, client, db_session, staff_user, other_staff, hod_user):
        make_user(db_session, UserRole.STAFF, "ravi.mech@msec.edu.in", department="MECH")
        headers = auth_headers_for(hod_user)

        everyone = client.get(f"{API}/auth/users", headers=headers).json()
        assert {u["email"] for u in everyone} == {staff_user.email, other_staff.email, hod_user.email}

        staff_only = client.get(f"{API}/auth/users?role=staff", headers=headers).json()
        assert {u["role"] for u in staff_only} == {"staff"}
        assert all("password_hash" not in u for u in staff_only)

    def test_staff_cannot_list_users(self, client, staff_user):
        response = client.get(f"{API}/auth/users", headers=auth_headers_for(staff_user))

        assert response.status_code == 403

    def test_delete_user_without_records(self, client, other_staff, hod_user):
        headers = auth_headers_for(hod_user)

        response = client.delete(f"{API}/auth/users/{other_staff.id}", headers=headers)

        assert response.status_code == 200
        assert response.json()["message"] == "User deleted successfully"
        remaining = client.get(f"{API}/auth/users", headers=headers).json()
        assert other_staff.email not in {u["email"] for u in remaining}

    def test_user_with_marksheets_is_deactivated(self, client, make_marksheet, staff_user, hod_user):
        make_marksheet()

        response = client.delete(f"{API}/auth/users/{staff_user.id}", headers=auth_headers_for(hod_user))

        assert response.status_code == 200
        assert "deactivated" in response.json()["message"]
        login = client.post(f"{API}/auth/login", json={"email": staff_user.email, "password": "password123"})
        assert login.status_code == 401

    def test_delete_outside_department_or_self(self, client, db_session, hod_user):
        mech_staff = make_user(db_session, UserRole.STAFF, "ravi.mech@msec.edu.in", department="MECH")
        headers = auth_headers_for(hod_user)

        assert client.delete(f"{API}/auth/users/{mech_staff.id}", headers=headers).status_code == 403
        assert client.delete(f"{API}/auth/users/{hod_user.id}", headers=headers).status_code == 403
        assert client.delete(f"{API}/auth/users/9999", headers=headers).status_code == 404


class TestMarksheetFlow:

    def test_full_flow(self, client, staff_user, hod_user, transport):
        staff = auth_headers_for(staff_user)
        hod = auth_headers_for(hod_user)

        created = client.post(f"{API}/marksheets", json=MARKSHEET_BODY, headers=staff)
        assert created.status_code == 201
        marksheet = created.json()
        assert marksheet["overall_result"] == "Absent"
        marksheet_id = marksheet["id"]

        verified = client.post(f"{API}/marksheets/{marksheet_id}/verify", headers=staff)
        assert verified.json()["status"] == "verified_by_staff"

        requested = client.post(
            f"{API}/marksheets/{marksheet_id}/request-dispatch",
            json={"expected_version": verified.json()["version"]},
            headers=staff,
        )
        assert requested.json()["status"] == "dispatch_requested"

        approved = client.post(
            f"{API}/marksheets/{marksheet_id}/hod-response",
            json={"response": "approved", "comments": "OK"},
            headers=hod,
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved_by_hod"

        sent = client.post(f"{API}/dispatch/marksheets/{marksheet_id}/send", headers=staff)
        assert sent.status_code == 200
        assert sent.json()["success"] is True
        assert len(transport.sent) == 1

        final = client.get(f"{API}/marksheets/{marksheet_id}", headers=hod).json()
        assert final["status"] == "dispatched"
        assert final["dispatch_status"]["dispatched"] is True
        assert final["dispatch_request"]["status"] == "dispatched"

        inbox = client.get(f"{API}/notifications", headers=hod).json()
        assert "dispatch_requested" in {n["notification_type"] for n in inbox["items"]}

    def test_hod_cannot_create(self, client, hod_user):
        response = client.post(f"{API}/marksheets", json=MARKSHEET_BODY, headers=auth_headers_for(hod_user))

        assert response.status_code == 403

    def test_staff_cannot_respond(self, client, make_marksheet, staff_user):
        marksheet = make_marksheet(stage="requested")

        response = client.post(
            f"{API}/marksheets/{marksheet.id}/hod-response",
            json={"response": "approved"},
            headers=auth_headers_for(staff_user),
        )

        assert response.status_code == 403

    def test_reschedule_without_date(self, client, make_marksheet, hod_user):
        marksheet = make_marksheet(stage="requested")

        response = client.post(
            f"{API}/marksheets/{marksheet.id}/hod-response",
            json={"response": "rescheduled"},
            headers=auth_headers_for(hod_user),
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_illegal_transition_is_precondition_failed(self, client, make_marksheet, staff_user):
        marksheet = make_marksheet()

        response = client.post(
            f"{API}/marksheets/{marksheet.id}/request-dispatch",
            headers=auth_headers_for(staff_user),
        )

        assert response.status_code == 412
        error = response.json()["error"]
        assert error["code"] == "PRECONDITION_FAILED"
        assert error["details"]["current_status"] == "draft"

    def test_stale_version_is_conflict(self, client, make_marksheet, staff_user):
        marksheet = make_marksheet(stage="verified")

        response = client.post(
            f"{API}/marksheets/{marksheet.id}/request-dispatch",
            json={"expected_version": 1},
            headers=auth_headers_for(staff_user),
        )

        assert response.status_code == 409

    def test_list_scoping_and_status_filter(self, client, make_marksheet, staff_user, other_staff, hod_user):
        make_marksheet()
        make_marksheet(stage="verified")
        make_marksheet(staff=other_staff)

        own = client.get(f"{API}/marksheets", headers=auth_headers_for(staff_user)).json()
        assert own["total"] == 2

        department = client.get(f"{API}/marksheets?status=draft", headers=auth_headers_for(hod_user)).json()
        assert department["total"] == 2
        assert {m["status"] for m in department["items"]} == {"draft"}

    def test_unknown_status_filter(self, client, staff_user):
        response = client.get(f"{API}/marksheets?status=archived", headers=auth_headers_for(staff_user))

        assert response.status_code == 422

    def test_empty_subject_list_is_rejected(self, client, make_marksheet, staff_user):
        marksheet = make_marksheet(stage="verified")
        headers = auth_headers_for(staff_user)

        response = client.put(f"{API}/marksheets/{marksheet.id}", json={"subjects": []}, headers=headers)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        stored = client.get(f"{API}/marksheets/{marksheet.id}", headers=headers).json()
        assert stored["status"] == "verified_by_staff"
        assert len(stored["subjects"]) == 2

    def test_other_staff_cannot_read(self, client, make_marksheet, other_staff):
        marksheet = make_marksheet()

        response = client.get(f"{API}/marksheets/{marksheet.id}", headers=auth_headers_for(other_staff))

        assert response.status_code == 403

    def test_export(self, client, make_marksheet, hod_user):
        make_marksheet(stage="approved")

        response = client.get(f"{API}/marksheets/export", headers=auth_headers_for(hod_user))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        assert response.content[:2] == b"PK"


class TestDispatchEndpoints:

    def test_failed_send_is_recorded(self, client, make_marksheet, staff_user, transport):
        marksheet = make_marksheet(stage="approved")
        transport.failing.add("9876543210")
        headers = auth_headers_for(staff_user)

        response = client.post(f"{API}/dispatch/marksheets/{marksheet.id}/send", headers=headers)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "DISPATCH_FAILED"
        stored = client.get(f"{API}/marksheets/{marksheet.id}", headers=headers).json()
        assert stored["dispatch_status"]["whatsapp_status"] == "failed"
        assert stored["status"] == "approved_by_hod"

    def test_bulk(self, client, make_marksheet, staff_user, transport):
        ids = [make_marksheet(stage="approved", phone=f"900000000{i}").id for i in range(3)]
        transport.failing.add("9000000001")

        response = client.post(
            f"{API}/dispatch/bulk",
            json={"marksheet_ids": ids},
            headers=auth_headers_for(staff_user),
        )

        data = response.json()
        assert response.status_code == 200
        assert (data["total"], data["successful"], data["failed"]) == (3, 2, 1)

    def test_bulk_refuses_marksheets_of_another_department(self, client, db_session, make_marksheet, transport):
        marksheet = make_marksheet(stage="approved")
        mech_staff = make_user(db_session, UserRole.STAFF, "ravi.mech@msec.edu.in", department="MECH")

        response = client.post(
            f"{API}/dispatch/bulk",
            json={"marksheet_ids": [marksheet.id]},
            headers=auth_headers_for(mech_staff),
        )

        data = response.json()
        assert response.status_code == 200
        assert (data["total"], data["successful"], data["failed"]) == (1, 0, 1)
        assert "another staff member" in data["errors"][0]
        assert transport.sent == []

    def test_bulk_skips_only_the_foreign_marksheet(self, client, make_marksheet, staff_user, other_staff, transport):
        own = make_marksheet(stage="approved", phone="9000000001")
        foreign = make_marksheet(stage="approved", phone="9000000002", staff=other_staff)

        response = client.post(
            f"{API}/dispatch/bulk",
            json={"marksheet_ids": [own.id, foreign.id]},
            headers=auth_headers_for(staff_user),
        )

        data = response.json()
        assert (data["successful"], data["failed"]) == (1, 1)
        assert [sent["phone_number"] for sent in transport.sent] == ["9000000001"]

    def test_status_lookup_is_scoped(self, client, db_session, make_marksheet, staff_user):
        marksheet = make_marksheet(stage="approved")
        mech_staff = make_user(db_session, UserRole.STAFF, "ravi.mech@msec.edu.in", department="MECH")
        mech_hod = make_user(db_session, UserRole.HOD, "hod.mech@msec.edu.in", department="MECH")

        for user in (mech_staff, mech_hod):
            response = client.get(f"{API}/dispatch/status?ids={marksheet.id}", headers=auth_headers_for(user))
            assert response.status_code == 200
            assert response.json() == []

        response = client.get(
            f"{API}/dispatch/status?ids={marksheet.id}",
            headers=auth_headers_for(staff_user),
        )

        assert response.json()[0]["whatsapp_status"] == "pending"

    def test_transport_health(self, client, staff_user):
        response = client.get(f"{API}/dispatch/health", headers=auth_headers_for(staff_user))

        assert response.json()["configured"] is True

    def test_public_document(self, client, make_marksheet, marksheet_service):
        marksheet = make_marksheet(stage="approved")
        token = marksheet_service.get_marksheet(marksheet.id).document_token

        response = client.get(f"{API}/documents/marksheets/{token}.pdf")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")

    def test_document_by_id_is_not_served(self, client, make_marksheet):
        marksheet = make_marksheet(stage="approved")

        response = client.get(f"{API}/documents/marksheets/{marksheet.id}.pdf")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_draft_document_is_not_served(self, client, make_marksheet, marksheet_service):
        marksheet = make_marksheet()
        token = marksheet_service.get_marksheet(marksheet.id).document_token

        response = client.get(f"{API}/documents/marksheets/{token}.pdf")

        assert response.status_code == 404


class TestScheduledDispatchEndpoints:

    def test_run_all(self, client, make_marksheet, hod_user, transport):
        make_marksheet(stage="rescheduled", scheduled_at=NOW - timedelta(days=365))

        response = client.post(f"{API}/scheduled-dispatch/run-all", headers=auth_headers_for(hod_user))

        data = response.json()
        assert response.status_code == 200
        assert data["upcoming"]["procedure"] == "check_upcoming_dispatches"
        assert data["due"]["succeeded"] == 1
        assert len(transport.sent) == 1

    def test_staff_cannot_trigger(self, client, staff_user):
        response = client.post(f"{API}/scheduled-dispatch/process-due", headers=auth_headers_for(staff_user))

        assert response.status_code == 403

    def test_status_without_scheduler(self, client, staff_user):
        response = client.get(f"{API}/scheduled-dispatch/status", headers=auth_headers_for(staff_user))

        assert response.json() == {"running": False, "jobs": []}


class TestNotificationEndpoints:

    def test_subscription_lifecycle(self, client, staff_user):
        headers = auth_headers_for(staff_user)
        subscription = {"endpoint": "https://push.example/xyz", "keys": {"p256dh": "key", "auth": "secret"}}

        assert client.post(f"{API}/notifications/push/subscribe", json=subscription, headers=headers).status_code == 201
        response = client.post(f"{API}/notifications/push/deactivate", json={}, headers=headers)

        assert response.json()["message"] == "Deactivated 1 subscriptions"

    def test_vapid_key_unconfigured(self, client):
        response = client.get(f"{API}/notifications/push/vapid-public-key")

        assert response.status_code == 503

    def test_stats(self, client, make_marksheet, hod_user):
        make_marksheet(stage="requested")

        stats = client.get(f"{API}/notifications/stats", headers=auth_headers_for(hod_user)).json()

        assert stats["unread"] >= 1


def test_health(client):
    response = client.get("/health")

    assert response.json()["status"] == "healthy"
