"""
tests/integration/test_invitations.py — Invitation redemption and delivery.

Endpoints covered:
  POST /invitations/redeem            → 200
  GET  /groups/:id/invitations        → 200
  POST /groups/:id/invitations/send   → 200

Error cases:
  INVALID_CREDENTIALS          401 — unknown (email, credential) pair
  INVITATION_ALREADY_REDEEMED  409 — bound to another identity
  ALREADY_IN_GROUP             409 — caller already holds a slot
  FORBIDDEN                    403 — non-host reads or sends invitations,
                                     or the host redeems one of them
  EMAIL_NOT_CONFIGURED         400 — no mail provider
"""

from __future__ import annotations

from offrecord.app.services import invite_mail_service

from .conftest import (
    anonymous,
    auth_headers,
    credential_for,
    join_group,
    make_group,
    redeem,
    register,
)


# ═══════════════════════════════════════════════════════════════════════════
# POST /invitations/redeem
# ═══════════════════════════════════════════════════════════════════════════

class TestRedeem:

    def test_redeem_binds_slot(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])
        guest = anonymous(client)

        resp = redeem(client, guest["access_token"], "ana@test.com", credential_for(group, "ana@test.com"))
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["group_id"] == group["id"]
        assert data["email"] == "ana@test.com"
        assert data["redeemed"] is True
        assert "credential" not in data

    def test_email_is_case_insensitive(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])
        guest = anonymous(client)

        resp = redeem(client, guest["access_token"], "  ANA@test.com", credential_for(group, "ana@test.com"))
        assert resp.status_code == 200

    def test_same_identity_redeems_again(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])
        guest = anonymous(client)
        credential = credential_for(group, "ana@test.com")

        first = redeem(client, guest["access_token"], "ana@test.com", credential)
        second = redeem(client, guest["access_token"], "ana@test.com", credential)
        assert second.status_code == 200
        assert second.get_json()["data"]["id"] == first.get_json()["data"]["id"]

    def test_other_identity_is_rejected(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])
        credential = credential_for(group, "ana@test.com")

        redeem(client, anonymous(client)["access_token"], "ana@test.com", credential)
        resp = redeem(client, anonymous(client)["access_token"], "ana@test.com", credential)
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "INVITATION_ALREADY_REDEEMED"

    def test_second_slot_in_same_group_is_rejected(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])
        token = join_group(client, group, "ana@test.com")

        resp = redeem(client, token, "ben@test.com", credential_for(group, "ben@test.com"))
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "ALREADY_IN_GROUP"

    def test_host_cannot_redeem_own_group(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])

        resp = redeem(client, host["access_token"], "ana@test.com", credential_for(group, "ana@test.com"))
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

        listing = client.get(
            f"/api/v1/groups/{group['id']}/invitations",
            headers=auth_headers(host["access_token"]),
        ).get_json()["data"]
        assert all(not inv["redeemed"] for inv in listing)

        # The slot stays open for the real member.
        assert join_group(client, group, "ana@test.com")

    def test_host_of_one_group_can_join_another(self, client):
        host = register(client)
        other_host = register(client, name="olga")
        group = make_group(client, other_host["access_token"])

        resp = redeem(client, host["access_token"], "ana@test.com", credential_for(group, "ana@test.com"))
        assert resp.status_code == 200

    def test_wrong_credential_returns_401(self, client):
        host = register(client)
        make_group(client, host["access_token"])
        guest = anonymous(client)

        resp = redeem(client, guest["access_token"], "ana@test.com", "000000")
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_missing_credential_returns_400(self, client):
        guest = anonymous(client)
        resp = client.post(
            "/api/v1/invitations/redeem",
            json={"email": "ana@test.com"},
            headers=auth_headers(guest["access_token"]),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"
        assert resp.get_json()["error"]["field"] == "credential"

    def test_requires_auth(self, client):
        resp = client.post("/api/v1/invitations/redeem", json={"email": "a@test.com", "credential": "ABCDEF"})
        assert resp.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
# GET /groups/:id/invitations
# ═══════════════════════════════════════════════════════════════════════════

class TestListInvitations:

    def test_host_sees_credentials_and_redemption_state(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])
        join_group(client, group, "ben@test.com")

        resp = client.get(
            f"/api/v1/groups/{group['id']}/invitations",
            headers=auth_headers(host["access_token"]),
        )
        assert resp.status_code == 200
        rows = {inv["email"]: inv for inv in resp.get_json()["data"]}
        assert set(rows) == {"ana@test.com", "ben@test.com", "cleo@test.com"}
        assert rows["ben@test.com"]["redeemed"] is True
        assert rows["ana@test.com"]["redeemed"] is False
        assert all(len(inv["credential"]) == 6 for inv in rows.values())

    def test_member_cannot_list(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])
        token = join_group(client, group, "ana@test.com")

        resp = client.get(f"/api/v1/groups/{group['id']}/invitations", headers=auth_headers(token))
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# POST /groups/:id/invitations/send
# ═══════════════════════════════════════════════════════════════════════════

class _FailingSender:
    name = "fake"
    concurrency = 2
    from_address = "noreply@test.com"

    def __init__(self, failing: set[str]):
        self.failing = failing
        self.sent: list = []

    def send(self, message):
        if message.to in self.failing:
            raise invite_mail_service.InviteDeliveryError("mailbox unavailable")
        self.sent.append(message)
        return {"to": message.to, "ok": True, "id": None}


class TestSendInvitations:

    def test_log_backend_sends_one_per_invitation(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])

        resp = client.post(
            f"/api/v1/groups/{group['id']}/invitations/send",
            json={},
            headers=auth_headers(host["access_token"]),
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["data"]["provider"] == "log"
        assert body["data"]["sent"] == 3
        assert body["data"]["failed"] == 0
        assert body["warnings"] == []

    def test_subset_of_emails(self, client):
        host = register(client)
        group = make_group(client, host["access_token"])

        resp = client.post(
            f"/api/v1/groups/{group['id']}/invitations/send",
            json={"emails": ["ben@test.com"]},
            headers=auth_headers(host["access_token"]),
        )
        assert resp.get_json()["data"]["sent"] == 1

    def test_failures_are_reported_as_warning(self, client, monkeypatch):
        host = register(client)
        group = make_group(client, host["access_token"])
        sender = _FailingSender({"cleo@test.com"})
        monkeypatch.setattr(invite_mail_service, "build_sender_from_config", lambda config: sender)

        resp = client.post(
            f"/api/v1/groups/{group['id']}/invitations/send",
            json={"app_url": "https://offrecord.example"},
            headers=auth_headers(host["access_token"]),
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["data"]["sent"] == 2
        assert body["data"]["failures"] == [{"to": "cleo@test.com", "error": "mailbox unavailable"}]
        assert body["warnings"][0]["code"] == "INVITE_DELIVERY_FAILED"

        ana = next(m for m in sender.sent if m.to == "ana@test.com")
        assert ana.subject == "Host invited you to OffRecord: Retro"
        assert credential_for(group, "ana@test.com") in ana.text
        assert "https://offrecord.example" in ana.html

    def test_unconfigured_email_returns_400(self, client, app, monkeypatch):
        host = register(client)
        group = make_group(client, host["access_token"])
        monkeypatch.setitem(app.config, "MAIL_BACKEND", "")

        resp = client.post(
            f"/api/v1/groups/{group['id']}/invitations/send",
            json={},
            headers=auth_headers(host["access_token"]),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "EMAIL_NOT_CONFIGURED"

    def test_member_cannot_send(self, client, app, monkeypatch):
        host = register(client)
        group = make_group(client, host["access_token"])
        token = join_group(client, group, "ana@test.com")
        monkeypatch.setitem(app.config, "MAIL_BACKEND", "")

        resp = client.post(
            f"/api/v1/groups/{group['id']}/invitations/send",
            json={},
            headers=auth_headers(token),
        )
        assert resp.status_code == 403
