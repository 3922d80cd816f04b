"""HTTP tests for /auth/* and /api/me (TestClient, in-process doubles)."""

from urllib.parse import parse_qs, urlparse

from bndy_api.auth.notifier import get_email_notifier, get_sms_notifier
from bndy_api.db.models import User
from bndy_api.main import app

APP = "https://app.bndy.test"
PHONE = "+447700900123"


def _request_otp(client, phone: str = PHONE):
    return client.post("/auth/phone/request-otp", json={"phone": phone})


def _sign_in_by_phone(client, sms_notifier, phone: str = PHONE):
    request_token = _request_otp(client, phone).json()["requestToken"]
    return client.post(
        "/auth/phone/verify-otp",
        json={"requestToken": request_token, "code": sms_notifier.last_code()},
    )


class TestPhoneFlow:
    def test_request_otp_never_returns_code(self, test_client, sms_notifier):
        response = _request_otp(test_client)

        assert response.status_code == 202
        data = response.json()
        assert set(data) == {"requestToken", "sentTo", "expiresIn"}
        assert data["expiresIn"] == 300
        assert sms_notifier.last_code() not in response.text
        assert PHONE not in data["sentTo"]
        assert sms_notifier.sent[-1][0] == PHONE

    def test_verify_sets_session_cookie(self, test_client, sms_notifier):
        response = _sign_in_by_phone(test_client, sms_notifier)

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["phone"] == PHONE
        assert user["profileCompleted"] is False

        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith("bndy_session=")
        assert "HttpOnly" in set_cookie
        assert "samesite=lax" in set_cookie.lower()
        assert "Max-Age=2592000" in set_cookie

        me = test_client.get("/api/me")
        assert me.status_code == 200
        assert me.json()["user"]["id"] == user["id"]

    def test_wrong_code_is_problem_json(self, test_client, sms_notifier):
        request_token = _request_otp(test_client).json()["requestToken"]
        wrong = "000000" if sms_notifier.last_code() != "000000" else "111111"

        response = test_client.post("/auth/phone/verify-otp", json={"requestToken": request_token, "code": wrong})

        assert response.status_code == 401
        assert response.headers["content-type"].startswith("application/problem+json")
        body = response.json()
        assert body["error_code"] == "invalid_code"
        assert body["instance"].startswith("urn:bndy:trace:")
        assert "set-cookie" not in response.headers

    def test_code_is_single_use(self, test_client, sms_notifier):
        request_token = _request_otp(test_client).json()["requestToken"]
        body = {"requestToken": request_token, "code": sms_notifier.last_code()}

        assert test_client.post("/auth/phone/verify-otp", json=body).status_code == 200
        replay = test_client.post("/auth/phone/verify-otp", json=body)

        assert replay.status_code == 401
        assert replay.json()["error_code"] == "invalid_code"

    def test_invalid_phone(self, test_client, sms_notifier):
        response = _request_otp(test_client, "not-a-number")

        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_input"
        assert sms_notifier.sent == []

    def test_rate_limited_with_retry_after(self, test_client):
        for _ in range(5):
            assert _request_otp(test_client).status_code == 202

        response = _request_otp(test_client)

        assert response.status_code == 429
        assert response.json()["error_code"] == "rate_limited"
        assert 0 < int(response.headers["Retry-After"]) <= 900

    def test_delivery_failure_is_retryable(self, test_client, notifier_factory):
        app.dependency_overrides[get_sms_notifier] = lambda: notifier_factory(fail=True)

        response = _request_otp(test_client)

        assert response.status_code == 503
        assert response.json()["error_code"] == "delivery_failed"
        assert response.headers["Retry-After"] == "30"

    def test_missing_field_is_validation_problem(self, test_client):
        response = test_client.post("/auth/phone/verify-otp", json={"code": "123456"})

        assert response.status_code == 422
        body = response.json()
        assert body["error_code"] == "invalid_input"
        assert "requestToken" in body["detail"]


class TestMagicLinkFlow:
    def test_request_and_consume(self, test_client, email_notifier, db_session):
        response = test_client.post("/auth/email/request-magic", json={"email": "Alex@Example.com"})

        assert response.status_code == 202
        assert response.json() == {"sent": True, "expiresIn": 300}
        assert email_notifier.sent[-1][0] == "alex@example.com"

        token = email_notifier.last_link_token()
        landing = test_client.get(f"/auth/magic/{token}", follow_redirects=False)

        assert landing.status_code == 303
        assert landing.headers["location"] == f"{APP}/onboarding"
        assert "bndy_session=" in landing.headers["set-cookie"]
        assert db_session.query(User).filter_by(email="alex@example.com").one().display_name == "alex"

        me = test_client.get("/api/me")
        assert me.json()["user"]["email"] == "alex@example.com"

    def test_reused_link_redirects_to_login(self, test_client, email_notifier):
        test_client.post("/auth/email/request-magic", json={"email": "alex@example.com"})
        token = email_notifier.last_link_token()
        test_client.get(f"/auth/magic/{token}", follow_redirects=False)
        test_client.cookies.clear()

        replay = test_client.get(f"/auth/magic/{token}", follow_redirects=False)

        assert replay.status_code == 303
        assert replay.headers["location"] == f"{APP}/login?error=invalid_code"
        assert "set-cookie" not in replay.headers

    def test_unknown_link(self, test_client):
        response = test_client.get("/auth/magic/not-a-real-token", follow_redirects=False)

        assert response.status_code == 303
        assert parse_qs(urlparse(response.headers["location"]).query) == {"error": ["invalid_code"]}

    def test_delivery_failure(self, test_client, notifier_factory):
        app.dependency_overrides[get_email_notifier] = lambda: notifier_factory(fail=True)

        response = test_client.post("/auth/email/request-magic", json={"email": "alex@example.com"})

        assert response.status_code == 503
        assert response.json()["error_code"] == "delivery_failed"


class TestCheckIdentity:
    def test_unknown_email(self, test_client):
        response = test_client.post("/auth/check-identity", json={"email": "nobody@example.com"})

        assert response.status_code == 200
        assert response.json() == {"exists": False, "displayName": None}

    def test_known_phone(self, test_client, sms_notifier):
        _sign_in_by_phone(test_client, sms_notifier)
        test_client.put("/api/me", json={"displayName": "Jo"})

        response = test_client.post("/auth/check-identity", json={"phone": PHONE})

        assert response.json() == {"exists": True, "displayName": "Jo"}

    def test_requires_email_or_phone(self, test_client):
        response = test_client.post("/auth/check-identity", json={})

        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_input"


class TestFederatedFlow:
    def test_initiate_redirects_to_provider(self, test_client):
        response = test_client.get("/auth/google", follow_redirects=False)

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == "accounts.example.test"
        assert parse_qs(location.query)["state"][0]

    def test_unknown_provider_is_404(self, test_client):
        response = test_client.get("/auth/myspace", follow_redirects=False)

        assert response.status_code == 404
        assert response.headers["content-type"].startswith("application/problem+json")

    def test_callback_signs_in(self, test_client, provider):
        start = test_client.get("/auth/google", params={"redirect": "/gigs"}, follow_redirects=False)
        state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]

        response = test_client.get("/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)

        assert response.status_code == 303
        # Provider users start without hometown/instrument, so onboarding comes first
        assert response.headers["location"] == f"{APP}/onboarding"
        assert "bndy_session=" in response.headers["set-cookie"]
        assert test_client.get("/api/me").json()["user"]["email"] == "alex@example.com"

    def test_callback_bad_state_never_calls_provider(self, test_client, provider):
        response = test_client.get(
            "/auth/callback", params={"code": "abc", "state": "forged"}, follow_redirects=False
        )

        assert response.status_code == 303
        assert response.headers["location"] == f"{APP}/login?error=invalid_state"
        assert provider.calls == []

    def test_callback_provider_error(self, test_client, provider):
        start = test_client.get("/auth/google", follow_redirects=False)
        state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]

        response = test_client.get(
            "/auth/callback", params={"error": "access_denied", "state": state}, follow_redirects=False
        )

        assert response.headers["location"] == f"{APP}/login?error=provider_error"
        assert provider.calls == []

        # The state was burned by the failed attempt
        replay = test_client.get("/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
        assert replay.headers["location"] == f"{APP}/login?error=invalid_state"

    def test_callback_token_body_not_an_object(self, test_client, provider, db_session):
        provider.token_body = []
        start = test_client.get("/auth/google", follow_redirects=False)
        state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]

        response = test_client.get("/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == f"{APP}/login?error=provider_error"
        assert "bndy_session=" not in response.headers.get("set-cookie", "")
        assert db_session.query(User).count() == 0


class TestSessionAndProfile:
    def test_me_without_cookie(self, test_client):
        response = test_client.get("/api/me")

        assert response.status_code == 401
        assert response.headers["content-type"].startswith("application/problem+json")
        assert response.json()["error_code"] == "session_invalid"

    def test_me_with_tampered_cookie(self, test_client, signed_in, session_issuer):
        signed_in()
        header, payload, signature = test_client.cookies.get(session_issuer.cookie_name).split(".")
        forged_payload = payload[:-1] + ("A" if payload[-1] != "A" else "B")
        test_client.cookies.set(session_issuer.cookie_name, ".".join([header, forged_payload, signature]))

        response = test_client.get("/api/me")

        assert response.status_code == 401
        assert response.json()["error_code"] == "session_invalid"

    def test_me_has_no_membership_data(self, test_client, signed_in):
        signed_in()

        user = test_client.get("/api/me").json()["user"]

        assert not {"memberships", "artists", "role", "membershipId"} & set(user)

    def test_update_profile_completes_onboarding(self, test_client, signed_in):
        signed_in()

        response = test_client.put(
            "/api/me",
            json={
                "firstName": "Jo",
                "lastName": "Bloggs",
                "displayName": "JB",
                "hometown": "Leeds",
                "instrument": "Bass",
            },
        )

        assert response.status_code == 200
        assert response.json()["user"]["profileCompleted"] is True

        partial = test_client.put("/api/me", json={"bio": "Low end"})
        assert partial.json()["user"]["displayName"] == "JB"
        assert partial.json()["user"]["bio"] == "Low end"

    def test_logout_clears_cookie(self, test_client, sms_notifier):
        _sign_in_by_phone(test_client, sms_notifier)
        assert test_client.get("/api/me").status_code == 200

        response = test_client.post("/auth/logout")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith("bndy_session=")
        assert "Max-Age=0" in set_cookie
        assert test_client.get("/api/me").status_code == 401

    def test_logout_without_session(self, test_client):
        assert test_client.post("/auth/logout").status_code == 200

    def test_delete_account(self, test_client, signed_in, db_session):
        user = signed_in()

        response = test_client.delete("/api/me")

        assert response.status_code == 200
        assert db_session.get(User, user.id) is None
        assert test_client.get("/api/me").status_code == 401


class TestPlumbing:
    def test_request_id_is_echoed(self, test_client):
        response = test_client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_readyz_reports_redis_down(self, test_client, monkeypatch):
        from bndy_api.routers import health

        monkeypatch.setattr(health, "check_database", lambda: "up")
        monkeypatch.setattr(health, "check_redis", lambda: "down: connection refused")

        response = test_client.get("/readyz")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert response.json()["services"]["redis"].startswith("down")

    def test_readyz_ready(self, test_client, monkeypatch):
        from bndy_api.routers import health

        monkeypatch.setattr(health, "check_database", lambda: "up")
        monkeypatch.setattr(health, "check_redis", lambda: "up")
        monkeypatch.setattr(health, "check_providers", lambda: "up")

        response = test_client.get("/readyz")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_unknown_route_is_problem_json(self, test_client):
        response = test_client.get("/nope")

        assert response.status_code == 404
        assert response.json()["title"] == "Not Found"
