"""
API tests for the auth and connector routes.
"""

import asyncio
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config
from connectors.dependencies import get_registry
from connectors.routes import create_state, verify_state
from connectors.store import ConnectorStore
from database.helpers import to_uuid
from database.models import User
from database.session import get_db_session
from main import create_app
from tests.conftest import CALDAV_URL, GOOGLE_TOKEN_URL, create_schema, make_engine


@pytest.fixture
def api(tmp_path, registry, fake_provider, monkeypatch):
    monkeypatch.setattr(config, "bcrypt_rounds", 4)
    monkeypatch.setattr(config, "admin_email", "admin@vinobook.fr")
    monkeypatch.setattr(config, "client_url", "https://app.vinobook.fr")

    engine = make_engine(tmp_path / "api.db")
    asyncio.run(create_schema(engine))
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def session_override():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_db_session] = session_override
    app.dependency_overrides[get_registry] = lambda: registry

    yield SimpleNamespace(client=TestClient(app), factory=factory, fake=fake_provider)
    asyncio.run(engine.dispose())


def _register(api, email="cave@domaine.fr"):
    resp = api.client.post(
        "/api/v1/auth/register",
        json={"username": "Domaine", "email": email, "password": "grand-cru-1855"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    return body["user_id"], {"Authorization": f"Bearer {body['token']}"}


def _connect_orange(api, headers):
    api.fake.add("PROPFIND", CALDAV_URL, status_code=207, text="<multistatus/>")
    return api.client.post(
        "/api/v1/connectors/orange/connect",
        json={"username": "cave@orange.fr", "password": "secret"},
        headers=headers,
    )


class TestAuthRoutes:
    def test_register_login_me(self, api):
        user_id, headers = _register(api, "Cave@Domaine.fr")

        login = api.client.post(
            "/api/v1/auth/login", json={"email": "cave@domaine.fr", "password": "grand-cru-1855"}
        )
        assert login.status_code == 200
        assert login.json()["user_id"] == user_id

        me = api.client.get("/api/v1/auth/me", headers=headers)
        assert me.json()["email"] == "cave@domaine.fr"
        assert me.json()["role"] == "user"

    def test_duplicate_email(self, api):
        _register(api)
        resp = api.client.post(
            "/api/v1/auth/register",
            json={"username": "Other", "email": "cave@domaine.fr", "password": "another-pass"},
        )
        assert resp.status_code == 409

    def test_wrong_password(self, api):
        _register(api)
        resp = api.client.post("/api/v1/auth/login", json={"email": "cave@domaine.fr", "password": "nope"})
        assert resp.status_code == 401

    def test_admin_email_gets_admin_role(self, api):
        resp = api.client.post(
            "/api/v1/auth/register",
            json={"username": "Ops", "email": "admin@vinobook.fr", "password": "admin-pass-1"},
        )
        assert resp.json()["role"] == "admin"

    def test_request_id_header(self, api):
        resp = api.client.get("/api/v1/connectors/providers", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"


class TestProviderListing:
    def test_providers_without_auth(self, api):
        resp = api.client.get("/api/v1/connectors/providers")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert {p["provider"] for p in body["data"]} == {"google", "microsoft", "orange"}

    def test_connections_require_auth(self, api):
        assert api.client.get("/api/v1/connectors/connections").status_code in (401, 403)


class TestOrangeConnect:
    def test_connect_and_list(self, api):
        _, headers = _register(api)
        resp = _connect_orange(api, headers)
        assert resp.status_code == 201, resp.text
        data = resp.json()["data"]
        assert data["provider"] == "orange"
        assert data["account_label"] == "cave@orange.fr"
        assert data["expires_at"] is None
        assert "access_token" not in data

        provider = api.client.get("/api/v1/connectors/connected-provider", headers=headers)
        assert provider.json()["data"] == {"provider": "orange"}

        connections = api.client.get("/api/v1/connectors/connections", headers=headers)
        assert len(connections.json()["data"]) == 1

    def test_bad_credentials(self, api):
        _, headers = _register(api)
        api.fake.add("PROPFIND", CALDAV_URL, status_code=401)
        resp = api.client.post(
            "/api/v1/connectors/orange/connect",
            json={"username": "cave@orange.fr", "password": "wrong"},
            headers=headers,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid Orange email credentials")

    def test_server_unreachable(self, api):
        _, headers = _register(api)
        api.fake.fail("PROPFIND", CALDAV_URL)
        resp = api.client.post(
            "/api/v1/connectors/orange/connect",
            json={"username": "cave@orange.fr", "password": "secret"},
            headers=headers,
        )
        assert resp.status_code == 400
        assert "Unable to connect" in resp.json()["detail"]

    def test_validation_error(self, api):
        _, headers = _register(api)
        resp = api.client.post(
            "/api/v1/connectors/orange/connect",
            json={"username": "ab", "password": ""},
            headers=headers,
        )
        assert resp.status_code == 422
        assert api.fake.requests == []


class TestOAuthFlow:
    def test_auth_url(self, api):
        user_id, headers = _register(api)
        resp = api.client.get("/api/v1/connectors/google/auth-url", headers=headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert parse_qs(urlparse(data["auth_url"]).query)["state"] == [data["state"]]
        assert verify_state(data["state"], "google") == user_id

    def test_no_oauth_flow_for_orange(self, api):
        _, headers = _register(api)
        assert api.client.get("/api/v1/connectors/orange/auth-url", headers=headers).status_code == 404

    def test_unknown_provider(self, api):
        _, headers = _register(api)
        assert api.client.get("/api/v1/connectors/yahoo/status", headers=headers).status_code == 404

    def test_callback_stores_connection(self, api):
        user_id, headers = _register(api)
        api.fake.add(
            "POST", GOOGLE_TOKEN_URL,
            json={"access_token": "A1", "refresh_token": "R1", "expires_in": 3599},
        )
        api.fake.add("GET", "https://www.googleapis.com/oauth2/v2/userinfo", json={"id": "g1", "email": "cave@gmail.com"})

        resp = api.client.get(
            "/api/v1/connectors/google/callback",
            params={"code": "abc", "state": create_state(user_id, "google")},
            follow_redirects=False,
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://app.vinobook.fr/dashboard/settings?google_connected=true"

        status = api.client.get("/api/v1/connectors/google/status", headers=headers).json()
        assert status["data"]["account_label"] == "cave@gmail.com"
        assert status["data"]["is_valid"] is True

    def test_callback_rejects_state_for_other_provider(self, api):
        user_id, _ = _register(api)
        resp = api.client.get(
            "/api/v1/connectors/google/callback",
            params={"code": "abc", "state": create_state(user_id, "microsoft")},
            follow_redirects=False,
        )
        assert resp.status_code == 302
        assert "google_error=" in resp.headers["location"]
        assert api.fake.requests == []

    def test_callback_with_provider_error(self, api):
        resp = api.client.get(
            "/api/v1/connectors/google/callback",
            params={"error": "access_denied", "error_description": "User declined"},
            follow_redirects=False,
        )
        assert resp.headers["location"].endswith("google_error=User%20declined")

    def test_failed_code_exchange(self, api):
        user_id, _ = _register(api)
        api.fake.add("POST", GOOGLE_TOKEN_URL, status_code=400, json={"error": "invalid_grant"})
        resp = api.client.get(
            "/api/v1/connectors/google/callback",
            params={"code": "abc", "state": create_state(user_id, "google")},
            follow_redirects=False,
        )
        assert "google_error=" in resp.headers["location"]


class TestDisconnectAndAdminReset:
    def test_disconnect(self, api):
        _, headers = _register(api)
        _connect_orange(api, headers)

        resp = api.client.delete("/api/v1/connectors/orange/disconnect", headers=headers)
        assert resp.status_code == 200

        provider = api.client.get("/api/v1/connectors/connected-provider", headers=headers)
        assert provider.json()["data"] == {"provider": "none"}

        # credentials are kept; the connector is only switched off
        status = api.client.get("/api/v1/connectors/orange/status", headers=headers).json()
        assert status["data"]["is_active"] is False

    def test_disconnect_missing(self, api):
        _, headers = _register(api)
        assert api.client.delete("/api/v1/connectors/google/disconnect", headers=headers).status_code == 404

    def test_admin_reset(self, api):
        user_id, headers = _register(api)
        _connect_orange(api, headers)

        async def invalidate():
            async with api.factory() as session:
                store = ConnectorStore(session)
                await store.mark_invalid(await store.get(user_id, "orange"), "rejected")
                await session.commit()

        asyncio.run(invalidate())

        url = f"/api/v1/connectors/admin/{user_id}/orange/reset"
        assert api.client.post(url, headers=headers).status_code == 403

        _, admin_headers = _register(api, "admin@vinobook.fr")
        assert api.client.post(url, headers=admin_headers).status_code == 200

        status = api.client.get("/api/v1/connectors/orange/status", headers=headers).json()
        assert status["data"]["is_valid"] is True
        assert status["data"]["error_message"] is None

    def test_admin_reset_unknown_connector(self, api):
        _, admin_headers = _register(api, "admin@vinobook.fr")
        user_id, _ = _register(api)
        url = f"/api/v1/connectors/admin/{user_id}/google/reset"
        assert api.client.post(url, headers=admin_headers).status_code == 404

    def test_admin_check_uses_stored_role(self, api):
        admin_id, admin_headers = _register(api, "admin@vinobook.fr")
        user_id, _ = _register(api)
        url = f"/api/v1/connectors/admin/{user_id}/google/reset"

        async def demote():
            async with api.factory() as session:
                await session.execute(update(User).where(User.user_id == to_uuid(admin_id)).values(role="user"))
                await session.commit()

        asyncio.run(demote())

        # the token issued before the demotion no longer grants admin access
        assert api.client.post(url, headers=admin_headers).status_code == 403
