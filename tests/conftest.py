"""
Shared fixtures: a throwaway SQLite database, scripted provider HTTP
traffic and a clean connector registry per test.
"""

import inspect
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.settings import ProviderConfig
from connectors.google import GoogleCalendarConnector
from connectors.microsoft import MicrosoftCalendarConnector
from connectors.orange import OrangeCalendarConnector
from connectors.registry import ConnectorRegistry
from connectors.schemas import TokenBundle
from connectors.store import ConnectorStore
from database.models import Base, User

GOOGLE_TOKEN_URL = "https://oauth2.test/token"
GOOGLE_API = "https://calendar.test/v3"
GRAPH_API = "https://graph.test/v1.0"
MS_TOKEN_URL = "https://login.test/common/oauth2/v2.0/token"
CALDAV_URL = "https://caldav.test"

EVENT = {
    "title": "Dégustation au Château Margaux",
    "description": "Visite des chais, 4 personnes",
    "location": "33460 Margaux",
    "start": "2026-05-01T10:00:00",
    "end": "2026-05-01T12:00:00",
    "time_zone": "Europe/Paris",
    "attendees": [{"email": "guest@example.com", "display_name": "Guest"}],
}


class FakeProvider:
    """Scripted HTTP responses, matched on method and URL prefix."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._routes: List[Tuple[str, str, Callable[[httpx.Request], Any]]] = []

    def add(
        self,
        method: str,
        url: str,
        status_code: int = 200,
        json: Any = None,
        text: str = "",
        handler: Optional[Callable[[httpx.Request], Any]] = None,
    ) -> None:
        if handler is None:
            def handler(request: httpx.Request) -> httpx.Response:
                if json is not None:
                    return httpx.Response(status_code, json=json)
                return httpx.Response(status_code, text=text)
        # latest registration wins
        self._routes.insert(0, (method, url, handler))

    def fail(self, method: str, url: str) -> None:
        """Requests to ``url`` die before any response arrives."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)
        self.add(method, url, handler=handler)

    def calls(self, method: Optional[str] = None) -> List[httpx.Request]:
        return [r for r in self.requests if method is None or r.method == method]

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, url, handler in self._routes:
            if request.method == method and str(request.url).startswith(url):
                result = handler(request)
                if inspect.isawaitable(result):
                    result = await result
                return result
        return httpx.Response(599, text=f"unscripted {request.method} {request.url}")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._dispatch)


def google_config(**overrides: Any) -> ProviderConfig:
    values = dict(
        client_id="google-client",
        client_secret="google-secret",
        token_endpoint=GOOGLE_TOKEN_URL,
        api_base_url=GOOGLE_API,
        auth_endpoint="https://accounts.test/auth",
        redirect_uri="http://localhost:8000/api/v1/connectors/google/callback",
    )
    values.update(overrides)
    return ProviderConfig(**values)


def microsoft_config(**overrides: Any) -> ProviderConfig:
    values = dict(
        client_id="ms-client",
        client_secret="ms-secret",
        token_endpoint=MS_TOKEN_URL,
        api_base_url=GRAPH_API,
        auth_endpoint="https://login.test/common/oauth2/v2.0/authorize",
        redirect_uri="http://localhost:8000/api/v1/connectors/microsoft/callback",
    )
    values.update(overrides)
    return ProviderConfig(**values)


def orange_config(**overrides: Any) -> ProviderConfig:
    values = dict(api_base_url=CALDAV_URL, calendar_name="default")
    values.update(overrides)
    return ProviderConfig(**values)


def build_registry(fake: "FakeProvider", **configs: ProviderConfig) -> ConnectorRegistry:
    registry = ConnectorRegistry()
    transport = fake.transport
    registry.register(GoogleCalendarConnector(configs.get("google", google_config()), transport=transport))
    registry.register(MicrosoftCalendarConnector(configs.get("microsoft", microsoft_config()), transport=transport))
    registry.register(OrangeCalendarConnector(configs.get("orange", orange_config()), transport=transport))
    return registry


def make_engine(path):
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def add_user(factory, email: str = "owner@domaine.test", role: str = "user") -> str:
    user_id = uuid.uuid4()
    async with factory() as session:
        session.add(User(user_id=user_id, email=email, display_name="Owner", role=role))
        await session.commit()
    return str(user_id)


async def add_connector(
    factory,
    user_id: str,
    provider: str = "google",
    *,
    access_token: str = "A1",
    refresh_token: Optional[str] = "R1",
    expires_in: Optional[int] = 3600,
    token_type: str = "Bearer",
) -> None:
    async with factory() as session:
        await ConnectorStore(session).upsert(
            user_id,
            provider,
            TokenBundle(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=expires_in,
                token_type=token_type,
            ),
        )
        await session.commit()


async def load_connector(factory, user_id: str, provider: str = "google"):
    async with factory() as session:
        return await ConnectorStore(session).get(user_id, provider)


async def expire_connector(factory, user_id: str, provider: str = "google", ago: int = 60) -> None:
    async with factory() as session:
        conn = await ConnectorStore(session).get(user_id, provider)
        conn.expires_at = datetime.now(timezone.utc) - timedelta(seconds=ago)
        await session.commit()


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def clean_registry():
    ConnectorRegistry.reset()
    yield
    ConnectorRegistry.reset()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(fake_provider) -> ConnectorRegistry:
    return build_registry(fake_provider)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = make_engine(tmp_path / "connectors.db")
    await create_schema(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def user_id(session_factory) -> str:
    return await add_user(session_factory)
