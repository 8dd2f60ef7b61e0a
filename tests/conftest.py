"""Shared fixtures: in-memory database, temp storage and scripted metric sources."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SOURCE_RETRY_BACKOFF", "0")

import asyncio  # noqa: E402
from datetime import date  # noqa: E402

import pytest  # noqa: E402

from app import models  # noqa: E402,F401
from app.core.credentials import CredentialResolver  # noqa: E402
from app.core.snapshots import SnapshotService  # noqa: E402
from app.core.storage import LocalContentStorage  # noqa: E402
from app.database import Base, SessionLocal, engine  # noqa: E402
from app.models.client import Client  # noqa: E402
from app.models.data_source import SourceType  # noqa: E402
from app.providers.base import ConnectedAccount, Credential  # noqa: E402
from app.providers.google_ads import GoogleAdsAdapter  # noqa: E402
from app.providers.google_analytics import GoogleAnalyticsAdapter  # noqa: E402
from app.providers.search_console import SearchConsoleAdapter  # noqa: E402

ACCOUNT_REFS = {
    SourceType.GOOGLE_ANALYTICS: ("123456789", "Acme GA4"),
    SourceType.GOOGLE_ADS: ("123-456-7890", "Acme Ads"),
    SourceType.SEARCH_CONSOLE: ("https://acme.example/", None),
}


class ScriptedMixin:
    """Replaces fetch_metrics with canned responses keyed by range start."""

    def __init__(self, http_client, sources):
        super().__init__(http_client, retry_backoff=0)
        self.sources = sources

    async def fetch_metrics(self, account, credential, date_range):
        self.sources.calls.append((self.source_type, date_range))
        script = self.sources.scripts[self.source_type]
        if "delay" in script:
            await asyncio.sleep(script["delay"])
        if "error" in script:
            raise script["error"]
        return script["responses"][date_range.start]


class ScriptedGa4Adapter(ScriptedMixin, GoogleAnalyticsAdapter):
    pass


class ScriptedAdsAdapter(ScriptedMixin, GoogleAdsAdapter):
    pass


class ScriptedSearchConsoleAdapter(ScriptedMixin, SearchConsoleAdapter):
    pass


SCRIPTED_ADAPTERS = {
    SourceType.GOOGLE_ANALYTICS: ScriptedGa4Adapter,
    SourceType.GOOGLE_ADS: ScriptedAdsAdapter,
    SourceType.SEARCH_CONSOLE: ScriptedSearchConsoleAdapter,
}


class ScriptedSources(CredentialResolver):
    """Resolver plus adapter factory driven by per-source scripts."""

    def __init__(self):
        self.scripts = {}
        self.calls = []
        self.resolved = []

    def set(self, source_type, responses=None, error=None, delay=None):
        script = {"responses": responses or {}}
        if error is not None:
            script["error"] = error
        if delay is not None:
            script["delay"] = delay
        self.scripts[source_type] = script

    def list_active_connections(self, client_id):
        self.resolved.append(client_id)
        connections = []
        for index, source_type in enumerate(self.scripts, start=1):
            account_ref, account_name = ACCOUNT_REFS[source_type]
            connections.append(
                ConnectedAccount(
                    data_source_id=index,
                    source_type=source_type,
                    account_ref=account_ref,
                    account_name=account_name,
                    config={},
                )
            )
        return connections

    async def get_valid_credential(self, account, adapter):
        return Credential(access_token="test-token")

    def factory(self, source_type, http_client):
        return SCRIPTED_ADAPTERS[source_type](http_client, self)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(tmp_path):
    return LocalContentStorage(str(tmp_path / "storage"))


@pytest.fixture
def client_row(db):
    client = Client(name="Acme Dental", primary_domain="acme.example")
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


@pytest.fixture
def sources():
    return ScriptedSources()


@pytest.fixture
def service(db, storage, sources):
    return SnapshotService(
        db,
        storage=storage,
        resolver=sources,
        adapter_factory=sources.factory,
        today=date(2025, 4, 15),
    )
