"""Pytest fixtures for haven middleware tests. Puts the service modules on sys.path."""

import sys
from pathlib import Path

import pytest
from starlette.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from app import create_app  # noqa: E402
from git_proxy import GitSyncProxy  # noqa: E402
from kvs import MemoryStore  # noqa: E402


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture()
def git_proxy() -> GitSyncProxy:
    return GitSyncProxy(
        upstream_url="https://git.example.test",
        account="HavenBot",
        token="gh-token",
    )


@pytest.fixture()
def client(store: MemoryStore, git_proxy: GitSyncProxy) -> TestClient:
    app = create_app(store=store, git_proxy=git_proxy)
    return TestClient(app, raise_server_exceptions=False)
