"""API test fixtures: a TestClient around the shared ``service`` fixture."""

from __future__ import annotations

import threading
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from conductor.api.app import create_app
from conductor.execution.actions import ActionRegistry
from conductor.service import ConductorService


@pytest.fixture
def client(service: ConductorService) -> Iterator[TestClient]:
    """Client with the lifespan running (service started)."""
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


@pytest.fixture
def blocking(actions: ActionRegistry) -> Iterator[tuple[threading.Event, threading.Event]]:
    """Register a ``block`` action that waits until released."""
    started = threading.Event()
    release = threading.Event()

    def block(payload):
        started.set()
        release.wait(5)
        return {"status": "success"}

    actions.register("block", block)
    yield started, release
    release.set()
