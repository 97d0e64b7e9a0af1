from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from habitloop.api.deps import get_engine
from habitloop.domain.models import Goal
from habitloop.errors import NetworkFailure
from habitloop.main import app
from habitloop.observability import client as client_module


class _DummyTrace:
    def __init__(self, name=None, metadata=None, **kwargs):
        self.name = name
        self.metadata = metadata or {}
        self.error_info = None
        self.ended = False

    def update(self, metadata=None, error_info=None, **kwargs):
        if metadata:
            self.metadata = metadata
        if error_info:
            self.error_info = error_info

    def end(self):
        self.ended = True


class _DummyOpik:
    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs
        self.traces = []

    def trace(self, **kwargs):
        trace = _DummyTrace(name=kwargs.get("name"), metadata=kwargs.get("metadata"))
        self.traces.append(trace)
        return trace


@pytest.fixture()
def opik_enabled(monkeypatch):
    fake_settings = SimpleNamespace(opik_enabled=True, opik_api_key="test-key", opik_project="habitloop-test")
    monkeypatch.setattr(client_module, "settings", fake_settings)
    monkeypatch.setattr(client_module, "Opik", _DummyOpik)
    client_module.reset_opik_client()
    yield client_module.init_opik()
    client_module.reset_opik_client()


def test_requests_are_traced_with_request_id(opik_enabled, engine) -> None:
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        with TestClient(app) as test_client:
            assert test_client.get("/health", headers={"X-Request-Id": "req-1"}).status_code == 200
            test_client.put("/plan/goals", json={"goals": [{"title": "Read"}]})
            assert test_client.post("/plan/generate").status_code == 200
    finally:
        app.dependency_overrides.clear()

    names = [trace.name for trace in opik_enabled.traces]
    assert "http.health_check" in names
    assert "lifecycle.generate_plan" in names
    assert "metric:lifecycle.plan_generated" in names
    health = next(trace for trace in opik_enabled.traces if trace.name == "http.health_check")
    assert health.metadata["request_id"] == "req-1"
    assert all(trace.ended for trace in opik_enabled.traces)


def test_coach_errors_are_attached_to_trace(opik_enabled, engine, coach) -> None:
    engine.set_goals([Goal(title="Read")])
    coach.fail_with = NetworkFailure("offline")

    with pytest.raises(NetworkFailure):
        engine.generate_plan()

    failed = next(trace for trace in opik_enabled.traces if trace.name == "lifecycle.generate_plan")
    assert failed.error_info["exception_type"] == "NetworkFailure"


def test_missing_key_disables_tracing(monkeypatch) -> None:
    monkeypatch.setattr(
        client_module,
        "settings",
        SimpleNamespace(opik_enabled=True, opik_api_key=None, opik_project="habitloop-test"),
    )
    client_module.reset_opik_client()
    try:
        assert client_module.init_opik() is None
    finally:
        client_module.reset_opik_client()
