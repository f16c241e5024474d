# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the application factory and lifespan."""

from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.domains.discussion.notifier import EventBusNotifier
from src.infrastructure.events import get_event_bus, reset_event_bus
from src.infrastructure.realtime import ConnectionManager


@pytest.fixture
def lifespan_patches() -> Generator[dict[str, AsyncMock], None, None]:
    """Keep the lifespan away from PostgreSQL and the root logger."""
    reset_event_bus()
    with (
        patch("src.api.app.init_db", new=AsyncMock()) as init_db,
        patch("src.api.app.close_db", new=AsyncMock()) as close_db,
        patch("src.api.app.setup_logging"),
    ):
        yield {"init_db": init_db, "close_db": close_db}
    reset_event_bus()


class TestCreateApp:
    """Tests for create_app."""

    def test_routes_registered(self) -> None:
        """Discussion, WebSocket and health routes are mounted."""
        paths = {route.path for route in create_app().routes}

        assert "/api/v1/discussions" in paths
        assert "/api/v1/discussions/{discussion_id}/posts" in paths
        assert "/api/v1/discussions/ws" in paths
        assert "/health" in paths

    def test_lifespan_wires_realtime(self, lifespan_patches: dict[str, AsyncMock]) -> None:
        """Startup attaches the notifier and fan-out; shutdown detaches them."""
        app = create_app()

        with TestClient(app) as client:
            assert isinstance(app.state.notifier, EventBusNotifier)
            assert isinstance(app.state.connection_manager, ConnectionManager)
            assert get_event_bus().get_stats()["total_handlers"] == 1

            response = client.get("/health/live")
            assert response.status_code == 200
            assert "X-Request-ID" in response.headers

        lifespan_patches["init_db"].assert_awaited_once()
        lifespan_patches["close_db"].assert_awaited_once()
        assert app.state.notifier is None
        assert app.state.connection_manager is None
        assert get_event_bus().get_stats()["total_handlers"] == 0

    def test_protected_route_requires_token(self, lifespan_patches: dict[str, AsyncMock]) -> None:
        """Requests without a bearer token are refused by the API."""
        with TestClient(create_app()) as client:
            response = client.get("/api/v1/discussions")

        assert response.status_code == 401
