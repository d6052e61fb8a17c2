from __future__ import annotations

import inspect

from fastapi.routing import APIRoute

from app.main import app


def test_engine_backed_routes_run_in_the_threadpool():
    routes = [
        route
        for route in app.routes
        if isinstance(route, APIRoute) and (route.path.startswith("/api") or route.path == "/health/ready")
    ]

    assert routes
    blocking = [route.path for route in routes if inspect.iscoroutinefunction(route.endpoint)]
    assert blocking == []
