"""Insightboard application package."""

from __future__ import annotations

from .config import Settings
from .errors import ServiceError
from .gateway import AIGateway, GatewayConfig, analyze
from .models import AnalysisRequest, InsightResult
from .request_queue import InsightRequestQueue

__all__ = [
    "AIGateway",
    "AnalysisRequest",
    "GatewayConfig",
    "InsightRequestQueue",
    "InsightResult",
    "ServiceError",
    "Settings",
    "analyze",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'insightboard' has no attribute {name}")
