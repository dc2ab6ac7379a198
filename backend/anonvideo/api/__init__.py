"""API routes for the anonymization and delivery service."""

from anonvideo.api import delivery_routes, routes, websocket

__all__ = ["delivery_routes", "routes", "websocket"]
