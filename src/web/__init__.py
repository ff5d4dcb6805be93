# === MODULE PURPOSE ===
# HTTP interface for the trading simulator.
# Provides a FastAPI-based JSON API.

from src.web.app import create_app

__all__ = ["create_app"]
