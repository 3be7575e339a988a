"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Request

from agrobridge.config import Settings
from agrobridge.db import InMemoryMarketStore, MarketStore, SqlMarketStore
from agrobridge.mongo import MongoMarketStore

MONGO_SCHEMES = ("mongodb://", "mongodb+srv://")


def build_store(settings: Settings) -> MarketStore:
    """
    Pick a store implementation from settings. The store is not connected
    yet; the app lifespan calls ``connect()``.
    """
    url = settings.database_url
    if settings.use_in_memory_backends or not url:
        return InMemoryMarketStore()
    if url.startswith(MONGO_SCHEMES):
        return MongoMarketStore(url, settings.database_name)
    return SqlMarketStore(url)


def get_store(request: Request) -> MarketStore:
    return request.app.state.store
