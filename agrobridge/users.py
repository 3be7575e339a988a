"""
Participant profiles keyed by email, refreshed on every login.
"""

from __future__ import annotations

from agrobridge.db import MarketStore
from agrobridge.errors import NotFoundError, ValidationError


def upsert_user(store: MarketStore, payload: dict) -> dict:
    email = payload.get("email")
    name = payload.get("name")
    if not email or not name:
        raise ValidationError("Name and email are required")
    return store.upsert_user(email, name, payload.get("photo"))


def get_user(store: MarketStore, email: str) -> dict:
    user = store.get_user(email)
    if not user:
        raise NotFoundError("User not found")
    return user


def update_user(store: MarketStore, email: str, payload: dict) -> dict:
    """``photo`` may be cleared by sending an explicit null."""
    fields = {}
    if payload.get("name"):
        fields["name"] = payload["name"]
    if "photo" in payload:
        fields["photo"] = payload["photo"]
    if not fields:
        raise ValidationError("No update fields provided")

    updated = store.update_user(email, fields)
    if not updated:
        raise NotFoundError("User not found")
    return updated
