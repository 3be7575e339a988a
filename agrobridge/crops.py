"""
Crop listing operations: payload validation, filter construction and the
create/read/update/delete flows over a ``MarketStore``.
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional

from bson import ObjectId

from agrobridge.db import CropFilter, MarketStore, utcnow
from agrobridge.errors import NotFoundError, ValidationError

CROP_EDITABLE_FIELDS = (
    "name",
    "type",
    "pricePerUnit",
    "unit",
    "quantity",
    "description",
    "location",
    "image",
)
NUMERIC_FIELDS = ("pricePerUnit", "quantity")

LATEST_DEFAULT_LIMIT = 6
LATEST_MAX_LIMIT = 20

_PREFIXED_INT = re.compile(r"0[xob][0-9a-f]+", re.IGNORECASE)
_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")


def to_number(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings; None for anything non-finite.

    Strings follow JSON-style number text plus unsigned ``0x``/``0o``/``0b``
    literals. Digit-group underscores are not accepted.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if not text or "_" in text or not text.isascii():
            return None
        if _PREFIXED_INT.fullmatch(text):
            try:
                return int(text, 0)
            except ValueError:
                return None
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                return None
    else:
        return None
    if isinstance(number, float) and not math.isfinite(number):
        return None
    return number


def is_valid_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def require_crop_id(crop_id: str) -> str:
    if not is_valid_id(crop_id):
        raise ValidationError("Invalid crop id")
    return crop_id


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def build_new_crop(payload: dict) -> dict:
    """Validate a create payload and return the document to store."""
    owner = payload.get("owner") or {}
    if (
        any(_is_missing(payload.get(field)) for field in CROP_EDITABLE_FIELDS)
        or not owner.get("ownerEmail")
        or not owner.get("ownerName")
    ):
        raise ValidationError("Missing required crop fields")

    price = to_number(payload["pricePerUnit"])
    if price is None or price <= 0:
        raise ValidationError("Price per unit must be a positive number")

    quantity = to_number(payload["quantity"])
    if quantity is None or quantity < 0:
        raise ValidationError("Quantity must be zero or more")

    now = utcnow()
    return {
        "name": payload["name"],
        "type": payload["type"],
        "pricePerUnit": price,
        "unit": payload["unit"],
        "quantity": quantity,
        "description": payload["description"],
        "location": payload["location"],
        "image": payload["image"],
        "owner": dict(owner),
        "interests": [],
        "createdAt": now,
        "updatedAt": now,
    }


def build_crop_updates(payload: dict) -> dict:
    """Pick the editable fields out of ``payload`` and validate the numbers."""
    updates = {
        field: payload[field] for field in CROP_EDITABLE_FIELDS if field in payload
    }
    if not updates:
        raise ValidationError("No valid fields provided for update")

    for field in NUMERIC_FIELDS:
        if field not in updates:
            continue
        number = to_number(updates[field])
        in_range = number is not None and (
            number > 0 if field == "pricePerUnit" else number >= 0
        )
        if not in_range:
            raise ValidationError("Invalid numeric value in the payload")
        updates[field] = number
    return updates


def parse_latest_limit(raw: Any) -> int:
    """Read the leading integer of ``raw`` ("3abc" is 3, "2.5" is 2)."""
    if raw is None or isinstance(raw, bool):
        return LATEST_DEFAULT_LIMIT
    match = _LEADING_INT.match(str(raw))
    if not match:
        return LATEST_DEFAULT_LIMIT
    limit = int(match.group(1))
    if limit == 0:
        return LATEST_DEFAULT_LIMIT
    return max(1, min(limit, LATEST_MAX_LIMIT))


def create_crop(store: MarketStore, payload: dict) -> dict:
    return store.insert_crop(build_new_crop(payload))


def get_crop(store: MarketStore, crop_id: str) -> dict:
    crop = store.get_crop(require_crop_id(crop_id))
    if not crop:
        raise NotFoundError("Crop not found")
    return crop


def list_crops(
    store: MarketStore,
    search: Optional[str] = None,
    owner_email: Optional[str] = None,
) -> list[dict]:
    return store.find_crops(
        CropFilter(search=search or None, owner_email=owner_email or None)
    )


def latest_crops(store: MarketStore, limit: Any = None) -> list[dict]:
    return store.find_crops(CropFilter(), limit=parse_latest_limit(limit))


def update_crop(store: MarketStore, crop_id: str, payload: dict) -> dict:
    require_crop_id(crop_id)
    updates = build_crop_updates(payload)
    updated = store.update_crop(crop_id, updates)
    if not updated:
        raise NotFoundError("Crop not found")
    return updated


def update_crop_basic(store: MarketStore, crop_id: str, payload: dict) -> dict:
    """Update by id without ownership checks; the id need not be an ObjectId."""
    updates = build_crop_updates(payload)
    updated = store.update_crop(crop_id, updates)
    if not updated:
        raise NotFoundError("Crop not found")
    return updated


def list_owner_crops(
    store: MarketStore, owner_email: Optional[str], search: Optional[str] = None
) -> list[dict]:
    if not owner_email:
        raise ValidationError("ownerEmail query parameter is required")
    return store.find_crops(
        CropFilter(
            search=search or None,
            owner_email=owner_email,
            owner_email_ignore_case=True,
        )
    )


def update_owner_crop(store: MarketStore, crop_id: str, payload: dict) -> dict:
    owner_email = payload.get("ownerEmail")
    if not owner_email:
        raise ValidationError("ownerEmail is required")
    updates = build_crop_updates(payload)
    updated = store.update_crop(crop_id, updates, owner_email=owner_email)
    if not updated:
        raise NotFoundError("Crop not found")
    return updated


def delete_crop(store: MarketStore, crop_id: str) -> dict:
    if not store.delete_crop(require_crop_id(crop_id)):
        raise NotFoundError("Crop not found")
    return {"acknowledged": True}
