"""
Interest lifecycle: buyers submit interests on a crop listing, and the
owner moves them from ``pending`` to ``accepted`` or ``rejected``.

Accepting reserves stock: the crop's quantity is decremented by the
interest's quantity in the same atomic store update that flips the status.
"""

from __future__ import annotations

import logging
from typing import Optional

from agrobridge.crops import is_valid_id, to_number
from agrobridge.db import MarketStore, SortSpec, find_interest, new_id, utcnow
from agrobridge.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
INTEREST_STATUSES = (PENDING, ACCEPTED, REJECTED)

INTEREST_SORTS: dict[str, SortSpec] = {
    "quantity-desc": [("quantity", -1)],
    "quantity-asc": [("quantity", 1)],
    "status": [("status", 1), ("createdAt", -1)],
}
DEFAULT_INTEREST_SORT: SortSpec = [("createdAt", -1)]


def interest_sort(sort: Optional[str]) -> SortSpec:
    return INTEREST_SORTS.get(sort or "", DEFAULT_INTEREST_SORT)


def submit_interest(store: MarketStore, payload: dict) -> tuple[dict, dict]:
    """
    Record a buyer's interest on a crop. Returns ``(crop, interest)`` where
    ``crop`` already contains the new interest.
    """
    crop_id = payload.get("cropId")
    user_email = payload.get("userEmail")
    user_name = payload.get("userName")
    quantity = payload.get("quantity")

    if not crop_id or not user_email or not user_name or not quantity:
        raise ValidationError("Missing required interest fields")

    if not is_valid_id(crop_id):
        raise ValidationError("Invalid crop id")

    numeric_quantity = to_number(quantity)
    if numeric_quantity is None or numeric_quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    crop = store.get_crop(crop_id)
    if not crop:
        raise NotFoundError("Crop not found")

    owner = crop.get("owner") or {}
    if owner.get("ownerEmail") == user_email:
        raise ValidationError("Owners cannot send interests")

    if any(i.get("userEmail") == user_email for i in crop.get("interests") or []):
        raise ConflictError("You have already sent interest for this crop")

    now = utcnow()
    interest = {
        "_id": new_id(),
        "cropId": crop_id,
        "cropName": crop.get("name"),
        "ownerEmail": owner.get("ownerEmail"),
        "ownerName": owner.get("ownerName"),
        "userEmail": user_email,
        "userName": user_name,
        "userPhoto": payload.get("userPhoto") or None,
        "quantity": numeric_quantity,
        "message": payload.get("message") or "",
        "totalPrice": numeric_quantity * crop["pricePerUnit"],
        "status": PENDING,
        "createdAt": now,
        "updatedAt": now,
    }

    updated = store.push_interest(crop_id, interest)
    if updated is None:
        # The crop vanished or a concurrent submission from this email won.
        if store.get_crop(crop_id) is None:
            raise NotFoundError("Crop not found")
        raise ConflictError("You have already sent interest for this crop")

    logger.info(
        "Interest %s submitted on crop %s for quantity %s",
        interest["_id"],
        crop_id,
        numeric_quantity,
    )
    return updated, interest


def list_interests(
    store: MarketStore, email: Optional[str], sort: Optional[str] = None
) -> list[dict]:
    if not email:
        raise ValidationError("Email query parameter is required")
    return store.find_interests(email, interest_sort(sort))


def _check_acceptable(crop: dict, interest: dict) -> None:
    if interest.get("status") != PENDING:
        raise ValidationError("Only pending interests can be accepted")
    if crop.get("quantity", 0) < interest.get("quantity", 0):
        raise ValidationError("Insufficient crop quantity")


def transition_interest_status(
    store: MarketStore, interest_id: str, payload: dict
) -> dict:
    """Move an interest to ``status`` and return the updated crop."""
    crop_id = payload.get("cropId")
    status = payload.get("status")

    if not crop_id or not status:
        raise ValidationError("cropId and status are required")

    if not is_valid_id(crop_id) or not is_valid_id(interest_id):
        raise ValidationError("Invalid id provided")

    crop = store.get_crop(crop_id)
    if not crop:
        raise NotFoundError("Crop not found")

    interest = find_interest(crop, interest_id)
    if interest is None:
        raise NotFoundError("Interest not found")

    if status not in INTEREST_STATUSES:
        raise ValidationError("Invalid status")

    reserve_quantity = None
    if status == ACCEPTED:
        _check_acceptable(crop, interest)
        reserve_quantity = interest["quantity"]

    updated = store.set_interest_status(
        crop_id, interest_id, status, reserve_quantity=reserve_quantity
    )
    if updated is None:
        # Something changed between the read and the guarded write; re-read
        # to report what.
        current = store.get_crop(crop_id)
        if not current:
            raise NotFoundError("Crop not found")
        current_interest = find_interest(current, interest_id)
        if current_interest is None:
            raise NotFoundError("Interest not found")
        if status == ACCEPTED:
            _check_acceptable(current, current_interest)
        raise InternalError("Interest update failed")

    logger.info(
        "Interest %s on crop %s moved to %s", interest_id, crop_id, status
    )
    return updated
