"""
MongoDB-backed market store.

Crops embed their interests, so every crop/interest mutation is a single
``find_one_and_update`` keyed by the crop id.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient, ReturnDocument

from agrobridge.db import SEARCH_FIELDS, CropFilter, SortSpec, utcnow

logger = logging.getLogger(__name__)


def _object_id_or_raw(value: str):
    return ObjectId(value) if ObjectId.is_valid(value) else value


def id_filter(doc_id: str) -> dict:
    """Match an id stored either as an ObjectId or as a plain string."""
    if ObjectId.is_valid(doc_id):
        return {"$or": [{"_id": ObjectId(doc_id)}, {"_id": doc_id}]}
    return {"_id": doc_id}


def owner_email_filter(email: str) -> dict:
    return {"owner.ownerEmail": {"$regex": f"^{re.escape(email)}$", "$options": "i"}}


def to_mongo_filter(crop_filter: CropFilter) -> dict:
    query: dict = {}
    if crop_filter.search:
        pattern = re.escape(crop_filter.search)
        query["$or"] = [
            {field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS
        ]
    if crop_filter.owner_email is not None:
        if crop_filter.owner_email_ignore_case:
            query.update(owner_email_filter(crop_filter.owner_email))
        else:
            query["owner.ownerEmail"] = crop_filter.owner_email
    return query


def _public(doc: Optional[dict]) -> Optional[dict]:
    """Render ObjectIds as strings for the API layer."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["_id"] = str(out["_id"])
    if "interests" in out:
        out["interests"] = [
            {**interest, "_id": str(interest["_id"])} if "_id" in interest else interest
            for interest in out["interests"] or []
        ]
    return out


class MongoMarketStore:
    """Market store over the ``crops`` and ``users`` collections."""

    def __init__(self, url: str, database_name: str):
        if not url:
            raise ValueError("DATABASE_URL is required for MongoMarketStore")
        self.url = url
        self.database_name = database_name
        self.client: Optional[MongoClient] = None
        self.crops = None
        self.users = None

    def connect(self) -> None:
        self.client = MongoClient(self.url, tz_aware=True)
        self.bind(self.client[self.database_name])
        logger.info("Connected to MongoDB and ensured indexes are created")

    def bind(self, database) -> None:
        self.crops = database["crops"]
        self.users = database["users"]
        self.crops.create_index(
            [
                ("name", ASCENDING),
                ("type", ASCENDING),
                ("location", ASCENDING),
                ("description", ASCENDING),
            ],
            name="crop_field_index",
        )
        self.users.create_index([("email", ASCENDING)], unique=True)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None

    def ping(self) -> None:
        self.client.admin.command("ping")

    def insert_crop(self, crop: dict) -> dict:
        doc = dict(crop)
        doc["_id"] = ObjectId(crop["_id"]) if crop.get("_id") else ObjectId()
        self.crops.insert_one(doc)
        return _public(doc)

    def get_crop(self, crop_id: str) -> Optional[dict]:
        return _public(self.crops.find_one(id_filter(crop_id)))

    def find_crops(
        self, crop_filter: CropFilter, limit: Optional[int] = None
    ) -> list[dict]:
        cursor = self.crops.find(to_mongo_filter(crop_filter)).sort("createdAt", -1)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [_public(doc) for doc in cursor]

    def update_crop(
        self,
        crop_id: str,
        updates: dict,
        *,
        owner_email: Optional[str] = None,
    ) -> Optional[dict]:
        query = id_filter(crop_id)
        if owner_email is not None:
            query.update(owner_email_filter(owner_email))
        updated = self.crops.find_one_and_update(
            query,
            {"$set": {**updates, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return _public(updated)

    def delete_crop(self, crop_id: str) -> bool:
        result = self.crops.delete_one(id_filter(crop_id))
        return bool(result.deleted_count)

    def push_interest(self, crop_id: str, interest: dict) -> Optional[dict]:
        doc = dict(interest)
        doc["_id"] = _object_id_or_raw(interest["_id"])
        query = id_filter(crop_id)
        query["interests.userEmail"] = {"$ne": interest["userEmail"]}
        updated = self.crops.find_one_and_update(
            query,
            {"$push": {"interests": doc}, "$set": {"updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return _public(updated)

    def set_interest_status(
        self,
        crop_id: str,
        interest_id: str,
        status: str,
        *,
        reserve_quantity: Optional[float] = None,
    ) -> Optional[dict]:
        now = utcnow()
        element = {"_id": _object_id_or_raw(interest_id)}
        query = id_filter(crop_id)
        update: dict = {
            "$set": {
                "interests.$.status": status,
                "interests.$.updatedAt": now,
                "updatedAt": now,
            }
        }
        if reserve_quantity is not None:
            element["status"] = "pending"
            query["quantity"] = {"$gte": reserve_quantity}
            update["$inc"] = {"quantity": -reserve_quantity}
        query["interests"] = {"$elemMatch": element}
        updated = self.crops.find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )
        return _public(updated)

    def find_interests(self, user_email: str, sort: SortSpec) -> list[dict]:
        pipeline = [
            {"$match": {"interests.userEmail": user_email}},
            {"$unwind": "$interests"},
            {"$match": {"interests.userEmail": user_email}},
            {
                "$addFields": {
                    "interests.cropName": "$name",
                    "interests.cropImage": "$image",
                    "interests.pricePerUnit": "$pricePerUnit",
                    "interests.unit": "$unit",
                    "interests.location": "$location",
                }
            },
            {"$replaceRoot": {"newRoot": "$interests"}},
            {"$sort": dict(sort)},
        ]
        return [_public(doc) for doc in self.crops.aggregate(pipeline)]

    def upsert_user(self, email: str, name: str, photo: Optional[str]) -> dict:
        now = utcnow()
        saved = self.users.find_one_and_update(
            {"email": email},
            {
                "$setOnInsert": {"email": email, "createdAt": now},
                "$set": {"name": name, "photo": photo, "updatedAt": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        if saved is None:
            saved = self.users.find_one({"email": email})
        return _public(saved)

    def get_user(self, email: str) -> Optional[dict]:
        return _public(self.users.find_one({"email": email}))

    def update_user(self, email: str, fields: dict) -> Optional[dict]:
        updated = self.users.find_one_and_update(
            {"email": email},
            {"$set": {**fields, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return _public(updated)
