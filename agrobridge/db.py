"""
Document store abstraction for crops and users, with an in-memory
implementation for development/tests and a SQLAlchemy-backed one.

Documents cross this boundary as plain dicts using the wire field names
(``_id``, ``pricePerUnit``, ``createdAt``...). Ids are ObjectId hex strings
and timestamps are timezone-aware datetimes.
"""

from __future__ import annotations

import copy
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Protocol, Sequence

from bson import ObjectId
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    String,
    create_engine,
    delete,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("name", "type", "location", "description")

# (field, direction) pairs, 1 ascending and -1 descending
SortSpec = Sequence[tuple[str, int]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


@dataclass(frozen=True)
class CropFilter:
    """Describes which crops a listing should return."""

    search: Optional[str] = None
    owner_email: Optional[str] = None
    owner_email_ignore_case: bool = False

    def matches(self, crop: dict) -> bool:
        if self.owner_email is not None:
            owner = (crop.get("owner") or {}).get("ownerEmail")
            if not isinstance(owner, str):
                return False
            if self.owner_email_ignore_case:
                if owner.lower() != self.owner_email.lower():
                    return False
            elif owner != self.owner_email:
                return False
        if self.search:
            needle = self.search.lower()
            return any(
                needle in str(crop.get(field) or "").lower()
                for field in SEARCH_FIELDS
            )
        return True


def sort_documents(docs: Iterable[dict], sort: SortSpec) -> list[dict]:
    """Multi-key sort honoring per-key direction, like a Mongo ``$sort``."""
    result = list(docs)
    for field, direction in reversed(list(sort)):
        present = [d for d in result if d.get(field) is not None]
        missing = [d for d in result if d.get(field) is None]
        present.sort(key=lambda d: d[field], reverse=direction < 0)
        # Mongo orders missing values lowest
        result = present + missing if direction < 0 else missing + present
    return result


def denormalize_interest(crop: dict, interest: dict) -> dict:
    """Interest view carrying the parent crop's current listing details."""
    item = dict(interest)
    item["cropName"] = crop.get("name")
    item["cropImage"] = crop.get("image")
    item["pricePerUnit"] = crop.get("pricePerUnit")
    item["unit"] = crop.get("unit")
    item["location"] = crop.get("location")
    return item


def find_interest(crop: dict, interest_id: str) -> Optional[dict]:
    for interest in crop.get("interests") or []:
        if str(interest.get("_id")) == interest_id:
            return interest
    return None


def apply_interest_status(
    crop: dict,
    interest_id: str,
    status: str,
    reserve_quantity: Optional[float],
    now: datetime,
) -> bool:
    """
    Mutate ``crop`` in place for a status transition. Returns False, leaving
    the crop untouched, when the interest is missing or a reservation guard
    fails.
    """
    interest = find_interest(crop, interest_id)
    if interest is None:
        return False
    if reserve_quantity is not None:
        if interest.get("status") != "pending":
            return False
        if crop.get("quantity", 0) < reserve_quantity:
            return False
        crop["quantity"] = crop.get("quantity", 0) - reserve_quantity
    interest["status"] = status
    interest["updatedAt"] = now
    crop["updatedAt"] = now
    return True


class MarketStore(Protocol):
    """Interface for crop and user persistence."""

    def connect(self) -> None:
        ...

    def close(self) -> None:
        ...

    def ping(self) -> None:
        ...

    def insert_crop(self, crop: dict) -> dict:
        ...

    def get_crop(self, crop_id: str) -> Optional[dict]:
        ...

    def find_crops(
        self, crop_filter: CropFilter, limit: Optional[int] = None
    ) -> list[dict]:
        ...

    def update_crop(
        self,
        crop_id: str,
        updates: dict,
        *,
        owner_email: Optional[str] = None,
    ) -> Optional[dict]:
        ...

    def delete_crop(self, crop_id: str) -> bool:
        ...

    def push_interest(self, crop_id: str, interest: dict) -> Optional[dict]:
        """
        Append ``interest`` unless the crop is gone or already holds an
        interest from the same ``userEmail``. Returns the updated crop or None.
        """
        ...

    def set_interest_status(
        self,
        crop_id: str,
        interest_id: str,
        status: str,
        *,
        reserve_quantity: Optional[float] = None,
    ) -> Optional[dict]:
        """
        Atomically set an interest's status. With ``reserve_quantity`` the
        interest must be pending and the crop must hold at least that much,
        which is then subtracted in the same update. Returns None when
        nothing matched.
        """
        ...

    def find_interests(self, user_email: str, sort: SortSpec) -> list[dict]:
        ...

    def upsert_user(self, email: str, name: str, photo: Optional[str]) -> dict:
        ...

    def get_user(self, email: str) -> Optional[dict]:
        ...

    def update_user(self, email: str, fields: dict) -> Optional[dict]:
        ...


class InMemoryMarketStore:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.crops: Dict[str, dict] = {}
        self.users: Dict[str, dict] = {}
        self._lock = threading.RLock()

    def connect(self) -> None:
        logger.info("Using in-memory market store")

    def close(self) -> None:
        pass

    def ping(self) -> None:
        pass

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.crops.clear()
            self.users.clear()

    def insert_crop(self, crop: dict) -> dict:
        with self._lock:
            stored = copy.deepcopy(crop)
            stored.setdefault("_id", new_id())
            self.crops[stored["_id"]] = stored
            return copy.deepcopy(stored)

    def get_crop(self, crop_id: str) -> Optional[dict]:
        with self._lock:
            crop = self.crops.get(crop_id)
            return copy.deepcopy(crop) if crop else None

    def find_crops(
        self, crop_filter: CropFilter, limit: Optional[int] = None
    ) -> list[dict]:
        with self._lock:
            matched = [
                copy.deepcopy(c) for c in self.crops.values() if crop_filter.matches(c)
            ]
        matched = sort_documents(matched, [("createdAt", -1)])
        return matched[:limit] if limit is not None else matched

    def update_crop(
        self,
        crop_id: str,
        updates: dict,
        *,
        owner_email: Optional[str] = None,
    ) -> Optional[dict]:
        with self._lock:
            crop = self.crops.get(crop_id)
            if not crop:
                return None
            if owner_email is not None and not CropFilter(
                owner_email=owner_email, owner_email_ignore_case=True
            ).matches(crop):
                return None
            crop.update(copy.deepcopy(updates))
            crop["updatedAt"] = utcnow()
            return copy.deepcopy(crop)

    def delete_crop(self, crop_id: str) -> bool:
        with self._lock:
            return self.crops.pop(crop_id, None) is not None

    def push_interest(self, crop_id: str, interest: dict) -> Optional[dict]:
        with self._lock:
            crop = self.crops.get(crop_id)
            if not crop:
                return None
            interests = crop.setdefault("interests", [])
            if any(i.get("userEmail") == interest.get("userEmail") for i in interests):
                return None
            interests.append(copy.deepcopy(interest))
            crop["updatedAt"] = utcnow()
            return copy.deepcopy(crop)

    def set_interest_status(
        self,
        crop_id: str,
        interest_id: str,
        status: str,
        *,
        reserve_quantity: Optional[float] = None,
    ) -> Optional[dict]:
        with self._lock:
            crop = self.crops.get(crop_id)
            if not crop:
                return None
            if not apply_interest_status(
                crop, interest_id, status, reserve_quantity, utcnow()
            ):
                return None
            return copy.deepcopy(crop)

    def find_interests(self, user_email: str, sort: SortSpec) -> list[dict]:
        with self._lock:
            items = [
                denormalize_interest(crop, copy.deepcopy(interest))
                for crop in self.crops.values()
                for interest in crop.get("interests") or []
                if interest.get("userEmail") == user_email
            ]
        return sort_documents(items, sort)

    def upsert_user(self, email: str, name: str, photo: Optional[str]) -> dict:
        now = utcnow()
        with self._lock:
            user = self.users.get(email)
            if user is None:
                user = {"_id": new_id(), "email": email, "createdAt": now}
                self.users[email] = user
            user.update({"name": name, "photo": photo, "updatedAt": now})
            return copy.deepcopy(user)

    def get_user(self, email: str) -> Optional[dict]:
        with self._lock:
            user = self.users.get(email)
            return copy.deepcopy(user) if user else None

    def update_user(self, email: str, fields: dict) -> Optional[dict]:
        with self._lock:
            user = self.users.get(email)
            if not user:
                return None
            user.update(fields)
            user["updatedAt"] = utcnow()
            return copy.deepcopy(user)


_TIMESTAMP_FIELDS = ("createdAt", "updatedAt")


def _dump_timestamps(doc: dict) -> dict:
    out = dict(doc)
    for key in _TIMESTAMP_FIELDS:
        if isinstance(out.get(key), datetime):
            out[key] = out[key].isoformat()
    return out


def _load_timestamps(doc: dict) -> dict:
    out = dict(doc)
    for key in _TIMESTAMP_FIELDS:
        if isinstance(out.get(key), str):
            out[key] = datetime.fromisoformat(out[key])
    return out


def _escape_like(value: str) -> str:
    return re.sub(r"([\\%_])", r"\\\1", value)


class SqlMarketStore:
    """
    SQLAlchemy-backed implementation. Crops are stored as JSON documents with
    the searchable fields mirrored into indexed columns. Accepts any
    SQLAlchemy URL (e.g., Postgres, or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlMarketStore")
        self.database_url = database_url
        self.engine = None
        self.Session = None

    def connect(self) -> None:
        self.engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        logger.info("Connected to SQL market store and ensured indexes are created")

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            self.Session = None

    def ping(self) -> None:
        with self._session() as session:
            session.execute(text("SELECT 1"))

    def _session(self) -> Session:
        if self.Session is None:
            raise RuntimeError("SqlMarketStore.connect() has not been called")
        return self.Session()

    def _to_crop(self, row: "CropRow") -> dict:
        crop = _load_timestamps(row.document)
        crop["interests"] = [
            _load_timestamps(i) for i in crop.get("interests") or []
        ]
        return crop

    def _write_crop(self, row: "CropRow", crop: dict) -> None:
        document = _dump_timestamps(crop)
        document["interests"] = [
            _dump_timestamps(i) for i in crop.get("interests") or []
        ]
        row.document = document
        row.name = _as_column_text(crop.get("name"))
        row.type = _as_column_text(crop.get("type"))
        row.location = _as_column_text(crop.get("location"))
        row.description = _as_column_text(crop.get("description"))
        row.owner_email = _as_column_text((crop.get("owner") or {}).get("ownerEmail"))
        row.created_at = crop["createdAt"]

    def _locked_crop(self, session: Session, crop_id: str) -> Optional["CropRow"]:
        stmt = select(CropRow).where(CropRow.id == crop_id).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def insert_crop(self, crop: dict) -> dict:
        stored = copy.deepcopy(crop)
        stored.setdefault("_id", new_id())
        with self._session() as session:
            row = CropRow(id=stored["_id"])
            self._write_crop(row, stored)
            session.add(row)
            session.commit()
        return stored

    def get_crop(self, crop_id: str) -> Optional[dict]:
        with self._session() as session:
            row = session.get(CropRow, crop_id)
            return self._to_crop(row) if row else None

    def find_crops(
        self, crop_filter: CropFilter, limit: Optional[int] = None
    ) -> list[dict]:
        stmt = select(CropRow)
        if crop_filter.owner_email is not None:
            if crop_filter.owner_email_ignore_case:
                stmt = stmt.where(
                    func.lower(CropRow.owner_email) == crop_filter.owner_email.lower()
                )
            else:
                stmt = stmt.where(CropRow.owner_email == crop_filter.owner_email)
        if crop_filter.search:
            pattern = f"%{_escape_like(crop_filter.search)}%"
            stmt = stmt.where(
                or_(
                    *(
                        getattr(CropRow, field).ilike(pattern, escape="\\")
                        for field in SEARCH_FIELDS
                    )
                )
            )
        stmt = stmt.order_by(CropRow.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_crop(row) for row in rows]

    def update_crop(
        self,
        crop_id: str,
        updates: dict,
        *,
        owner_email: Optional[str] = None,
    ) -> Optional[dict]:
        with self._session() as session:
            row = self._locked_crop(session, crop_id)
            if not row:
                return None
            crop = self._to_crop(row)
            if owner_email is not None and not CropFilter(
                owner_email=owner_email, owner_email_ignore_case=True
            ).matches(crop):
                return None
            crop.update(updates)
            crop["updatedAt"] = utcnow()
            self._write_crop(row, crop)
            session.commit()
            return crop

    def delete_crop(self, crop_id: str) -> bool:
        with self._session() as session:
            result = session.execute(delete(CropRow).where(CropRow.id == crop_id))
            session.commit()
            return bool(result.rowcount)

    def push_interest(self, crop_id: str, interest: dict) -> Optional[dict]:
        with self._session() as session:
            row = self._locked_crop(session, crop_id)
            if not row:
                return None
            crop = self._to_crop(row)
            interests = crop.setdefault("interests", [])
            if any(i.get("userEmail") == interest.get("userEmail") for i in interests):
                return None
            interests.append(copy.deepcopy(interest))
            crop["updatedAt"] = utcnow()
            self._write_crop(row, crop)
            session.commit()
            return crop

    def set_interest_status(
        self,
        crop_id: str,
        interest_id: str,
        status: str,
        *,
        reserve_quantity: Optional[float] = None,
    ) -> Optional[dict]:
        with self._session() as session:
            row = self._locked_crop(session, crop_id)
            if not row:
                return None
            crop = self._to_crop(row)
            if not apply_interest_status(
                crop, interest_id, status, reserve_quantity, utcnow()
            ):
                session.rollback()
                return None
            self._write_crop(row, crop)
            session.commit()
            return crop

    def find_interests(self, user_email: str, sort: SortSpec) -> list[dict]:
        with self._session() as session:
            rows = session.execute(select(CropRow)).scalars().all()
            crops = [self._to_crop(row) for row in rows]
        items = [
            denormalize_interest(crop, interest)
            for crop in crops
            for interest in crop.get("interests") or []
            if interest.get("userEmail") == user_email
        ]
        return sort_documents(items, sort)

    def _to_user(self, row: "UserRow") -> dict:
        return {
            "_id": row.id,
            "email": row.email,
            "name": row.name,
            "photo": row.photo,
            "createdAt": _as_utc(row.created_at),
            "updatedAt": _as_utc(row.updated_at),
        }

    def upsert_user(self, email: str, name: str, photo: Optional[str]) -> dict:
        now = utcnow()
        with self._session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email).with_for_update()
            ).scalar_one_or_none()
            if row is None:
                row = UserRow(id=new_id(), email=email, created_at=now)
                session.add(row)
            row.name = name
            row.photo = photo
            row.updated_at = now
            try:
                session.commit()
            except IntegrityError:
                # Lost an insert race on the unique email; update the winner.
                session.rollback()
                row = session.execute(
                    select(UserRow).where(UserRow.email == email).with_for_update()
                ).scalar_one()
                row.name = name
                row.photo = photo
                row.updated_at = now
                session.commit()
            return self._to_user(row)

    def get_user(self, email: str) -> Optional[dict]:
        with self._session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email)
            ).scalar_one_or_none()
            return self._to_user(row) if row else None

    def update_user(self, email: str, fields: dict) -> Optional[dict]:
        with self._session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email).with_for_update()
            ).scalar_one_or_none()
            if not row:
                return None
            if "name" in fields:
                row.name = fields["name"]
            if "photo" in fields:
                row.photo = fields["photo"]
            row.updated_at = utcnow()
            session.commit()
            return self._to_user(row)


def _as_column_text(value) -> Optional[str]:
    return None if value is None else str(value)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Base = declarative_base()


class CropRow(Base):
    __tablename__ = "crops"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    type = Column(String, nullable=True)
    location = Column(String, nullable=True)
    description = Column(String, nullable=True)
    owner_email = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    document = Column(JSON, nullable=False)

    __table_args__ = (
        Index("crop_field_index", "name", "type", "location", "description"),
    )


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    photo = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
