"""
HTTP routes for the marketplace API.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from agrobridge import crops, interests, users
from agrobridge.db import MarketStore
from agrobridge.dependencies import get_store
from agrobridge.schemas import (
    CropCreateRequest,
    CropResponse,
    CropUpdateRequest,
    DeleteResponse,
    HealthResponse,
    InterestCreateRequest,
    InterestListItem,
    InterestStatusRequest,
    InterestSubmitResponse,
    OwnerCropUpdateRequest,
    UserResponse,
    UserUpdateRequest,
    UserUpsertRequest,
)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(store: MarketStore = Depends(get_store)):
    store.ping()
    return HealthResponse(status="ok")


@router.get("/crops/latest", response_model=list[CropResponse])
def latest_crops(
    limit: str | None = Query(None, description="Defaults to 6, at most 20"),
    store: MarketStore = Depends(get_store),
):
    return crops.latest_crops(store, limit)


@router.get("/crops", response_model=list[CropResponse])
def list_crops(
    search: str | None = Query(None),
    ownerEmail: str | None = Query(None),
    store: MarketStore = Depends(get_store),
):
    return crops.list_crops(store, search=search, owner_email=ownerEmail)


@router.get("/crops/{crop_id}", response_model=CropResponse)
def get_crop(crop_id: str, store: MarketStore = Depends(get_store)):
    return crops.get_crop(store, crop_id)


@router.post("/crops", response_model=CropResponse, status_code=201)
def create_crop(payload: CropCreateRequest, store: MarketStore = Depends(get_store)):
    return crops.create_crop(store, payload.model_dump(exclude_unset=True))


@router.put("/crops/{crop_id}", response_model=CropResponse)
def update_crop(
    crop_id: str,
    payload: CropUpdateRequest,
    store: MarketStore = Depends(get_store),
):
    return crops.update_crop(store, crop_id, payload.model_dump(exclude_unset=True))


@router.patch("/crops/{crop_id}/basic", response_model=CropResponse)
def update_crop_basic(
    crop_id: str,
    payload: CropUpdateRequest,
    store: MarketStore = Depends(get_store),
):
    return crops.update_crop_basic(
        store, crop_id, payload.model_dump(exclude_unset=True)
    )


@router.delete("/crops/{crop_id}", response_model=DeleteResponse)
def delete_crop(crop_id: str, store: MarketStore = Depends(get_store)):
    return crops.delete_crop(store, crop_id)


@router.get("/my/crops", response_model=list[CropResponse])
def list_my_crops(
    ownerEmail: str | None = Query(None),
    search: str | None = Query(None),
    store: MarketStore = Depends(get_store),
):
    return crops.list_owner_crops(store, ownerEmail, search)


@router.patch("/my/crops/{crop_id}", response_model=CropResponse)
def update_my_crop(
    crop_id: str,
    payload: OwnerCropUpdateRequest,
    store: MarketStore = Depends(get_store),
):
    return crops.update_owner_crop(
        store, crop_id, payload.model_dump(exclude_unset=True)
    )


@router.post("/interests", response_model=InterestSubmitResponse, status_code=201)
def submit_interest(
    payload: InterestCreateRequest, store: MarketStore = Depends(get_store)
):
    crop, interest = interests.submit_interest(
        store, payload.model_dump(exclude_unset=True)
    )
    return {"crop": crop, "interest": interest}


@router.get("/interests", response_model=list[InterestListItem])
def list_interests(
    email: str | None = Query(None),
    sort: str | None = Query(
        None, description="quantity-desc, quantity-asc, status or newest first"
    ),
    store: MarketStore = Depends(get_store),
):
    return interests.list_interests(store, email, sort)


@router.patch("/interests/{interest_id}/status", response_model=CropResponse)
def update_interest_status(
    interest_id: str,
    payload: InterestStatusRequest,
    store: MarketStore = Depends(get_store),
):
    return interests.transition_interest_status(
        store, interest_id, payload.model_dump(exclude_unset=True)
    )


@router.post("/users", response_model=UserResponse)
def upsert_user(payload: UserUpsertRequest, store: MarketStore = Depends(get_store)):
    return users.upsert_user(store, payload.model_dump(exclude_unset=True))


@router.get("/users/{email}", response_model=UserResponse)
def get_user(email: str, store: MarketStore = Depends(get_store)):
    return users.get_user(store, email)


@router.patch("/users/{email}", response_model=UserResponse)
def update_user(
    email: str,
    payload: UserUpdateRequest,
    store: MarketStore = Depends(get_store),
):
    return users.update_user(store, email, payload.model_dump(exclude_unset=True))
