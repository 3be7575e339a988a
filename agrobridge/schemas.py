"""
Pydantic schemas for the marketplace API.

Request models are deliberately loose (every field optional, numbers may
arrive as strings) so that field presence and ranges are checked by the
domain modules, which report them as ``ValidationError``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

NumericInput = Optional[Union[int, float, str]]
Number = Union[int, float]


class OwnerPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    ownerEmail: Optional[str] = None
    ownerName: Optional[str] = None


class CropUpdateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    pricePerUnit: NumericInput = None
    unit: Optional[str] = None
    quantity: NumericInput = None
    description: Optional[str] = None
    location: Optional[str] = None
    image: Optional[str] = None


class CropCreateRequest(CropUpdateRequest):
    owner: Optional[OwnerPayload] = None


class OwnerCropUpdateRequest(CropUpdateRequest):
    ownerEmail: Optional[str] = None


class InterestCreateRequest(BaseModel):
    cropId: Optional[str] = None
    userEmail: Optional[str] = None
    userName: Optional[str] = None
    userPhoto: Optional[str] = None
    quantity: NumericInput = None
    message: Optional[str] = None


class InterestStatusRequest(BaseModel):
    cropId: Optional[str] = None
    status: Optional[str] = None


class UserUpsertRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    photo: Optional[str] = None


class UserUpdateRequest(BaseModel):
    name: Optional[str] = None
    photo: Optional[str] = None


class HealthResponse(BaseModel):
    status: Literal["ok"]


class DeleteResponse(BaseModel):
    acknowledged: bool


class OwnerResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    ownerEmail: Optional[str] = None
    ownerName: Optional[str] = None


class InterestResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    cropId: str
    cropName: Optional[str] = None
    ownerEmail: Optional[str] = None
    ownerName: Optional[str] = None
    userEmail: str
    userName: str
    userPhoto: Optional[str] = None
    quantity: Number
    message: str = ""
    totalPrice: Number
    status: Literal["pending", "accepted", "rejected"]
    createdAt: datetime
    updatedAt: datetime


class InterestListItem(InterestResponse):
    """An interest joined with its crop's current listing details."""

    cropImage: Optional[str] = None
    pricePerUnit: Optional[Number] = None
    unit: Optional[str] = None
    location: Optional[str] = None


class CropResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    name: Optional[str] = None
    type: Optional[str] = None
    pricePerUnit: Number
    unit: Optional[str] = None
    quantity: Number
    description: Optional[str] = None
    location: Optional[str] = None
    image: Optional[str] = None
    owner: OwnerResponse
    interests: list[InterestResponse] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime


class InterestSubmitResponse(BaseModel):
    crop: CropResponse
    interest: InterestResponse


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    email: str
    name: str
    photo: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime
