from typing import Optional
from pydantic import BaseModel, Field


class SellerApplyIn(BaseModel):
    shopName: str = Field(..., min_length=1, max_length=200)
    businessDescription: str = Field(..., min_length=1)
    businessAddress: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=128)
    state: str = Field(..., min_length=1, max_length=128)
    businessType: str = Field(..., min_length=1, max_length=64)
    businessRegistrationNumber: Optional[str] = Field(None, max_length=64)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class ShopUpdateIn(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=128)
    state: Optional[str] = Field(None, max_length=128)
    phone: Optional[str] = Field(None, max_length=20)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    model_config = {"extra": "forbid"}
