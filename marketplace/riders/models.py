from typing import Optional
from pydantic import BaseModel, Field


class RiderApplyIn(BaseModel):
    vehicleType: str = Field(..., min_length=1, max_length=64)
    vehicleNumber: str = Field(..., min_length=1, max_length=64)
    licenseNumber: str = Field(..., min_length=1, max_length=64)
    address: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=128)
    state: str = Field(..., min_length=1, max_length=128)


class DeliveryStatusIn(BaseModel):
    status: str
    notes: Optional[str] = Field(None, max_length=500)
