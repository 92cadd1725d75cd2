from typing import Optional
from pydantic import BaseModel, Field


class RejectIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class SuspendIn(BaseModel):
    suspended: Optional[bool] = None
    # "suspend" | "unsuspend", accepted when suspended is omitted
    action: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=2000)


class ShopStatusIn(BaseModel):
    action: Optional[str] = "deactivate"
    reason: Optional[str] = Field(None, max_length=2000)


class RefundIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)
