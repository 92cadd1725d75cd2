from typing import Optional
from pydantic import BaseModel, Field, field_validator


class DisputeCreateIn(BaseModel):
    orderId: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=2000)
    buyerNotes: Optional[str] = Field(None, max_length=5000)

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason must not be blank")
        return v


class DisputeUpdateIn(BaseModel):
    buyerNotes: Optional[str] = Field(None, max_length=5000)
    sellerNotes: Optional[str] = Field(None, max_length=5000)
    adminNotes: Optional[str] = Field(None, max_length=5000)
    status: Optional[str] = None


class DisputeResolveIn(BaseModel):
    resolution: Optional[str] = None
    adminNotes: Optional[str] = Field(None, max_length=5000)
