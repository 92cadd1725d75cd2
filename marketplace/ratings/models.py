from typing import Any, Optional
from pydantic import BaseModel, Field


class ReviewIn(BaseModel):
    orderId: str = Field(..., min_length=1)
    # range is checked in the service so the caller gets a specific message
    rating: Any = None
    comment: Optional[str] = Field(None, max_length=2000)


class RiderRatingIn(BaseModel):
    deliveryId: str = Field(..., min_length=1)
    orderId: Optional[str] = None
    rating: Any = None
    comment: Optional[str] = Field(None, max_length=2000)
