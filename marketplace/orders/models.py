from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


class OrderItemIn(BaseModel):
    productId: str
    pricingUnitId: str
    quantity: int = Field(..., gt=0)


class OrderCreateIn(BaseModel):
    items: List[OrderItemIn]
    deliveryAddress: Optional[str] = None
    deliveryCity: Optional[str] = None
    deliveryState: Optional[str] = None
    deliveryPhone: Optional[str] = None
    deliveryLatitude: Optional[float] = None
    deliveryLongitude: Optional[float] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("deliveryAddress", "deliveryCity", "deliveryState", "deliveryPhone")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class OrderCancelIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderStatusIn(BaseModel):
    status: str
