from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from marketplace.schema.full_schema import ProductCategory


class PricingUnitIn(BaseModel):
    id: Optional[str] = None
    unit: str = Field(..., min_length=1, max_length=64)
    price: float = Field(..., ge=0)
    stock: Optional[int] = Field(None, ge=0)
    lowStockThreshold: Optional[int] = Field(None, ge=0)
    isActive: bool = True


class ProductCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: ProductCategory
    images: List[str] = Field(default_factory=list)
    isAvailable: bool = True
    pricingUnits: List[PricingUnitIn] = Field(..., min_length=1)

    @field_validator("category", mode="before")
    @classmethod
    def upper_category(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class ProductUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[ProductCategory] = None
    images: Optional[List[str]] = None
    isAvailable: Optional[bool] = None
    pricingUnits: Optional[List[PricingUnitIn]] = None

    model_config = {"extra": "forbid"}

    @field_validator("category", mode="before")
    @classmethod
    def upper_category(cls, v):
        return v.strip().upper() if isinstance(v, str) else v
