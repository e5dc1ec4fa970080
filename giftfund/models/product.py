# giftfund/models/product.py

# The slice of the 'products' document this backend reads and writes.
# Products themselves are managed by the catalog service.

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import PyObjectId


class Product(BaseModel):
    id: Optional[PyObjectId] = Field(alias="_id", default=None)
    name: str
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    seller: PyObjectId
    is_active: bool = True

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True, extra="allow")
