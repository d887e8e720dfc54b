from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class OwnedItemOut(BaseModel):
    """A stock item delivered to the caller."""

    id: str
    product_id: str
    product_name: str
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    code: str
    order_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
