from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Pricing(BaseModel):
    monthly: Optional[float] = None
    yearly: Optional[float] = None
    one_time: Optional[float] = None
    triennial: Optional[float] = None

    def is_empty(self) -> bool:
        return not any((self.monthly, self.yearly, self.one_time, self.triennial))


class Subscription(BaseModel):
    plan: str = "Monthly"
    price: float = 0.0


class Product(BaseModel):
    """A normalized catalog entry.

    Identity (`id`) is fixed at load time. The three flags are recomputed
    whenever marketplace signals are applied; `api_*` keep what the upstream
    record itself claimed so the recomputation is repeatable.
    """

    id: str
    name: str
    vendor: str = "Unknown Vendor"
    category: str = "Uncategorized"
    category_id: Optional[str] = None
    sub_category: str = "General"
    sub_category_id: Optional[str] = None
    sub_sub_category: Optional[str] = None
    sub_sub_category_id: Optional[str] = None
    oem_id: Optional[str] = None
    price: float = 0.0
    billing_cycle: str = "Monthly"
    currency: str = "INR"
    description: str = ""
    features: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    pricing: Pricing = Field(default_factory=Pricing)
    subscriptions: List[Subscription] = Field(default_factory=list)
    subscription_hint: Optional[str] = None
    url: str = ""
    created_at: Optional[datetime] = None

    # Resolved flags
    is_featured: bool = False
    is_top_selling: bool = False
    is_latest: bool = False

    # Flags as reported by the source record
    api_featured: bool = False
    api_top_selling: bool = False
    api_latest: bool = False

    @property
    def category_path(self) -> str:
        if self.sub_category and self.sub_category != self.category:
            return f"{self.category} > {self.sub_category}"
        return self.category
