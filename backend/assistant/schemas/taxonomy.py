from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class CategoryNode(BaseModel):
    id: str
    name: str
    parent_id: Optional[str] = None
    level: int = 1
    product_count: int = 0
    children: List["CategoryNode"] = Field(default_factory=list)


class Oem(BaseModel):
    id: str
    name: str
    keywords: List[str] = Field(default_factory=list)


class Taxonomy(BaseModel):
    categories: List[CategoryNode] = Field(default_factory=list)
    oems: List[Oem] = Field(default_factory=list)
    fetched_at: Optional[datetime] = None
    source: Literal["live", "empty"] = "empty"

    @property
    def is_empty(self) -> bool:
        return not self.categories and not self.oems

    def iter_subcategories(self):
        for category in self.categories:
            for sub in category.children:
                yield category, sub


CategoryNode.model_rebuild()
