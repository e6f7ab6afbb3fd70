from pydantic import BaseModel, Field
from typing import Optional, List


class AtcRow(BaseModel):
    code: str = Field(..., description="ATC code, e.g. N02BE01")
    name: Optional[str]
    level: Optional[int] = Field(None, description="Hierarchy level 1-5 derived from code length")
    dose_value: Optional[str] = Field(None, description="Defined Daily Dose value")
    unit: Optional[str] = None
    route: Optional[str] = Field(None, description="Administration route, e.g. O (oral), P (parenteral)")
    note: Optional[str] = None


class AtcHierarchyRow(AtcRow):
    parent_code: Optional[str] = None
    has_children: bool = False


class AtcDataResponse(BaseModel):
    code: str
    count: int
    items: List[AtcRow]


class AtcHierarchyResponse(BaseModel):
    code: str
    max_levels: int
    count: int
    items: List[AtcHierarchyRow]
