from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class SiteFiltersModel(BaseModel):
    q: str = ""
    district: str = "All"
    cadaster: str = "All"
    site_status: str = "All"
    phone_status: str = "All"
    qc: Literal["All", "Any issue", "No issues"] = "All"


class FilterOptionsResponse(BaseModel):
    district: List[str] = Field(default_factory=list)
    cadaster: List[str] = Field(default_factory=list)
    site_status: List[str] = Field(default_factory=list)
    phone_status: List[str] = Field(default_factory=list)
    qc: List[str] = Field(default_factory=list)
    share_query: Optional[str] = None


class ReloadRequest(BaseModel):
    source: Optional[str] = None
    refresh_minutes: Optional[float] = None


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    details: Optional[Dict[str, str]] = None
