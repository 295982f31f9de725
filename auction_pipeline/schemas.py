# auction_pipeline/schemas.py
from datetime import date
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Site(IntEnum):
    COPART = 1
    IAAI = 2

    @property
    def label(self):
        return "copart" if self is Site.COPART else "iaai"

    @property
    def display_name(self):
        return "Copart" if self is Site.COPART else "IAAI"


ALL_SITES = (Site.COPART, Site.IAAI)


class Tier(str, Enum):
    FREEMIUM = "freemium"
    FREE = "free"
    BASIC = "basic"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    ADMIN = "admin"

    def is_privileged(self):
        """Gold, platinum and admin callers get newest-first ordering and freshness re-fetches."""
        return self in (Tier.GOLD, Tier.PLATINUM, Tier.ADMIN)


class CacheQueryKey(BaseModel):
    """One logical search against the record store."""
    model_config = ConfigDict(frozen=True)

    make: str
    model: Optional[str] = None
    site: Site
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @property
    def model_filter(self):
        if self.model and self.model.strip():
            return self.model.strip()
        return None

    def normalized(self):
        parts = [
            self.make.strip(),
            self.model_filter or "all",
            int(self.site),
            self.year_from or "any",
            self.year_to or "any",
            self.date_from.isoformat() if self.date_from else "any",
            self.date_to.isoformat() if self.date_to else "any",
        ]
        return "-".join(str(p) for p in parts).lower()


class SearchResponse(BaseModel):
    rows: List[Dict[str, Any]]
    total_count: int
    from_cache: bool


class TargetedCollectionRequest(BaseModel):
    # required fields are checked by targeted.validate_request so a missing
    # field is reported the same way as a bad date (400, before any I/O)
    make: Optional[str] = None
    model: Optional[str] = None
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    sale_date_from: Optional[str] = None
    sale_date_to: Optional[str] = None
    site: Optional[Site] = None


class SiteCollectionResult(BaseModel):
    site: Site
    site_name: str
    status: str
    records_collected: int = 0
    existing_records: int = 0
    pages_fetched: int = 0
    error: Optional[str] = None


class SiteCheckResult(BaseModel):
    site: Site
    site_name: str
    existing_records: int


class CollectionCriteria(BaseModel):
    make: str
    model: str
    year_range: str
    date_range: str


class TargetedCollectionResponse(BaseModel):
    total_records_collected: int
    criteria: CollectionCriteria
    results: List[SiteCollectionResult]


class TargetedCheckResponse(BaseModel):
    criteria: CollectionCriteria
    results: List[SiteCheckResult]


class AnalysisDepth(str, Enum):
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"


class AnalysisFilters(BaseModel):
    makes: List[str] = Field(default_factory=list)
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    sites: List[Site] = Field(default_factory=list)

    def cache_repr(self):
        data = self.model_dump(mode="json")
        data["makes"] = sorted(data["makes"])
        data["sites"] = sorted(data["sites"])
        return data


class AnalysisRequest(BaseModel):
    caller_id: int
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    requested_rows: int = Field(..., gt=0, le=500000)
    filters: AnalysisFilters = Field(default_factory=AnalysisFilters)


class AnalysisResponse(BaseModel):
    data: Dict[str, Any]
    cached: bool
    processing_time_ms: int
    strategy: Optional[str] = None
