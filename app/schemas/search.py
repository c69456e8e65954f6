"""
Metadata search schemas
Results are passed through from TMDB; only the envelope is typed
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class SearchResponse(BaseModel):
    """Search or popular-list envelope"""
    query: Optional[str] = None
    results: List[Dict[str, Any]] = Field(default_factory=list)
    total_results: int = 0


class MovieDetailsResponse(BaseModel):
    """Single TMDB movie record"""
    id: int
    title: str
    overview: Optional[str] = None
    poster_path: Optional[str] = None
    release_date: Optional[str] = None
    vote_average: Optional[float] = None

    model_config = ConfigDict(extra="allow")
