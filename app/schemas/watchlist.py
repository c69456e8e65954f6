from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import date, datetime
from typing import Optional, List

from app.schemas.validation import SafeStringMixin

MIN_SCALE = 1
MAX_SCALE = 5


# ==================== REQUEST SCHEMAS ====================

class ExternalMetadata(BaseModel):
    """TMDB snapshot attached to a movie when it was picked from search"""
    external_id: Optional[int] = Field(None, gt=0, description="TMDB movie ID")
    poster_path: Optional[str] = Field(None, max_length=255)
    overview: Optional[str] = Field(None, max_length=5000)
    release_date: Optional[str] = Field(None, max_length=20)
    vote_average: Optional[float] = Field(None, ge=0, le=10)


class MovieCreate(BaseModel, SafeStringMixin):
    """Schema for adding a movie to the watchlist"""
    title: str = Field(..., min_length=1, max_length=255)
    genre: str = Field(..., min_length=1, max_length=100)
    desire_scale: int = Field(
        ..., alias="desireScale", ge=MIN_SCALE, le=MAX_SCALE,
        description="How much you want to watch it (1-5)",
    )
    metadata: Optional[ExternalMetadata] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('title', 'genre')
    @classmethod
    def clean_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Must not be blank")
        return cls.validate_no_script(v)


class MarkWatched(BaseModel):
    """Optional rating/review applied right after the transition"""
    rating: Optional[int] = Field(None, ge=MIN_SCALE, le=MAX_SCALE)
    review: Optional[str] = Field(None, max_length=2000)


class ReviewUpdate(BaseModel):
    """Schema for editing the review of a watched movie"""
    review: Optional[str] = Field(None, max_length=2000)
    rating: Optional[int] = Field(None, ge=MIN_SCALE, le=MAX_SCALE)


# ==================== RESPONSE SCHEMAS ====================

class MovieResponse(BaseModel):
    """Schema for a movie in either state"""
    id: int
    title: str
    genre: str
    desire_scale: Optional[int]
    date_added: datetime
    watched: bool
    watched_date: Optional[date]
    rating: Optional[int]
    review: Optional[str]
    external_id: Optional[int] = None
    poster_path: Optional[str] = None
    overview: Optional[str] = None
    release_date: Optional[str] = None
    vote_average: Optional[float] = None

    class Config:
        from_attributes = True


class MovieListResponse(BaseModel):
    movies: List[MovieResponse]
    total: int


class ClearResponse(BaseModel):
    deleted: int
