from fastapi import APIRouter, Depends, Path
from typing import Optional

from app.schemas.watchlist import (
    MovieCreate,
    MarkWatched,
    ReviewUpdate,
    MovieResponse,
    MovieListResponse,
    ClearResponse,
)
from app.schemas.auth import MessageResponse
from app.services.review_service import ReviewEditor
from app.services.watchlist_service import WatchlistService
from app.utils.dependencies import (
    get_current_user_id,
    get_review_editor,
    get_watchlist_service,
)

router = APIRouter(prefix="/watchlist", tags=["Watchlist"])
watched_router = APIRouter(prefix="/watched", tags=["Watched"])


# ==================== WATCHLIST (UNWATCHED) ENDPOINTS ====================

@router.get("", response_model=MovieListResponse)
def get_watchlist(
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    """Unwatched movies, newest first"""
    movies = service.list_unwatched(user_id)
    return {"movies": movies, "total": len(movies)}


@router.post("", response_model=MovieResponse)
def add_movie(
    movie: MovieCreate,
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    """
    Add a movie to the watchlist

    - **title**: Movie title (required)
    - **genre**: Genre (required)
    - **desireScale**: How much you want to watch it, 1-5 (required)
    - **metadata**: TMDB details when picked from search (optional)
    """
    return service.add_movie(
        user_id,
        title=movie.title,
        genre=movie.genre,
        desire_scale=movie.desire_scale,
        metadata=movie.metadata,
    )


@router.put("/{movie_id}/watched", response_model=MovieResponse)
def mark_watched(
    movie_id: int = Path(..., ge=1),
    payload: Optional[MarkWatched] = None,
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    """
    Mark a movie as watched

    Optional rating/review are applied after the transition; if that part
    fails the movie is still marked watched.
    """
    payload = payload or MarkWatched()
    return service.mark_watched(movie_id, user_id, rating=payload.rating, review=payload.review)


@router.delete("/{movie_id}", response_model=MessageResponse)
def remove_from_watchlist(
    movie_id: int = Path(..., ge=1),
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    """Remove a movie (watched or not)"""
    service.remove_movie(movie_id, user_id)
    return {"message": "Movie removed"}


@router.post("/clear", response_model=ClearResponse)
def clear_watchlist(
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    """Delete every movie of the current user"""
    return {"deleted": service.clear_watchlist(user_id)}


# ==================== WATCHED ENDPOINTS ====================

@watched_router.get("", response_model=MovieListResponse)
def get_watched(
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    """Watched movies, most recently watched first"""
    movies = service.list_watched(user_id)
    return {"movies": movies, "total": len(movies)}


@watched_router.delete("/{movie_id}", response_model=MessageResponse)
def remove_watched(
    movie_id: int = Path(..., ge=1),
    user_id: str = Depends(get_current_user_id),
    service: WatchlistService = Depends(get_watchlist_service),
):
    service.remove_movie(movie_id, user_id)
    return {"message": "Movie removed"}


@watched_router.put("/{movie_id}/review", response_model=MovieResponse)
def update_review(
    payload: ReviewUpdate,
    movie_id: int = Path(..., ge=1),
    user_id: str = Depends(get_current_user_id),
    editor: ReviewEditor = Depends(get_review_editor),
):
    """
    Edit the review and/or rating of a watched movie

    - **review**: New review text; blank clears it
    - **rating**: 1-5
    """
    return editor.update_review(movie_id, user_id, review=payload.review, rating=payload.rating)
