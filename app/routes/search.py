from fastapi import APIRouter, Depends, Query
from typing import Optional

from app.schemas.search import SearchResponse, MovieDetailsResponse
from app.services.tmdb_service import TMDBClient
from app.utils.dependencies import get_current_session, get_tmdb_client

# Search sits behind the authentication wall like the rest of the API
router = APIRouter(
    prefix="/search",
    tags=["Search"],
    dependencies=[Depends(get_current_session)],
)


@router.get("", response_model=SearchResponse)
def search_movies(
    query: Optional[str] = Query(None, max_length=200, description="Movie title"),
    page: int = Query(1, ge=1, le=500),
    client: TMDBClient = Depends(get_tmdb_client),
):
    """
    Search TMDB by title

    - **query**: Title to search for (required, non-blank)
    - **page**: Page number (default 1)
    """
    return client.search_by_title(query, page=page)


@router.get("/popular", response_model=SearchResponse)
def get_popular_movies(
    page: int = Query(1, ge=1, le=500),
    client: TMDBClient = Depends(get_tmdb_client),
):
    """Popular movies, used as suggestions before the user types"""
    return client.get_popular(page=page)


@router.get("/movies/{external_id}", response_model=MovieDetailsResponse)
def get_movie_details(
    external_id: str,
    client: TMDBClient = Depends(get_tmdb_client),
):
    """Full TMDB record for one movie"""
    return client.get_by_id(external_id)
