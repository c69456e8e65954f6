import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.movie import Movie
from app.schemas.watchlist import ExternalMetadata, MIN_SCALE, MAX_SCALE
from app.services.review_service import ReviewEditor
from app.utils.audit import AuditSink
from app.utils.errors import NotFound, Unauthenticated, ValidationError

logger = logging.getLogger(__name__)


class WatchlistService:
    """
    Movie lifecycle: Unwatched -> Watched, plus removal from either state.

    Every query is filtered by owner. A movie that belongs to someone else is
    reported exactly like one that does not exist.
    """

    def __init__(self, db: Session, audit: AuditSink, reviews: Optional[ReviewEditor] = None):
        self.db = db
        self.audit = audit
        self.reviews = reviews or ReviewEditor(db, audit)

    @staticmethod
    def _require_owner(owner_id: Optional[str]) -> str:
        if not owner_id:
            raise Unauthenticated()
        return owner_id

    def _owned(self, owner_id: str):
        return self.db.query(Movie).filter(Movie.owner_id == owner_id)

    # ==================== QUERIES ====================

    def list_unwatched(self, owner_id: str) -> List[Movie]:
        """The watchlist, newest additions first"""
        owner_id = self._require_owner(owner_id)
        return (
            self._owned(owner_id)
            .filter(Movie.watched == False)  # noqa: E712
            .order_by(Movie.date_added.desc(), Movie.id.desc())
            .all()
        )

    def list_watched(self, owner_id: str) -> List[Movie]:
        """Watch history, most recently watched first"""
        owner_id = self._require_owner(owner_id)
        return (
            self._owned(owner_id)
            .filter(Movie.watched == True)  # noqa: E712
            .order_by(Movie.watched_date.desc(), Movie.id.desc())
            .all()
        )

    # ==================== TRANSITIONS ====================

    def add_movie(
        self,
        owner_id: Optional[str],
        title: Optional[str],
        genre: Optional[str],
        desire_scale,
        metadata: Optional[ExternalMetadata] = None,
    ) -> Movie:
        """Create an Unwatched movie and return it fully populated"""
        owner_id = self._require_owner(owner_id)

        title = (title or "").strip()
        genre = (genre or "").strip()
        if not title or not genre or desire_scale is None:
            raise ValidationError("Missing required fields: title, genre and desire scale")
        if isinstance(desire_scale, bool) or not isinstance(desire_scale, int):
            raise ValidationError("Desire scale must be a whole number")
        if not MIN_SCALE <= desire_scale <= MAX_SCALE:
            raise ValidationError(f"Desire scale must be between {MIN_SCALE} and {MAX_SCALE}")

        movie = Movie(
            owner_id=owner_id,
            title=title,
            genre=genre,
            desire_scale=desire_scale,
            date_added=datetime.now(timezone.utc),
            watched=False,
        )
        if metadata is not None:
            movie.external_id = metadata.external_id
            movie.poster_path = metadata.poster_path
            movie.overview = metadata.overview
            movie.release_date = metadata.release_date
            movie.vote_average = metadata.vote_average

        self.db.add(movie)
        self.db.commit()
        self.db.refresh(movie)

        self.audit.emit("movie.added", movie_id=movie.id, user_id=owner_id, title=movie.title)
        return movie

    def mark_watched(
        self,
        movie_id: int,
        owner_id: str,
        rating: Optional[int] = None,
        review: Optional[str] = None,
    ) -> Movie:
        """
        Move an Unwatched movie to Watched.

        The transition is a single conditional UPDATE matching
        (id, owner, watched=false); a concurrent or repeated call matches no
        row and gets NotFound. watched_date is the server's local calendar date.

        A rating/review that fails to apply afterwards is logged and the
        movie stays Watched without it.
        """
        owner_id = self._require_owner(owner_id)

        updated = (
            self._owned(owner_id)
            .filter(Movie.id == movie_id, Movie.watched == False)  # noqa: E712
            .update(
                {
                    Movie.watched: True,
                    Movie.watched_date: date.today(),
                    Movie.rating: None,
                    Movie.review: None,
                },
                synchronize_session=False,
            )
        )
        if not updated:
            self.db.rollback()
            raise NotFound("Movie not found or already watched")
        self.db.commit()
        self.audit.emit("movie.watched", movie_id=movie_id, user_id=owner_id)

        if rating is not None or review is not None:
            try:
                return self.reviews.update_review(movie_id, owner_id, review=review, rating=rating)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Movie {movie_id} marked watched but rating/review was not applied: {e}")
                self.audit.emit(
                    "movie.review_apply_failed",
                    movie_id=movie_id,
                    user_id=owner_id,
                    error=type(e).__name__,
                    level=logging.WARNING,
                )

        return self._owned(owner_id).filter(Movie.id == movie_id).one()

    def remove_movie(self, movie_id: int, owner_id: str) -> None:
        """Delete a movie in either state"""
        owner_id = self._require_owner(owner_id)
        deleted = (
            self._owned(owner_id)
            .filter(Movie.id == movie_id)
            .delete(synchronize_session=False)
        )
        if not deleted:
            self.db.rollback()
            raise NotFound()
        self.db.commit()
        self.audit.emit("movie.removed", movie_id=movie_id, user_id=owner_id)

    def clear_watchlist(self, owner_id: str) -> int:
        """Delete every movie the owner has, watched or not"""
        owner_id = self._require_owner(owner_id)
        deleted = self.delete_all_for_owner(owner_id)
        self.db.commit()
        self.audit.emit("watchlist.cleared", user_id=owner_id, deleted=deleted)
        return deleted

    def delete_all_for_owner(self, owner_id: str) -> int:
        """Stage deletion of all the owner's movies; the caller commits."""
        return self._owned(owner_id).delete(synchronize_session=False)
