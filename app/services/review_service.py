"""
Review editing for watched movies.

The only mutation allowed on a Watched movie. Every write is a conditional
UPDATE on (id, owner, watched=true): an Unwatched movie, somebody else's
movie and a missing movie all look the same (NotFound).
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.models.movie import Movie
from app.schemas.validation import SafeStringMixin
from app.schemas.watchlist import MIN_SCALE, MAX_SCALE
from app.utils.audit import AuditSink
from app.utils.errors import NotFound, Unauthenticated, ValidationError

logger = logging.getLogger(__name__)


def validate_rating(rating) -> Optional[int]:
    if rating is None:
        return None
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"Rating must be a whole number between {MIN_SCALE} and {MAX_SCALE}")
    if not MIN_SCALE <= rating <= MAX_SCALE:
        raise ValidationError(f"Rating must be between {MIN_SCALE} and {MAX_SCALE}")
    return rating


def clean_review(review: Optional[str]) -> Optional[str]:
    """Sanitise review text; blank text clears the review."""
    if review is None:
        return None
    try:
        cleaned = SafeStringMixin.clean_text(review.strip())
    except ValueError:
        raise ValidationError("Review contains invalid characters")
    return cleaned or None


class ReviewEditor:
    """Rating/review updates, limited to movies in the Watched state"""

    def __init__(self, db: Session, audit: AuditSink):
        self.db = db
        self.audit = audit

    def _watched_query(self, movie_id: int, owner_id: str):
        return self.db.query(Movie).filter(
            Movie.id == movie_id,
            Movie.owner_id == owner_id,
            Movie.watched == True,  # noqa: E712
        )

    def update_review(
        self,
        movie_id: int,
        owner_id: str,
        review: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> Movie:
        """
        Apply a review and/or rating to a watched movie.

        Raises NotFound unless (id, owner, watched=true) matches. With neither
        field supplied the call succeeds without writing.
        """
        if not owner_id:
            raise Unauthenticated()
        rating = validate_rating(rating)

        changes = {}
        if review is not None:
            changes[Movie.review] = clean_review(review)
        if rating is not None:
            changes[Movie.rating] = rating

        if not changes:
            movie = self._watched_query(movie_id, owner_id).first()
            if movie is None:
                raise NotFound()
            return movie

        updated = self._watched_query(movie_id, owner_id).update(changes, synchronize_session=False)
        if not updated:
            self.db.rollback()
            raise NotFound()
        self.db.commit()

        self.audit.emit(
            "movie.review_updated",
            movie_id=movie_id,
            user_id=owner_id,
            rating=rating is not None,
            review=review is not None,
        )
        return self._watched_query(movie_id, owner_id).one()
