from sqlalchemy import Column, Integer, String, Float, Boolean, Date, DateTime, ForeignKey, Text, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base


class Movie(Base):
    """
    A movie on somebody's list.

    watched=False: desire_scale set, watched_date/rating/review unset.
    watched=True:  watched_date set, rating/review optional.
    """
    __tablename__ = "movies"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    title = Column(String(255), nullable=False)
    genre = Column(String(100), nullable=False)
    desire_scale = Column(Integer, nullable=True)
    date_added = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    watched = Column(Boolean, default=False, nullable=False)
    watched_date = Column(Date, nullable=True)
    rating = Column(Integer, nullable=True)
    review = Column(Text, nullable=True)

    # External metadata snapshot (TMDB)
    external_id = Column(Integer, nullable=True)
    poster_path = Column(String(255), nullable=True)
    overview = Column(Text, nullable=True)
    release_date = Column(String(20), nullable=True)
    vote_average = Column(Float, nullable=True)

    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("User", back_populates="movies")

    __table_args__ = (
        Index('ix_movies_owner_watched', 'owner_id', 'watched'),
    )

    def __repr__(self):
        return f"<Movie(id={self.id}, owner_id={self.owner_id}, watched={self.watched})>"
