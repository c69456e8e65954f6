"""
Import all models to ensure they are registered with SQLAlchemy
"""
from app.models.user import User
from app.models.movie import Movie
from app.models.identity_account import IdentityAccount

__all__ = [
    "User",
    "Movie",
    "IdentityAccount",
]
