from .service import FavoritesService

__all__ = ["FavoritesService"]
