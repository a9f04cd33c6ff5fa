"""anilistwatched webhook service: Jellyfin notifications in, AniList progress out."""

from shared_lib import __version__

__all__ = ["__version__"]
