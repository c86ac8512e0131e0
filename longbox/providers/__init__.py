from longbox.providers.base import ProviderClient, SeriesMapping
from longbox.providers.comicvine import ComicVineClient
from longbox.providers.metron import MetronClient

__all__ = [
    "ComicVineClient",
    "MetronClient",
    "ProviderClient",
    "SeriesMapping",
]
