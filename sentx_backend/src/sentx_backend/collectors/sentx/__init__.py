from .activity import MarketActivityFetcher, MintActivityFetcher, build_fetcher
from .client import SentxClient

__all__ = [
    "SentxClient",
    "MintActivityFetcher",
    "MarketActivityFetcher",
    "build_fetcher",
]
