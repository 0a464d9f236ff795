"""Directory-service API clients."""

from dirmigrator.api.client import DirectoryClient, RateLimiter, RestDirectoryClient

__all__ = ["DirectoryClient", "RateLimiter", "RestDirectoryClient"]
