"""Optional Redis result cache."""

from docuquery.cache.redis_cache import CacheCategory, ResultCache

__all__ = ["CacheCategory", "ResultCache"]
