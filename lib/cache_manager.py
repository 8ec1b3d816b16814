"""Centralized cache utilities (TTLCache settings & key builders)."""
from __future__ import annotations

import os
from cachetools import TTLCache

# Spotify client-credentials token cache settings (tokens live 3600s upstream)
TOKEN_CACHE_VERSION = int(os.getenv("SPOTIFY_TOKEN_CACHE_VERSION", "1"))
TOKEN_CACHE_MAXSIZE = int(os.getenv("SPOTIFY_TOKEN_CACHE_MAXSIZE", "4"))
TOKEN_CACHE_TTL_S = int(os.getenv("SPOTIFY_TOKEN_CACHE_TTL_S", "3300"))
# Tokens closer than this to expiry are not cached
TOKEN_EXPIRY_MARGIN_S = 60

# Lazy-initialized caches
_token_cache: TTLCache | None = None


def get_token_cache() -> TTLCache:
    global _token_cache
    if _token_cache is None:
        _token_cache = TTLCache(maxsize=TOKEN_CACHE_MAXSIZE, ttl=TOKEN_CACHE_TTL_S)
    return _token_cache


def clear_token_cache() -> None:
    if _token_cache is not None:
        _token_cache.clear()


def build_token_cache_key(client_id: str) -> str:
    return f"tok:{TOKEN_CACHE_VERSION}:{client_id}"


def should_cache_token(expires_in: int | None) -> bool:
    if TOKEN_CACHE_TTL_S <= 0:
        return False
    if expires_in is None:
        return True
    return expires_in - TOKEN_EXPIRY_MARGIN_S >= TOKEN_CACHE_TTL_S
