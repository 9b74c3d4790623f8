# calendar_backend/jwks.py
"""Google signing key (JWKS) fetching and caching for identity token verification."""

import logging
from datetime import datetime, timezone

import httpx
from jose import jwk
from jose.backends.base import Key

logger = logging.getLogger(__name__)


class JWKSCache:
    """
    In-memory cache of the provider's public signing keys, keyed by ``kid``.

    Keys are refetched when the TTL has passed or when a token names a
    ``kid`` the cache has not seen (Google rotates keys regularly).

    Example:
        >>> cache = JWKSCache("https://www.googleapis.com/oauth2/v3/certs")
        >>> key = await cache.get_signing_key("abc123")
    """

    def __init__(self, jwks_url: str, cache_ttl: int = 3600, http_client: httpx.AsyncClient | None = None):
        self.jwks_url = jwks_url
        self.cache_ttl = cache_ttl
        self._keys: dict[str, Key] = {}
        self._last_refresh: datetime | None = None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=30.0, connect=10.0, write=10.0)
        )

    async def get_signing_key(self, kid: str) -> Key:
        """
        Return the public key for ``kid``.

        Raises:
            ValueError: if the key id is unknown even after a refresh
            httpx.HTTPError: if the JWKS endpoint cannot be reached
        """
        if self._needs_refresh():
            await self.refresh_keys()

        key = self._keys.get(kid)
        if key is None:
            logger.warning(
                f"Key ID '{kid}' not found in cache, refreshing JWKS",
                extra={"kid": kid, "cached_kids": list(self._keys.keys())},
            )
            await self.refresh_keys()
            key = self._keys.get(kid)

        if key is None:
            raise ValueError(f"Key ID '{kid}' not found in JWKS. Available keys: {list(self._keys.keys())}")
        return key

    async def refresh_keys(self) -> None:
        try:
            logger.info(f"Fetching JWKS from {self.jwks_url}")
            response = await self._http_client.get(self.jwks_url)
            response.raise_for_status()
            keys_list = response.json().get("keys", [])
        except httpx.HTTPError as e:
            logger.error(
                f"Failed to fetch JWKS from {self.jwks_url}: {e}",
                exc_info=True,
                extra={"error_type": "jwks_fetch_failed"},
            )
            raise

        new_keys: dict[str, Key] = {}
        for key_data in keys_list:
            kid = key_data.get("kid")
            if not kid:
                logger.warning("JWKS key missing 'kid', skipping")
                continue
            algorithm = key_data.get("alg") or ("ES256" if key_data.get("kty") == "EC" else "RS256")
            new_keys[kid] = jwk.construct(key_data, algorithm=algorithm)

        # Replace the whole dict so readers never see a partial update
        self._keys = new_keys
        self._last_refresh = datetime.now(timezone.utc)
        logger.info(
            "JWKS cache refreshed",
            extra={"key_count": len(new_keys), "ttl_seconds": self.cache_ttl},
        )

    def _needs_refresh(self) -> bool:
        if self._last_refresh is None:
            return True
        age = (datetime.now(timezone.utc) - self._last_refresh).total_seconds()
        return age >= self.cache_ttl

    async def close(self) -> None:
        await self._http_client.aclose()
        logger.info("JWKS cache closed")
