import asyncio
import logging
import time
from typing import Dict, Optional

import httpx
import jwt

from rewind.client import ServiceClient, service_client
from rewind.config import settings

logger = logging.getLogger(__name__)


class JWKSCache:
    """
    Process-wide kid -> signing key map for the identity provider.

    Readers use whatever map is current; a refresh builds a new map and swaps
    it in under the lock. Stale maps are refreshed after `ttl_seconds`, and a
    missing kid triggers a refetch at most once per `min_refresh_seconds`.
    """

    def __init__(
        self,
        client: Optional[ServiceClient] = None,
        ttl_seconds: Optional[int] = None,
        min_refresh_seconds: Optional[int] = None,
    ):
        self.client = client or service_client
        self.ttl_seconds = ttl_seconds or settings.jwks_cache_ttl_seconds
        if min_refresh_seconds is None:
            min_refresh_seconds = settings.jwks_min_refresh_seconds
        self.min_refresh_seconds = min_refresh_seconds
        self._keys: Dict[str, jwt.PyJWK] = {}
        self._fetched_at = 0.0
        self._attempted_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def url(self) -> str:
        return f"{settings.supabase_url.rstrip('/')}/auth/v1/.well-known/jwks.json"

    def _is_stale(self) -> bool:
        return time.monotonic() - self._fetched_at > self.ttl_seconds

    def _recently_attempted(self) -> bool:
        return self._attempted_at > 0 and time.monotonic() - self._attempted_at < self.min_refresh_seconds

    async def refresh(self) -> None:
        async with self._lock:
            self._attempted_at = time.monotonic()
            data = await self.client.fetch_jwks(self.url)
            keys = {}
            for entry in data.get("keys", []):
                kid = entry.get("kid")
                if not kid:
                    continue
                try:
                    keys[kid] = jwt.PyJWK(entry)
                except jwt.PyJWKError as e:
                    logger.warning(f"⚠️ [JWKS] skipping key {kid}: {e}")
            self._keys = keys
            self._fetched_at = time.monotonic()
            logger.info(f"✅ [JWKS] loaded {len(keys)} keys")

    async def get_key(self, kid: str) -> Optional[jwt.PyJWK]:
        keys = self._keys
        if kid in keys and not self._is_stale():
            return keys[kid]

        # At most one refetch per min_refresh_seconds, whatever kid was asked for
        if self._recently_attempted():
            return keys.get(kid)

        self._attempted_at = time.monotonic()
        try:
            await self.refresh()
        except httpx.HTTPError as e:
            # Keep serving the old map if the provider is briefly unreachable
            logger.warning(f"⚠️ [JWKS] refresh failed, using cached keys: {e}")

        return self._keys.get(kid)


# Global instance
jwks_cache = JWKSCache()
