"""Redis-backed credential store."""
from typing import Optional
import structlog
import orjson
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError
from .base import CredentialStore
from .models import SecondaryIdentity, TenantLookupConfig
from ..config import get_settings

log = structlog.get_logger()


class RedisCredentialStore(CredentialStore):
    """Redis implementation of the credential store.

    Identities and lookup settings are stored as JSON strings under
    per-tenant keys. The secret is stored in its hashed form only.
    """

    def __init__(self, redis_url: str | None = None, key_prefix: str = "livebridge"):
        """
        Initialize Redis credential store.

        Args:
            redis_url: Redis connection URL (defaults to settings.REDIS_URL)
            key_prefix: Namespace for all keys written by the store
        """
        self.redis_url = redis_url or str(get_settings().REDIS_URL)
        self._client: Redis | None = None
        self._prefix = key_prefix

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,  # We'll handle encoding ourselves
                socket_connect_timeout=5,
                socket_timeout=5
            )
        return self._client

    def _key(self, *parts: str) -> str:
        return ":".join((self._prefix, *parts))

    async def get_admin_token(self) -> Optional[str]:
        raw = await self._get_client().get(self._key("admin_token"))
        return raw.decode() if raw else None

    async def set_admin_token(self, token: Optional[str]) -> None:
        client = self._get_client()
        if token:
            await client.set(self._key("admin_token"), token.encode())
        else:
            await client.delete(self._key("admin_token"))
        log.info("credentials.admin_token_set", cleared=not token, store="redis")

    async def get_identity(self, tenant_id: str) -> Optional[SecondaryIdentity]:
        raw = await self._get_client().get(self._key("tenant", tenant_id, "identity"))
        if raw is None:
            return None
        try:
            return SecondaryIdentity(**orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as e:
            log.error("credentials.identity_corrupt", tenant_id=tenant_id, error=str(e))
            return None

    async def set_identity(self, tenant_id: str, identity: SecondaryIdentity) -> None:
        try:
            await self._get_client().set(
                self._key("tenant", tenant_id, "identity"),
                orjson.dumps(identity.model_dump()),
            )
        except RedisError as e:
            log.error("redis.write_failed", error=str(e), tenant_id=tenant_id)
            raise
        log.info("credentials.identity_stored", tenant_id=tenant_id, username=identity.username, store="redis")

    async def remove_identity(self, tenant_id: str) -> bool:
        removed = await self._get_client().delete(self._key("tenant", tenant_id, "identity"))
        if removed:
            log.info("credentials.identity_removed", tenant_id=tenant_id, store="redis")
        return bool(removed)

    async def get_lookup_config(self, tenant_id: str) -> Optional[TenantLookupConfig]:
        raw = await self._get_client().get(self._key("tenant", tenant_id, "lookup"))
        if raw is None:
            return None
        try:
            return TenantLookupConfig(**orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as e:
            log.error("credentials.lookup_corrupt", tenant_id=tenant_id, error=str(e))
            return None

    async def set_lookup_config(self, tenant_id: str, config: TenantLookupConfig) -> None:
        try:
            await self._get_client().set(
                self._key("tenant", tenant_id, "lookup"),
                orjson.dumps(config.model_dump()),
            )
        except RedisError as e:
            log.error("redis.write_failed", error=str(e), tenant_id=tenant_id)
            raise
        log.info("credentials.lookup_stored", tenant_id=tenant_id, client_id=config.client_id, store="redis")

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            return bool(await self._get_client().ping())
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
