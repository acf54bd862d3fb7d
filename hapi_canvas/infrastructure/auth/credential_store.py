"""
Credential Stores

Persistence for CredentialRecord, keyed by (user_id, instance_url).

Components:
- CredentialStore: protocol the token manager depends on
- InMemoryCredentialStore: process-local dict (tests, single-user scripts)
- RedisCredentialStore: JSON documents in Redis under ``canvas:credential``
- TokenCipher: optional encrypt/decrypt applied to the secret fields at the
  store boundary; IdentityCipher (no-op) by default

Stores only ever hold cipher output for access/refresh tokens. The cipher
implementation itself (KMS, Fernet ...) is supplied by the host
application.
"""

from typing import Protocol, runtime_checkable

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from hapi_canvas.core.config.constants import REDIS_KEY_CREDENTIAL
from hapi_canvas.core.exceptions import CredentialStoreError
from hapi_canvas.core.logging.logger import get_logger
from hapi_canvas.infrastructure.auth.models import CredentialRecord

logger = get_logger(__name__)


@runtime_checkable
class TokenCipher(Protocol):
    def encrypt(self, plaintext: str) -> str:
        ...

    def decrypt(self, ciphertext: str) -> str:
        ...


class IdentityCipher:
    """No-op cipher."""

    def encrypt(self, plaintext: str) -> str:
        return plaintext

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


@runtime_checkable
class CredentialStore(Protocol):
    async def load(self, user_id: str, instance_url: str) -> CredentialRecord | None:
        ...

    async def save(self, record: CredentialRecord) -> None:
        ...

    async def delete(self, user_id: str, instance_url: str) -> bool:
        ...


def _seal(record: CredentialRecord, cipher: TokenCipher) -> CredentialRecord:
    return record.model_copy(
        update={
            "access_token": cipher.encrypt(record.access_token),
            "refresh_token": cipher.encrypt(record.refresh_token) if record.refresh_token else None,
        }
    )


def _unseal(record: CredentialRecord, cipher: TokenCipher) -> CredentialRecord:
    return record.model_copy(
        update={
            "access_token": cipher.decrypt(record.access_token),
            "refresh_token": cipher.decrypt(record.refresh_token) if record.refresh_token else None,
        }
    )


class InMemoryCredentialStore:
    def __init__(self, cipher: TokenCipher | None = None):
        self._cipher = cipher or IdentityCipher()
        self._records: dict[tuple[str, str], CredentialRecord] = {}

    async def load(self, user_id: str, instance_url: str) -> CredentialRecord | None:
        sealed = self._records.get((user_id, instance_url))
        return _unseal(sealed, self._cipher) if sealed is not None else None

    async def save(self, record: CredentialRecord) -> None:
        self._records[(record.user_id, record.instance_url)] = _seal(record, self._cipher)

    async def delete(self, user_id: str, instance_url: str) -> bool:
        return self._records.pop((user_id, instance_url), None) is not None


class RedisCredentialStore:
    """
    Redis-backed store.

    Key layout: ``canvas:credential:<user_id>:<instance_url>``. No expiry is
    set on the key; refresh tokens outlive access tokens.
    """

    def __init__(
        self,
        client: redis.Redis,
        cipher: TokenCipher | None = None,
        key_prefix: str = REDIS_KEY_CREDENTIAL,
    ):
        self._client = client
        self._cipher = cipher or IdentityCipher()
        self._prefix = key_prefix

    def _key(self, user_id: str, instance_url: str) -> str:
        return f"{self._prefix}:{user_id}:{instance_url}"

    async def load(self, user_id: str, instance_url: str) -> CredentialRecord | None:
        try:
            raw = await self._client.get(self._key(user_id, instance_url))
        except RedisError as e:
            raise CredentialStoreError.from_exception(e, message="Failed to load Canvas credential")
        if raw is None:
            return None
        try:
            sealed = CredentialRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Stored Canvas credential is corrupt", user_id=user_id, error=str(e))
            raise CredentialStoreError.from_exception(e, message="Stored Canvas credential is corrupt")
        return _unseal(sealed, self._cipher)

    async def save(self, record: CredentialRecord) -> None:
        payload = _seal(record, self._cipher).model_dump_json()
        try:
            await self._client.set(self._key(record.user_id, record.instance_url), payload)
        except RedisError as e:
            raise CredentialStoreError.from_exception(e, message="Failed to save Canvas credential")

    async def delete(self, user_id: str, instance_url: str) -> bool:
        try:
            return bool(await self._client.delete(self._key(user_id, instance_url)))
        except RedisError as e:
            raise CredentialStoreError.from_exception(e, message="Failed to delete Canvas credential")
