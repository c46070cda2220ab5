from __future__ import annotations
import hmac
import secrets
from dataclasses import dataclass
from typing import Tuple
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from menuadmin.config import settings
from menuadmin.database import get_db
from menuadmin.exceptions import AuthenticationError, ForbiddenError
from menuadmin.repositories.api_keys import ApiKeyRepository
from menuadmin.services.hashing import sha256_hex

PRIVILEGED_TENANT = "*"
PRIVILEGED_KEY_ID = "super_admin"


@dataclass(frozen=True)
class AuthContext:
    tenant_id: str
    key_id: str
    is_privileged: bool = False


_bearer = HTTPBearer(auto_error=False)


def generate_api_key() -> Tuple[str, str, str]:
    """Returns (raw_key, key_hash, key_id). Only the hash is stored."""
    raw = "lbk_" + secrets.token_hex(32)
    return raw, sha256_hex(raw), "key_" + raw[4:16]


async def require_auth(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Missing or malformed Authorization header")

    api_key = credentials.credentials
    if len(api_key) < settings.API_KEY_MIN_LENGTH:
        raise AuthenticationError("Invalid API key format")

    if hmac.compare_digest(api_key, settings.ADMIN_TOKEN):
        return AuthContext(tenant_id=PRIVILEGED_TENANT, key_id=PRIVILEGED_KEY_ID, is_privileged=True)

    row = await ApiKeyRepository(db).find_active(sha256_hex(api_key))
    if row is None:
        raise AuthenticationError("Invalid API key")
    return AuthContext(tenant_id=row.tenant, key_id=row.key_id)


async def require_privileged(ctx: AuthContext = Depends(require_auth)) -> AuthContext:
    if not ctx.is_privileged:
        raise ForbiddenError("Privileged access required")
    return ctx


def authorize_tenant(ctx: AuthContext, tenant: str) -> None:
    """The one tenant-isolation check used by every tenant-scoped write."""
    if ctx.is_privileged or ctx.tenant_id == tenant:
        return
    raise ForbiddenError(f"Key {ctx.key_id} cannot write to tenant {tenant}", {"tenant": tenant})
