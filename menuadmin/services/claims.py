from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from menuadmin.repositories.claims import ClaimRepository
from menuadmin.services.hashing import sha256_hex

log = structlog.get_logger(__name__)

# no 0/O, 1/I
CLAIM_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CLAIM_CODE_LENGTH = 8


def generate_claim_code() -> str:
    chars = [secrets.choice(CLAIM_ALPHABET) for _ in range(CLAIM_CODE_LENGTH)]
    half = CLAIM_CODE_LENGTH // 2
    return "".join(chars[:half]) + "-" + "".join(chars[half:])


class ClaimIssuer:
    def __init__(
        self,
        repo: ClaimRepository,
        ttl_days: int,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repo = repo
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock

    async def issue(self, restaurant_id: uuid.UUID) -> bool:
        """
        Issue a claim unless any claim row already exists for the restaurant.

        The raw code goes to the log exactly once and is not returned.
        Database failures are logged and reported as ``False``; the caller's
        already-committed restaurant and draft stay in place.
        """
        try:
            if await self.repo.exists_for(restaurant_id):
                log.info("claim.skipped", restaurant_id=str(restaurant_id), reason="exists")
                return False

            code = generate_claim_code()
            await self.repo.create(
                restaurant_id,
                code_hash=sha256_hex(code),
                expires_at=self.clock() + self.ttl,
            )
        except SQLAlchemyError as exc:
            await self.repo.db.rollback()
            log.error("claim.failed", restaurant_id=str(restaurant_id), error=str(exc))
            return False

        log.info("claim.issued", restaurant_id=str(restaurant_id), claim_code=code)
        return True
