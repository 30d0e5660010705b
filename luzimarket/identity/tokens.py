"""
tokens.py: Minting and checking of the two credential kinds.

  access credential    HS256 JWT, short-lived, carries sid / sub / sbt claims
  rotation credential  128 hex chars of randomness, opaque, single-use;
                       only its SHA-256 digest is ever persisted

Expiry is checked against the injected clock rather than PyJWT's wall clock so
lifetimes are testable and consistent with the store's expires_at comparisons.
"""
import hashlib
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import jwt

from luzimarket.config import settings
from luzimarket.errors import Unauthorized
from luzimarket.identity.schemas import SubjectContext, SubjectType

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
ROTATION_TOKEN_BYTES = 64
_ROTATION_TOKEN_RE = re.compile(r"^[0-9a-f]{%d}$" % (ROTATION_TOKEN_BYTES * 2))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialCodec:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        access_ttl: Optional[timedelta] = None,
        rotation_ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.secret_key = secret_key or settings.secret_key
        self.access_ttl = access_ttl or settings.access_ttl
        self.rotation_ttl = rotation_ttl or settings.refresh_ttl
        if self.access_ttl >= self.rotation_ttl:
            raise ValueError("access credential lifetime must be shorter than rotation lifetime")
        self.clock = clock

    def mint_access(
        self,
        session_id: str,
        subject_type: SubjectType,
        subject_id: Optional[str] = None,
    ) -> tuple[str, datetime]:
        """Return (jwt, expires_at) for the given subject."""
        now = self.clock()
        expires_at = now + self.access_ttl
        payload: dict[str, Any] = {
            "sid": session_id,
            "sbt": subject_type.value,
            "typ": ACCESS_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": uuid.uuid4().hex,
        }
        if subject_id is not None:
            payload["sub"] = subject_id
        return jwt.encode(payload, self.secret_key, algorithm=ALGORITHM), expires_at

    def decode_access(self, token: str) -> SubjectContext:
        """
        Verify signature, type and expiry of an access credential.

        Raises:
            Unauthorized for every failure mode, without distinguishing them.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[ALGORITHM],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "sid", "sbt", "typ"],
                },
            )
            if payload["typ"] != ACCESS_TOKEN_TYPE:
                raise Unauthorized()
            expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
            if expires_at <= self.clock():
                raise Unauthorized()
            subject_type = SubjectType(payload["sbt"])
            subject_id = payload.get("sub")
            if (subject_type == SubjectType.authenticated) != (subject_id is not None):
                raise Unauthorized()
        except (jwt.InvalidTokenError, ValueError, TypeError) as exc:
            logger.debug("Access credential rejected: %s", type(exc).__name__)
            raise Unauthorized() from None
        return SubjectContext(
            session_id=payload["sid"],
            subject_type=subject_type,
            subject_id=subject_id,
            expires_at=expires_at,
        )

    def mint_rotation(self) -> tuple[str, str, datetime]:
        """Return (token, digest, expires_at) for a fresh rotation credential."""
        token = secrets.token_hex(ROTATION_TOKEN_BYTES)
        return token, hash_rotation(token), self.clock() + self.rotation_ttl


def is_well_formed_rotation(token: str) -> bool:
    return isinstance(token, str) and bool(_ROTATION_TOKEN_RE.match(token))


def hash_rotation(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
