"""Short-lived security tokens proving a verification passed for one reference."""

import uuid
from datetime import UTC, datetime, timedelta

import jwt
import structlog

from .models import SecurityTokenClaims, VerificationMethod

logger = structlog.get_logger()

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["ref", "mth", "exp", "jti"]


class InvalidSecurityTokenError(ValueError):
    pass


class SecurityTokenIssuer:
    """Mints and checks HS256 JWTs bound to a transaction reference."""

    def __init__(self, secret: str, ttl_seconds: int = 600) -> None:
        if not secret:
            raise ValueError("security token secret must not be empty")
        self._secret = secret
        self._ttl = timedelta(seconds=ttl_seconds)

    def mint(self, reference: str, method: VerificationMethod) -> str:
        issued_at = datetime.now(UTC)
        payload = {
            "ref": reference,
            "mth": method.value,
            "iat": issued_at,
            "exp": issued_at + self._ttl,
            "jti": uuid.uuid4().hex,
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        logger.info("security_token_minted", reference=reference, method=method.value)
        return token

    def validate(self, token: str, reference: str) -> SecurityTokenClaims:
        """Return the claims, or raise InvalidSecurityTokenError."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidSecurityTokenError("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidSecurityTokenError(f"invalid token: {exc}") from exc

        try:
            claims = SecurityTokenClaims(
                reference=payload["ref"],
                method=VerificationMethod(payload["mth"]),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
                token_id=payload["jti"],
            )
        except (ValueError, TypeError) as exc:
            raise InvalidSecurityTokenError("unreadable claims") from exc

        if claims.reference != reference:
            raise InvalidSecurityTokenError("token bound to a different reference")
        return claims
