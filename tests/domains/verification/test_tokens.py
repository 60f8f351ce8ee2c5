"""Tests for security token minting and validation."""

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from src.domains.verification.models import VerificationMethod
from src.domains.verification.tokens import InvalidSecurityTokenError, SecurityTokenIssuer

SECRET = "s3cret"


@pytest.fixture
def issuer() -> SecurityTokenIssuer:
    return SecurityTokenIssuer(SECRET, ttl_seconds=600)


class TestSecurityTokenIssuer:
    def test_round_trip_returns_claims(self, issuer):
        before = datetime.now(UTC)
        token = issuer.mint("ref-000001", VerificationMethod.FACIAL)
        claims = issuer.validate(token, "ref-000001")
        assert claims.reference == "ref-000001"
        assert claims.method == VerificationMethod.FACIAL
        assert claims.token_id
        expected = before + timedelta(seconds=600)
        assert abs((claims.expires_at - expected).total_seconds()) < 5

    def test_token_is_an_hs256_jwt(self, issuer):
        token = issuer.mint("ref-000001", VerificationMethod.DOCUMENT)
        assert jwt.get_unverified_header(token)["alg"] == "HS256"
        payload = jwt.decode(token, SECRET, algorithms=["HS256"])
        assert payload["ref"] == "ref-000001"
        assert payload["mth"] == "document"

    def test_tokens_are_unique_per_mint(self, issuer):
        first = issuer.mint("ref-000001", VerificationMethod.DOCUMENT)
        second = issuer.mint("ref-000001", VerificationMethod.DOCUMENT)
        assert first != second

    def test_bound_to_reference(self, issuer):
        token = issuer.mint("ref-000001", VerificationMethod.DOCUMENT)
        with pytest.raises(InvalidSecurityTokenError, match="different reference"):
            issuer.validate(token, "ref-000002")

    def test_expired_token_is_rejected(self):
        issuer = SecurityTokenIssuer(SECRET, ttl_seconds=-60)
        token = issuer.mint("ref-000001", VerificationMethod.DOCUMENT)
        with pytest.raises(InvalidSecurityTokenError, match="expired"):
            issuer.validate(token, "ref-000001")

    def test_tampered_payload_is_rejected(self, issuer):
        header, payload, signature = issuer.mint(
            "ref-000001", VerificationMethod.DOCUMENT
        ).split(".")
        forged = f"{header}.{payload[:-2]}AA.{signature}"
        with pytest.raises(InvalidSecurityTokenError):
            issuer.validate(forged, "ref-000001")

    def test_token_from_other_secret_is_rejected(self, issuer):
        other = SecurityTokenIssuer("another-secret")
        token = other.mint("ref-000001", VerificationMethod.DOCUMENT)
        with pytest.raises(InvalidSecurityTokenError):
            issuer.validate(token, "ref-000001")

    def test_token_missing_claims_is_rejected(self, issuer):
        token = jwt.encode(
            {"ref": "ref-000001", "exp": datetime.now(UTC) + timedelta(minutes=5)},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidSecurityTokenError):
            issuer.validate(token, "ref-000001")

    def test_unknown_method_is_rejected(self, issuer):
        token = jwt.encode(
            {
                "ref": "ref-000001",
                "mth": "retina",
                "exp": datetime.now(UTC) + timedelta(minutes=5),
                "jti": "abc",
            },
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidSecurityTokenError, match="unreadable"):
            issuer.validate(token, "ref-000001")

    @pytest.mark.parametrize("token", ["", "garbage", "stk1.e30.forged", "a.b.c"])
    def test_malformed_tokens_are_rejected(self, issuer, token):
        with pytest.raises(InvalidSecurityTokenError):
            issuer.validate(token, "ref-000001")

    def test_empty_secret_is_refused(self):
        with pytest.raises(ValueError):
            SecurityTokenIssuer("")
