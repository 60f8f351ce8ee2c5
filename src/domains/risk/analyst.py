"""Fraud analyst: asks the external scoring oracle, falls back to the rules.

The oracle is advisory and untrusted. Its answer is used as-is only when the
first balanced ``{...}`` in the completion parses, matches the JSON contract,
and is internally consistent. Any failure (network, timeout, non-2xx, parse,
contract) falls straight through to RiskEvaluator with no retry.
"""

import asyncio
import json
from datetime import UTC, datetime

import httpx
import jsonschema
import structlog
from pydantic import ValidationError

from src.domains.payments.models import Transaction
from src.shared.schemas import RISK_ASSESSMENT_SCHEMA, validate_payload

from .config import RiskConfig, default_config
from .evaluator import RiskEvaluator
from .models import AssessmentSource, PropertyFacts, RiskAssessment, UserProfile

logger = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are an AI fraud detection system for real estate transactions. "
    "Analyze the transaction details and user behavior to determine the risk level. "
    "Return a JSON object with riskLevel, riskScore, riskFactors, isLikelyFraud, "
    "and recommendedAction."
)

CONTRACT_PROMPT = """Analyze this transaction for potential fraud and return ONLY a JSON object \
with the following structure:
{
  "riskLevel": "low" | "medium" | "high" | "critical",
  "riskScore": 0-100,
  "riskFactors": ["reason1", "reason2", ...],
  "isLikelyFraud": boolean,
  "recommendedAction": "proceed" | "review" | "block"
}
Bands: riskScore 0-20 is low, 21-40 medium, 41-60 high, above 60 critical.
isLikelyFraud is true only for high and critical. recommendedAction is block for \
critical, review for high, proceed otherwise."""


class OracleError(Exception):
    reason = "oracle_error"


class OracleNetworkError(OracleError):
    reason = "network"


class OracleParseError(OracleError):
    reason = "parse"


def extract_first_json_object(text: str) -> str | None:
    """Return the earliest-starting balanced ``{...}`` substring, or None.

    Single pass with a stack of open-brace positions. Quotes are only tracked
    inside braces so stray prose quotes cannot hide the object.
    """
    stack: list[int] = []
    best: tuple[int, int] | None = None
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and stack:
            in_string = True
        elif char == "{":
            stack.append(index)
        elif char == "}" and stack:
            open_index = stack.pop()
            if not stack:
                return text[open_index : index + 1]
            if best is None or open_index < best[0]:
                best = (open_index, index)

    if best is None:
        return None
    return text[best[0] : best[1] + 1]


def parse_assessment(completion: str) -> RiskAssessment:
    """Turn an oracle completion into a RiskAssessment or raise OracleParseError."""
    candidate = extract_first_json_object(completion)
    if candidate is None:
        raise OracleParseError("no JSON object in completion")

    try:
        raw = json.loads(candidate)
        validate_payload(raw, RISK_ASSESSMENT_SCHEMA)
        return RiskAssessment.model_validate({**raw, "source": AssessmentSource.ORACLE})
    except json.JSONDecodeError as exc:
        raise OracleParseError(f"invalid JSON: {exc.msg}") from exc
    except jsonschema.ValidationError as exc:
        raise OracleParseError(f"contract mismatch: {exc.message}") from exc
    except ValidationError as exc:
        raise OracleParseError(f"inconsistent assessment: {exc.error_count()} errors") from exc


def build_messages(
    transaction: Transaction,
    user: UserProfile,
    property: PropertyFacts | None,
) -> list[dict[str, str]]:
    transaction_details = {
        "id": transaction.id,
        "amount": transaction.amount,
        "currency": transaction.currency,
        "type": transaction.type.value,
        "method": transaction.method.value,
        "provider": transaction.provider.value,
        "date": transaction.date.isoformat(),
        "propertyId": transaction.property_id,
    }
    user_details = {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "phone": user.phone,
        "accountCreatedAt": user.created_at.isoformat() if user.created_at else None,
        "verificationLevel": user.verification_level,
        "transactionHistory": user.transaction_history,
    }
    sections = [
        f"Transaction Details:\n{json.dumps(transaction_details)}",
        f"User Details:\n{json.dumps(user_details)}",
    ]
    if property is not None:
        property_details = {
            "id": property.id,
            "price": property.price,
            "type": property.type,
            "location": property.location,
            "listedBy": property.listed_by,
            "listedAt": property.listed_at.isoformat() if property.listed_at else None,
        }
        sections.append(f"Property Details:\n{json.dumps(property_details)}")
    sections.append(CONTRACT_PROMPT)

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "\n\n".join(sections)},
    ]


class FraudAnalyst:
    """Wraps the natural-language scoring oracle. ``analyze`` never raises."""

    def __init__(
        self,
        evaluator: RiskEvaluator | None = None,
        config: RiskConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or default_config
        self._evaluator = evaluator or RiskEvaluator(config=self._config)
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.oracle.timeout_seconds)
        )
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def analyze(
        self,
        transaction: Transaction,
        user: UserProfile,
        property: PropertyFacts | None = None,
        *,
        now: datetime | None = None,
    ) -> RiskAssessment:
        now = now or datetime.now(UTC)
        try:
            completion = await self._request_completion(build_messages(transaction, user, property))
            assessment = parse_assessment(completion)
        except OracleError as exc:
            logger.warning(
                "fraud_oracle_fallback",
                transaction_id=transaction.id,
                reason=exc.reason,
                error=str(exc),
            )
        except Exception:
            logger.exception("fraud_oracle_unexpected_error", transaction_id=transaction.id)
        else:
            logger.info(
                "fraud_oracle_assessed",
                transaction_id=transaction.id,
                risk_score=assessment.risk_score,
                risk_level=assessment.risk_level.value,
            )
            return assessment

        return self._evaluator.evaluate(transaction, user, property, now=now)

    async def _request_completion(self, messages: list[dict[str, str]]) -> str:
        try:
            async with asyncio.timeout(self._config.oracle.timeout_seconds):
                response = await self._client.post(
                    self._config.oracle.url, json={"messages": messages}
                )
        except TimeoutError as exc:
            raise OracleNetworkError("oracle timed out") from exc
        except httpx.HTTPError as exc:
            raise OracleNetworkError(f"oracle request failed: {exc!r}") from exc

        if not response.is_success:
            raise OracleNetworkError(f"oracle returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise OracleParseError("oracle body is not JSON") from exc

        completion = data.get("completion") if isinstance(data, dict) else None
        if not isinstance(completion, str):
            raise OracleParseError("oracle body has no completion text")
        return completion[: self._config.oracle.max_completion_chars]
