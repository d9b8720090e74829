"""
Schema definitions for x402guard.

This module defines the Pydantic models used throughout x402guard:
- PolicyRule variants: Allowlist, Denylist, RateLimit, SpendingCap
- PolicyFile: ordered rules plus pricing and audit configuration
- RequestContext: one request as seen by the evaluator
- Decision: the evaluator's verdict
- Conflict: one validator diagnostic

Design Decisions:
    - Rules are a discriminated union on `type`, mirroring the YAML format
    - Models check shape and primitive types only; numeric sanity is the
      validator's job, so a zero window parses fine and is reported later
    - Models are immutable (frozen=True) and reject unknown keys
    - Amounts are Decimal, never float
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    field_validator,
)


# =============================================================================
# Enums
# =============================================================================


class RuleType(str, Enum):
    """Kinds of policy rule."""

    ALLOWLIST = "allowlist"
    DENYLIST = "denylist"
    RATE_LIMIT = "rate_limit"
    SPENDING_CAP = "spending_cap"


class RuleField(str, Enum):
    """Request identifiers a rule can match or key its window on."""

    AGENT_ID = "agent_id"
    WALLET_ADDRESS = "wallet_address"
    IP_ADDRESS = "ip_address"


class DecisionReason(str, Enum):
    """Why the evaluator reached its decision."""

    ALLOWED = "allowed"
    NOT_ALLOWLISTED = "not_allowlisted"
    DENYLISTED = "denylisted"
    RATE_LIMITED = "rate_limited"
    SPENDING_CAP_EXCEEDED = "spending_cap_exceeded"
    CONFIGURATION_ERROR = "configuration_error"


class Severity(str, Enum):
    """Severity of a validator diagnostic."""

    ERROR = "error"
    WARNING = "warning"


class ConflictKind(str, Enum):
    """Category of a validator diagnostic."""

    INVALID_VALUE = "invalid_value"
    UNKNOWN_CURRENCY = "unknown_currency"
    EMPTY_VALUES = "empty_values"
    EMPTY_POLICY = "empty_policy"
    ALLOW_DENY_CONTRADICTION = "allow_deny_contradiction"
    DUPLICATE_RATE_LIMIT = "duplicate_rate_limit"
    DUPLICATE_SPENDING_CAP = "duplicate_spending_cap"


class AuditFormat(str, Enum):
    """Serialization of audit records."""

    JSON = "json"
    CSV = "csv"


# HTTP status a generated handler answers with, per decision reason
HTTP_STATUS_BY_REASON: dict[DecisionReason, int] = {
    DecisionReason.ALLOWED: 200,
    DecisionReason.NOT_ALLOWLISTED: 403,
    DecisionReason.DENYLISTED: 403,
    DecisionReason.RATE_LIMITED: 429,
    DecisionReason.SPENDING_CAP_EXCEEDED: 402,
    DecisionReason.CONFIGURATION_ERROR: 400,
}


# =============================================================================
# Coercion helpers
# =============================================================================


def _coerce_identifier(value: Any) -> Any:
    """
    Turn YAML numbers into strings for identifier lists.

    Unquoted wallet addresses like 0xBAD123 are read by YAML as integers.
    Booleans stay as-is so strict validation rejects them.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _coerce_amount(value: Any) -> Any:
    """Convert YAML numbers to Decimal without passing through binary float repr."""
    if isinstance(value, bool):
        msg = "must be a number, not a boolean"
        raise ValueError(msg)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        msg = "must be a number, not a string"
        raise ValueError(msg)
    return value


# =============================================================================
# Policy Rules
# =============================================================================


class AllowlistRule(BaseModel):
    """
    Only requests whose `field` value is listed may pass.

    Attributes:
        field: Which request identifier to check
        values: Permitted identifier values
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["allowlist"] = "allowlist"
    field: RuleField
    values: tuple[StrictStr, ...]

    @field_validator("values", mode="before")
    @classmethod
    def coerce_values(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [_coerce_identifier(item) for item in v]
        return v

    @property
    def rule_type(self) -> RuleType:
        return RuleType.ALLOWLIST


class DenylistRule(BaseModel):
    """
    Requests whose `field` value is listed are rejected.

    Attributes:
        field: Which request identifier to check
        values: Blocked identifier values
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["denylist"] = "denylist"
    field: RuleField
    values: tuple[StrictStr, ...]

    @field_validator("values", mode="before")
    @classmethod
    def coerce_values(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [_coerce_identifier(item) for item in v]
        return v

    @property
    def rule_type(self) -> RuleType:
        return RuleType.DENYLIST


class RateLimitRule(BaseModel):
    """
    At most `max_requests` per `window_seconds` per value of `field`.

    Attributes:
        max_requests: Requests permitted inside one window
        window_seconds: Sliding window width
        field: Identifier the window is keyed on (default: agent_id)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["rate_limit"] = "rate_limit"
    max_requests: StrictInt
    window_seconds: StrictInt
    field: RuleField = RuleField.AGENT_ID

    @property
    def rule_type(self) -> RuleType:
        return RuleType.RATE_LIMIT


class SpendingCapRule(BaseModel):
    """
    At most `max_amount` of `currency` per `window_seconds` per value of `field`.

    Attributes:
        max_amount: Spend permitted inside one window
        currency: Currency code the cap is denominated in
        window_seconds: Sliding window width
        field: Identifier the window is keyed on (default: agent_id)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["spending_cap"] = "spending_cap"
    max_amount: Decimal
    currency: StrictStr
    window_seconds: StrictInt
    field: RuleField = RuleField.AGENT_ID

    @field_validator("max_amount", mode="before")
    @classmethod
    def coerce_max_amount(cls, v: Any) -> Any:
        return _coerce_amount(v)

    @property
    def rule_type(self) -> RuleType:
        return RuleType.SPENDING_CAP


PolicyRule = Annotated[
    Union[AllowlistRule, DenylistRule, RateLimitRule, SpendingCapRule],
    Field(discriminator="type"),
]


# =============================================================================
# Policy File
# =============================================================================


class PricingConfig(BaseModel):
    """
    Default pricing for paid endpoints.

    When a request carries no amount, spending caps charge `amount`.

    Attributes:
        amount: Default price per request
        currency: Currency of the default price
        memo_prefix: Optional prefix for payment memos
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    amount: Decimal = Field(default=Decimal("0.01"))
    currency: StrictStr = "USDC"
    memo_prefix: StrictStr | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Any:
        return _coerce_amount(v)


class AuditConfig(BaseModel):
    """
    Audit logging of terminal decisions.

    Attributes:
        enabled: Whether each decision is written to the audit log
        format: json (one object per line) or csv
        destination: File path, or None / "stdout" for standard output
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: StrictBool = True
    format: AuditFormat = AuditFormat.JSON
    destination: StrictStr | None = None

    @property
    def writes_to_stdout(self) -> bool:
        return self.destination in (None, "", "stdout")


class PolicyFile(BaseModel):
    """
    A complete policy file.

    Rules are kept in declaration order, which is also evaluation order.
    A file without an `audit` section does not audit.

    Attributes:
        policies: Ordered rule list
        pricing: Optional pricing defaults
        audit: Audit logging configuration
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policies: list[PolicyRule] = Field(..., description="Ordered rule list")
    pricing: PricingConfig | None = Field(default=None, description="Pricing defaults")
    audit: AuditConfig = Field(
        default_factory=lambda: AuditConfig(enabled=False),
        description="Audit logging configuration",
    )


# =============================================================================
# Runtime Models
# =============================================================================


class RequestContext(BaseModel):
    """
    One request as seen by the evaluator.

    Populated by whatever sits in front of the engine (the mock server, the
    simulator, a test). Identifiers are trusted as given.

    Attributes:
        agent_id: Calling agent identifier
        wallet_address: Paying wallet address
        ip_address: Client IP address
        amount: Requested payment amount
        endpoint: Requested path, for audit only
        timestamp: Arrival time (UTC)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    agent_id: str | None = None
    wallet_address: str | None = None
    ip_address: str | None = None
    amount: Decimal | None = None
    endpoint: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken to be UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @classmethod
    def now(cls, **kwargs: Any) -> "RequestContext":
        """Create a context stamped with the current time."""
        return cls(timestamp=datetime.now(UTC), **kwargs)

    def value_of(self, field: RuleField) -> str | None:
        """Return the identifier a rule keyed on `field` should see."""
        value = getattr(self, field.value)
        if value in (None, ""):
            return None
        return value


class Decision(BaseModel):
    """
    Result of evaluating one request against a policy file.

    Attributes:
        allowed: Whether the request may proceed
        reason: Machine-readable reason
        matched_rule: Index of the rule that denied (None when allowed)
        rule_type: Type of the rule that denied
        message: Human-readable explanation
        retry_after: For rate limits, time until a slot frees up
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed: bool
    reason: DecisionReason
    matched_rule: int | None = None
    rule_type: RuleType | None = None
    message: str = ""
    retry_after: timedelta | None = None

    @property
    def http_status(self) -> int:
        """HTTP status the generated handlers answer with for this decision."""
        return HTTP_STATUS_BY_REASON[self.reason]

    @classmethod
    def allow(cls) -> "Decision":
        """Create an ALLOW decision."""
        return cls(allowed=True, reason=DecisionReason.ALLOWED, message="All policies passed")

    @classmethod
    def deny(
        cls,
        reason: DecisionReason,
        rule_index: int,
        rule_type: RuleType,
        message: str,
        retry_after: timedelta | None = None,
    ) -> "Decision":
        """Create a DENY decision attributed to one rule."""
        return cls(
            allowed=False,
            reason=reason,
            matched_rule=rule_index,
            rule_type=rule_type,
            message=message,
            retry_after=retry_after,
        )


class Conflict(BaseModel):
    """
    One validator diagnostic.

    Attributes:
        severity: error blocks evaluation and generation, warning does not
        kind: Diagnostic category
        message: Plain-language description naming rule indices and types
        rule_indices: Rules involved, in ascending order
        suggestions: Possible fixes
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    severity: Severity
    kind: ConflictKind
    message: str
    rule_indices: tuple[int, ...] = ()
    suggestions: tuple[str, ...] = ()

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR
