"""
Unit tests for schema models.

Tests cover:
- Rule variants and the discriminated union
- Identifier and amount coercion
- Pricing and audit defaults
- RequestContext timestamps and field lookup
- Decision helpers and status codes
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from x402guard.schema import (
    AllowlistRule,
    AuditConfig,
    AuditFormat,
    Conflict,
    ConflictKind,
    Decision,
    DecisionReason,
    DenylistRule,
    PolicyFile,
    PricingConfig,
    RateLimitRule,
    RequestContext,
    RuleField,
    RuleType,
    Severity,
    SpendingCapRule,
)


class TestRules:
    """Tests for rule models."""

    def test_union_dispatches_on_type(self) -> None:
        """Each `type` tag yields the matching model."""
        policy = PolicyFile.model_validate({
            "policies": [
                {"type": "allowlist", "field": "agent_id", "values": ["a"]},
                {"type": "denylist", "field": "ip_address", "values": ["1.2.3.4"]},
                {"type": "rate_limit", "max_requests": 5, "window_seconds": 60},
                {"type": "spending_cap", "max_amount": 1.5, "currency": "USDC", "window_seconds": 60},
            ]
        })
        kinds = [type(rule) for rule in policy.policies]
        assert kinds == [AllowlistRule, DenylistRule, RateLimitRule, SpendingCapRule]
        assert [rule.rule_type for rule in policy.policies] == [
            RuleType.ALLOWLIST,
            RuleType.DENYLIST,
            RuleType.RATE_LIMIT,
            RuleType.SPENDING_CAP,
        ]

    def test_stateful_rules_default_to_agent_id(self) -> None:
        """Rate limits and caps key on agent_id unless told otherwise."""
        rule = RateLimitRule(max_requests=1, window_seconds=1)
        assert rule.field == RuleField.AGENT_ID

    def test_numeric_values_become_strings(self) -> None:
        """YAML numbers in identifier lists are kept as text."""
        rule = DenylistRule.model_validate({"field": "wallet_address", "values": [123, 4.5]})
        assert rule.values == ("123", "4.5")

    def test_boolean_values_rejected(self) -> None:
        """Booleans are not identifiers."""
        with pytest.raises(ValidationError):
            AllowlistRule.model_validate({"field": "agent_id", "values": [True]})

    def test_max_amount_is_exact(self) -> None:
        """Float amounts are converted through their text form."""
        rule = SpendingCapRule.model_validate(
            {"max_amount": 0.1, "currency": "USDC", "window_seconds": 60}
        )
        assert rule.max_amount == Decimal("0.1")

    def test_max_amount_rejects_strings(self) -> None:
        """Quoted amounts are a shape error."""
        with pytest.raises(ValidationError):
            SpendingCapRule.model_validate(
                {"max_amount": "10", "currency": "USDC", "window_seconds": 60}
            )

    def test_unknown_keys_rejected(self) -> None:
        """Typos in rule keys are caught."""
        with pytest.raises(ValidationError):
            RateLimitRule.model_validate({"max_requests": 1, "window_secs": 60})

    def test_rules_are_frozen(self) -> None:
        """Rules cannot be mutated after parsing."""
        rule = RateLimitRule(max_requests=1, window_seconds=1)
        with pytest.raises(ValidationError):
            rule.max_requests = 2  # type: ignore[misc]


class TestPolicyFile:
    """Tests for PolicyFile defaults."""

    def test_audit_disabled_without_section(self) -> None:
        """No audit section means no auditing."""
        policy = PolicyFile.model_validate({"policies": []})
        assert policy.audit.enabled is False
        assert policy.pricing is None

    def test_audit_section_defaults(self) -> None:
        """An audit section enables JSON to stdout by default."""
        policy = PolicyFile.model_validate({"policies": [], "audit": {}})
        assert policy.audit.enabled is True
        assert policy.audit.format == AuditFormat.JSON
        assert policy.audit.writes_to_stdout

    def test_pricing_defaults(self) -> None:
        """Pricing defaults to 0.01 USDC."""
        pricing = PricingConfig()
        assert pricing.amount == Decimal("0.01")
        assert pricing.currency == "USDC"
        assert pricing.memo_prefix is None

    @pytest.mark.parametrize("destination", [None, "", "stdout"])
    def test_stdout_destinations(self, destination: str | None) -> None:
        """None, empty and 'stdout' all mean standard output."""
        assert AuditConfig(destination=destination).writes_to_stdout

    def test_file_destination(self) -> None:
        """Any other destination is a file path."""
        assert not AuditConfig(destination="audit.jsonl").writes_to_stdout


class TestRequestContext:
    """Tests for RequestContext."""

    def test_naive_timestamp_is_utc(self) -> None:
        """Naive datetimes are read as UTC."""
        ctx = RequestContext(timestamp=datetime(2026, 1, 1, 12, 0))
        assert ctx.timestamp.tzinfo == UTC

    def test_now_is_recent(self) -> None:
        """RequestContext.now stamps the current time."""
        ctx = RequestContext.now(agent_id="a")
        assert abs(datetime.now(UTC) - ctx.timestamp) < timedelta(seconds=5)
        assert ctx.agent_id == "a"

    def test_value_of(self) -> None:
        """Lookup by field returns the identifier."""
        ctx = RequestContext(agent_id="a", wallet_address="0x1", ip_address="10.0.0.1")
        assert ctx.value_of(RuleField.AGENT_ID) == "a"
        assert ctx.value_of(RuleField.WALLET_ADDRESS) == "0x1"
        assert ctx.value_of(RuleField.IP_ADDRESS) == "10.0.0.1"

    def test_empty_value_is_missing(self) -> None:
        """Empty strings count as absent."""
        ctx = RequestContext(agent_id="")
        assert ctx.value_of(RuleField.AGENT_ID) is None


class TestDecision:
    """Tests for Decision."""

    def test_allow(self) -> None:
        """Allow decisions carry no rule and status 200."""
        decision = Decision.allow()
        assert decision.allowed is True
        assert decision.reason == DecisionReason.ALLOWED
        assert decision.matched_rule is None
        assert decision.http_status == 200

    @pytest.mark.parametrize(
        ("reason", "status"),
        [
            (DecisionReason.NOT_ALLOWLISTED, 403),
            (DecisionReason.DENYLISTED, 403),
            (DecisionReason.RATE_LIMITED, 429),
            (DecisionReason.SPENDING_CAP_EXCEEDED, 402),
            (DecisionReason.CONFIGURATION_ERROR, 400),
        ],
    )
    def test_deny_status(self, reason: DecisionReason, status: int) -> None:
        """Each deny reason maps to its HTTP status."""
        decision = Decision.deny(reason, 3, RuleType.DENYLIST, "no")
        assert decision.allowed is False
        assert decision.matched_rule == 3
        assert decision.http_status == status


class TestConflict:
    """Tests for Conflict."""

    def test_is_error(self) -> None:
        """Only error severity blocks a file."""
        error = Conflict(severity=Severity.ERROR, kind=ConflictKind.EMPTY_VALUES, message="x")
        warning = Conflict(severity=Severity.WARNING, kind=ConflictKind.EMPTY_POLICY, message="y")
        assert error.is_error
        assert not warning.is_error
