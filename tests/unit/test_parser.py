"""
Unit tests for the policy parser.

Tests cover:
- Well-formed files, rule order, pricing and audit sections
- Malformed YAML and wrong top-level shapes
- Error messages naming the rule index and field
- Loading from disk
"""

from decimal import Decimal
from pathlib import Path

import pytest

from x402guard.errors import ParseError, PolicyReadError
from x402guard.policy import load_policy, parse
from x402guard.schema import (
    AllowlistRule,
    AuditFormat,
    DenylistRule,
    RateLimitRule,
    RuleField,
    SpendingCapRule,
)


class TestParseValid:
    """Tests for well-formed input."""

    def test_rule_order_preserved(self, sample_policy_yaml: str) -> None:
        """Rules keep their declaration order."""
        policy = parse(sample_policy_yaml)
        assert [type(r) for r in policy.policies] == [
            DenylistRule,
            AllowlistRule,
            RateLimitRule,
            SpendingCapRule,
        ]

    def test_fields_and_values(self, sample_policy_yaml: str) -> None:
        """Identifiers and limits are read as declared."""
        policy = parse(sample_policy_yaml)
        deny = policy.policies[0]
        assert isinstance(deny, DenylistRule)
        assert deny.field == RuleField.WALLET_ADDRESS
        assert deny.values == ("0xBAD",)
        cap = policy.policies[3]
        assert isinstance(cap, SpendingCapRule)
        assert cap.max_amount == Decimal("10.0")
        assert cap.currency == "USDC"

    def test_pricing(self, sample_policy_yaml: str) -> None:
        """Pricing section is parsed."""
        policy = parse(sample_policy_yaml)
        assert policy.pricing is not None
        assert policy.pricing.amount == Decimal("0.5")

    def test_bytes_input(self) -> None:
        """UTF-8 bytes are accepted."""
        policy = parse(b"policies: []\n")
        assert policy.policies == []

    def test_audit_section(self) -> None:
        """Audit settings are parsed."""
        policy = parse("""
policies: []
audit:
  enabled: true
  format: csv
  destination: audit.csv
""")
        assert policy.audit.enabled is True
        assert policy.audit.format == AuditFormat.CSV
        assert policy.audit.destination == "audit.csv"

    def test_unquoted_hex_wallet(self) -> None:
        """YAML integers in values are kept as strings."""
        policy = parse("""
policies:
  - type: denylist
    field: wallet_address
    values: [0x10, 42]
""")
        rule = policy.policies[0]
        assert isinstance(rule, DenylistRule)
        assert rule.values == ("16", "42")

    def test_zero_window_parses(self) -> None:
        """Numeric sanity is left to the validator."""
        policy = parse("""
policies:
  - type: rate_limit
    max_requests: 0
    window_seconds: 0
""")
        assert isinstance(policy.policies[0], RateLimitRule)


class TestParseInvalid:
    """Tests for malformed input."""

    def test_invalid_yaml(self) -> None:
        """Broken YAML is a ParseError."""
        with pytest.raises(ParseError) as exc_info:
            parse("policies: [unclosed")
        assert "Invalid YAML" in exc_info.value.message

    def test_empty_document(self) -> None:
        """An empty file is a ParseError."""
        with pytest.raises(ParseError, match="empty"):
            parse("")

    def test_top_level_list(self) -> None:
        """The top level must be a mapping."""
        with pytest.raises(ParseError, match="mapping"):
            parse("- type: allowlist")

    def test_invalid_utf8(self) -> None:
        """Undecodable bytes are a ParseError."""
        with pytest.raises(ParseError, match="UTF-8"):
            parse(b"\xff\xfe policies")

    def test_missing_policies_key(self) -> None:
        """`policies` is required."""
        with pytest.raises(ParseError) as exc_info:
            parse("pricing: {amount: 1}")
        assert exc_info.value.field_name == "policies"
        assert "'policies' is required" in exc_info.value.message

    def test_missing_rule_key_names_index_and_field(self) -> None:
        """Errors point at the rule index and key."""
        with pytest.raises(ParseError) as exc_info:
            parse("""
policies:
  - type: allowlist
    field: agent_id
    values: [a]
  - type: rate_limit
    max_requests: 5
""")
        err = exc_info.value
        assert err.rule_index == 1
        assert err.field_name == "window_seconds"
        assert "Rule #1 (rate_limit): 'window_seconds' is required" in err.message

    def test_unknown_rule_type(self) -> None:
        """Unknown `type` tags are reported against `type`."""
        with pytest.raises(ParseError) as exc_info:
            parse("""
policies:
  - type: geo_block
    field: ip_address
""")
        err = exc_info.value
        assert err.rule_index == 0
        assert err.field_name == "type"
        assert "geo_block" in err.message

    def test_missing_rule_type(self) -> None:
        """Rules without `type` are rejected."""
        with pytest.raises(ParseError) as exc_info:
            parse("""
policies:
  - field: agent_id
    values: [a]
""")
        assert exc_info.value.field_name == "type"
        assert "'type' is required" in exc_info.value.message

    def test_unknown_key(self) -> None:
        """Misspelled keys are named."""
        with pytest.raises(ParseError) as exc_info:
            parse("""
policies:
  - type: rate_limit
    max_requests: 5
    window_seconds: 60
    burst: 10
""")
        assert exc_info.value.field_name == "burst"
        assert "not a recognized key" in exc_info.value.message

    def test_wrong_primitive_type(self) -> None:
        """Strings where integers belong are rejected."""
        with pytest.raises(ParseError) as exc_info:
            parse("""
policies:
  - type: rate_limit
    max_requests: "five"
    window_seconds: 60
""")
        assert exc_info.value.field_name == "max_requests"

    def test_unknown_field(self) -> None:
        """`field` must be one of the known identifiers."""
        with pytest.raises(ParseError) as exc_info:
            parse("""
policies:
  - type: allowlist
    field: email
    values: [a]
""")
        assert exc_info.value.field_name == "field"

    def test_all_problems_counted(self) -> None:
        """The message notes how many other problems exist."""
        with pytest.raises(ParseError) as exc_info:
            parse("""
policies:
  - type: rate_limit
  - type: spending_cap
""")
        assert "more problem(s)" in exc_info.value.message
        assert len(exc_info.value.context["errors"]) > 1


class TestLoadPolicy:
    """Tests for loading from disk."""

    def test_load(self, policy_file: Path) -> None:
        """Loads and parses a file."""
        policy = load_policy(policy_file)
        assert len(policy.policies) == 4

    def test_missing_file(self, temp_dir: Path) -> None:
        """Unreadable files raise PolicyReadError."""
        with pytest.raises(PolicyReadError) as exc_info:
            load_policy(temp_dir / "nope.yaml")
        assert exc_info.value.source.endswith("nope.yaml")

    def test_source_in_message(self, temp_dir: Path) -> None:
        """Parse errors name the file."""
        path = temp_dir / "bad.yaml"
        path.write_text("policies: 5\n")
        with pytest.raises(ParseError) as exc_info:
            load_policy(path)
        assert str(path) in exc_info.value.message
