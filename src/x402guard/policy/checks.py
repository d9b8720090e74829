"""
Check descriptors: the one intermediate form of a policy file.

The evaluator and both code generation targets consume the same ordered list
of CheckDescriptor, so generated handlers and in-process evaluation share one
source of truth for rule order, state keys, deny reasons and status codes.
`describe_rule` is the single exhaustive dispatch over rule variants; adding a
rule type fails loudly here until it is handled.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import assert_never

from x402guard.schema import (
    HTTP_STATUS_BY_REASON,
    AllowlistRule,
    DecisionReason,
    DenylistRule,
    PolicyFile,
    PolicyRule,
    RateLimitRule,
    RuleField,
    RuleType,
    SpendingCapRule,
)

# Generated code compares amounts as integers of this many units per 1.0
AMOUNT_UNITS = 1_000_000


@dataclass(frozen=True)
class CheckDescriptor:
    """
    One guard, in evaluation order.

    Attributes:
        index: Position of the source rule in the policy file
        kind: Rule type
        field: Request identifier matched or keyed on
        deny_reason: Reason reported when this check denies
        status: HTTP status a generated handler answers with on denial
        values: Identifier set for allowlist/denylist
        max_requests: Rate limit ceiling
        max_amount: Spending cap ceiling
        currency: Spending cap currency
        window_seconds: Sliding window width for stateful checks
    """

    index: int
    kind: RuleType
    field: RuleField
    deny_reason: DecisionReason
    status: int
    values: tuple[str, ...] = ()
    max_requests: int | None = None
    max_amount: Decimal | None = None
    currency: str | None = None
    window_seconds: int | None = None

    @property
    def stateful(self) -> bool:
        return self.kind in (RuleType.RATE_LIMIT, RuleType.SPENDING_CAP)

    @property
    def label(self) -> str:
        return f"Rule #{self.index} ({self.kind.value})"

    @property
    def max_amount_units(self) -> int | None:
        if self.max_amount is None:
            return None
        return to_units(self.max_amount)

    def state_key(self, value: str) -> str:
        """Window key for one identifier value under this rule."""
        return f"{self.index}:{self.field.value}:{value}"

    def summary(self) -> str:
        """One-line plain-language description."""
        if self.kind in (RuleType.ALLOWLIST, RuleType.DENYLIST):
            verb = "allow only" if self.kind == RuleType.ALLOWLIST else "deny"
            return f"{verb} {self.field.value} in {len(self.values)} listed value(s)"
        if self.kind == RuleType.RATE_LIMIT:
            return (
                f"at most {self.max_requests} request(s) per {self.window_seconds}s "
                f"per {self.field.value}"
            )
        return (
            f"at most {self.max_amount} {self.currency} per {self.window_seconds}s "
            f"per {self.field.value}"
        )


def to_units(amount: Decimal) -> int:
    """Convert an amount to integer micro-units, rounding half up."""
    return int((amount * AMOUNT_UNITS).to_integral_value(rounding=ROUND_HALF_UP))


def quantize_amount(amount: Decimal) -> Decimal:
    """Round an amount to whole micro-units, the precision caps are compared at."""
    return Decimal(to_units(amount)) / AMOUNT_UNITS


def describe_rule(index: int, rule: PolicyRule) -> CheckDescriptor:
    """Build the descriptor for one rule."""
    if isinstance(rule, AllowlistRule):
        return _descriptor(
            index,
            RuleType.ALLOWLIST,
            rule.field,
            DecisionReason.NOT_ALLOWLISTED,
            values=tuple(rule.values),
        )
    elif isinstance(rule, DenylistRule):
        return _descriptor(
            index,
            RuleType.DENYLIST,
            rule.field,
            DecisionReason.DENYLISTED,
            values=tuple(rule.values),
        )
    elif isinstance(rule, RateLimitRule):
        return _descriptor(
            index,
            RuleType.RATE_LIMIT,
            rule.field,
            DecisionReason.RATE_LIMITED,
            max_requests=rule.max_requests,
            window_seconds=rule.window_seconds,
        )
    elif isinstance(rule, SpendingCapRule):
        return _descriptor(
            index,
            RuleType.SPENDING_CAP,
            rule.field,
            DecisionReason.SPENDING_CAP_EXCEEDED,
            max_amount=rule.max_amount,
            currency=rule.currency,
            window_seconds=rule.window_seconds,
        )
    else:
        assert_never(rule)


def build_checks(policy: PolicyFile) -> list[CheckDescriptor]:
    """Descriptors for every rule, in declaration order."""
    return [describe_rule(index, rule) for index, rule in enumerate(policy.policies)]


def _descriptor(
    index: int,
    kind: RuleType,
    field: RuleField,
    reason: DecisionReason,
    **params: object,
) -> CheckDescriptor:
    return CheckDescriptor(
        index=index,
        kind=kind,
        field=field,
        deny_reason=reason,
        status=HTTP_STATUS_BY_REASON[reason],
        **params,  # type: ignore[arg-type]
    )
