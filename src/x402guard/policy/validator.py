"""
Static validation and conflict detection for parsed policy files.

Detects, in one pass and without stopping at the first hit:
    1. Numeric nonsense: non-positive limits, windows and amounts
    2. Unrecognized currency codes
    3. Allowlist/denylist rules with no values
    4. The same (field, value) in both an allowlist and a denylist
    5. Several rate limits, or several spending caps, keyed on the same field
       (warnings: all of them are enforced, which is rarely what was meant)

The validator never mutates the policy. A file is usable iff no diagnostic
has error severity; the evaluator and code generator trust that the caller
checked, and do not re-validate.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal
from typing import assert_never

from x402guard.errors import ConflictError
from x402guard.schema import (
    AllowlistRule,
    Conflict,
    ConflictKind,
    DenylistRule,
    PolicyFile,
    PolicyRule,
    RateLimitRule,
    RuleField,
    Severity,
    SpendingCapRule,
)

logger = logging.getLogger(__name__)

# ISO 4217 codes in common use plus x402 settlement tokens
KNOWN_CURRENCIES: frozenset[str] = frozenset({
    "AUD", "BRL", "CAD", "CHF", "CNY", "CZK", "DKK", "EUR", "GBP", "HKD",
    "IDR", "ILS", "INR", "JPY", "KRW", "MXN", "NOK", "NZD", "PHP", "PLN",
    "SEK", "SGD", "THB", "TRY", "TWD", "USD", "ZAR",
    "USDC", "USDT", "DAI", "EURC", "PYUSD", "SOL", "ETH", "BTC",
})


def validate(policy: PolicyFile) -> list[Conflict]:
    """
    Run every check over a parsed policy file.

    Args:
        policy: Parsed policy file

    Returns:
        Every diagnostic found, errors and warnings, in a stable order.
        An empty list means the file is clean.
    """
    conflicts: list[Conflict] = []

    if not policy.policies:
        conflicts.append(_warning(
            ConflictKind.EMPTY_POLICY,
            "No policies defined: every request will be allowed",
            (),
            ("Add at least one rule under `policies`",),
        ))

    for index, rule in enumerate(policy.policies):
        conflicts.extend(_check_rule(index, rule))

    conflicts.extend(_check_pricing(policy))
    conflicts.extend(_detect_allow_deny_contradictions(policy.policies))
    conflicts.extend(_detect_duplicate_rate_limits(policy.policies))
    conflicts.extend(_detect_duplicate_spending_caps(policy.policies))

    errors = sum(1 for c in conflicts if c.is_error)
    logger.debug(
        "Validated %d rule(s): %d error(s), %d warning(s)",
        len(policy.policies),
        errors,
        len(conflicts) - errors,
    )
    return conflicts


def ensure_valid(policy: PolicyFile) -> list[Conflict]:
    """
    Validate and raise if the file cannot be used.

    Returns:
        Warning-level diagnostics (the file is usable)

    Raises:
        ConflictError: Carrying every error-level diagnostic
    """
    conflicts = validate(policy)
    errors = [c for c in conflicts if c.is_error]
    if errors:
        raise ConflictError(conflicts=errors)
    return [c for c in conflicts if not c.is_error]


def is_known_currency(code: str) -> bool:
    return code in KNOWN_CURRENCIES


# =============================================================================
# Per-rule checks
# =============================================================================


def _check_rule(index: int, rule: PolicyRule) -> list[Conflict]:
    label = f"Rule #{index} ({rule.type})"
    found: list[Conflict] = []

    if isinstance(rule, (AllowlistRule, DenylistRule)):
        if not rule.values:
            found.append(_error(
                ConflictKind.EMPTY_VALUES,
                f"{label}: 'values' is empty",
                (index,),
                ("List at least one value, or remove the rule",),
            ))
    elif isinstance(rule, RateLimitRule):
        if rule.max_requests <= 0:
            found.append(_positive(label, index, "max_requests", rule.max_requests))
        if rule.window_seconds <= 0:
            found.append(_positive(label, index, "window_seconds", rule.window_seconds))
    elif isinstance(rule, SpendingCapRule):
        if rule.max_amount <= 0:
            found.append(_positive(label, index, "max_amount", rule.max_amount))
        if rule.window_seconds <= 0:
            found.append(_positive(label, index, "window_seconds", rule.window_seconds))
        if not is_known_currency(rule.currency):
            found.append(_unknown_currency(f"{label}: currency", rule.currency, (index,)))
    else:
        assert_never(rule)

    return found


def _check_pricing(policy: PolicyFile) -> list[Conflict]:
    pricing = policy.pricing
    if pricing is None:
        return []
    found: list[Conflict] = []
    if pricing.amount <= 0:
        found.append(_error(
            ConflictKind.INVALID_VALUE,
            f"Pricing: 'amount' must be greater than 0 (got {pricing.amount})",
            (),
            ("Set pricing.amount to the default price per request",),
        ))
    if not is_known_currency(pricing.currency):
        found.append(_unknown_currency("Pricing: currency", pricing.currency, ()))
    return found


# =============================================================================
# Cross-rule checks
# =============================================================================


def _detect_allow_deny_contradictions(rules: list[PolicyRule]) -> list[Conflict]:
    """One diagnostic per (allowlist, denylist) pair sharing a field value."""
    allowlists: list[tuple[int, AllowlistRule]] = []
    denylists: list[tuple[int, DenylistRule]] = []
    for index, rule in enumerate(rules):
        if isinstance(rule, AllowlistRule):
            allowlists.append((index, rule))
        elif isinstance(rule, DenylistRule):
            denylists.append((index, rule))

    found: list[Conflict] = []
    for allow_index, allow in allowlists:
        for deny_index, deny in denylists:
            if allow.field != deny.field:
                continue
            overlap = sorted(set(allow.values) & set(deny.values))
            if not overlap:
                continue
            shown = ", ".join(repr(v) for v in overlap)
            first, second = sorted((allow_index, deny_index))
            found.append(_error(
                ConflictKind.ALLOW_DENY_CONTRADICTION,
                f"Rule #{allow_index} (allowlist) and rule #{deny_index} (denylist) "
                f"both list {allow.field.value} {shown}",
                (first, second),
                (
                    f"Remove {shown} from the denylist (rule #{deny_index})",
                    f"Remove {shown} from the allowlist (rule #{allow_index})",
                ),
            ))
    return found


def _detect_duplicate_rate_limits(rules: list[PolicyRule]) -> list[Conflict]:
    by_field: dict[RuleField, list[tuple[int, RateLimitRule]]] = defaultdict(list)
    for index, rule in enumerate(rules):
        if isinstance(rule, RateLimitRule):
            by_field[rule.field].append((index, rule))

    found: list[Conflict] = []
    for field, group in by_field.items():
        if len(group) < 2:
            continue
        indices = tuple(index for index, _ in group)
        details = "; ".join(
            f"#{index}: {rule.max_requests} requests / {rule.window_seconds}s"
            for index, rule in group
        )
        strictest = _most_restrictive(
            (index, Decimal(rule.max_requests), rule.window_seconds) for index, rule in group
        )
        found.append(_warning(
            ConflictKind.DUPLICATE_RATE_LIMIT,
            f"{len(group)} rate limits keyed on {field.value} ({details}); "
            "each is tracked and enforced separately",
            indices,
            _duplicate_suggestions(strictest),
        ))
    return found


def _detect_duplicate_spending_caps(rules: list[PolicyRule]) -> list[Conflict]:
    by_field: dict[RuleField, list[tuple[int, SpendingCapRule]]] = defaultdict(list)
    for index, rule in enumerate(rules):
        if isinstance(rule, SpendingCapRule):
            by_field[rule.field].append((index, rule))

    found: list[Conflict] = []
    for field, group in by_field.items():
        if len(group) < 2:
            continue
        indices = tuple(index for index, _ in group)
        details = "; ".join(
            f"#{index}: {rule.max_amount} {rule.currency} / {rule.window_seconds}s"
            for index, rule in group
        )
        strictest = _most_restrictive(
            (index, rule.max_amount, rule.window_seconds) for index, rule in group
        )
        found.append(_warning(
            ConflictKind.DUPLICATE_SPENDING_CAP,
            f"{len(group)} spending caps keyed on {field.value} ({details}); "
            "each is tracked and enforced separately",
            indices,
            _duplicate_suggestions(strictest),
        ))
    return found


def _most_restrictive(candidates: Iterable[tuple[int, int | Decimal, int]]) -> int | None:
    """Index with the lowest limit per second, ignoring non-positive windows."""
    best: tuple[Decimal, int] | None = None
    for index, limit, window in candidates:
        if window <= 0:
            continue
        rate = limit / Decimal(window)
        if best is None or rate < best[0]:
            best = (rate, index)
    return best[1] if best else None


def _duplicate_suggestions(strictest: int | None) -> tuple[str, ...]:
    keep = (
        f"Keep rule #{strictest} (most restrictive) and remove the others"
        if strictest is not None
        else "Remove the redundant rules"
    )
    return (keep, "Keep all of them if every limit is intended to apply")


# =============================================================================
# Diagnostic builders
# =============================================================================


def _positive(label: str, index: int, key: str, value: object) -> Conflict:
    return _error(
        ConflictKind.INVALID_VALUE,
        f"{label}: '{key}' must be greater than 0 (got {value})",
        (index,),
        (f"Set '{key}' to a positive value",),
    )


def _unknown_currency(label: str, code: str, indices: tuple[int, ...]) -> Conflict:
    hint = f"Did you mean {code.upper()!r}?" if is_known_currency(code.upper()) else (
        "Use a recognized code such as USDC or USD"
    )
    return _error(
        ConflictKind.UNKNOWN_CURRENCY,
        f"{label} {code!r} is not a recognized currency code",
        indices,
        (hint,),
    )


def _error(
    kind: ConflictKind,
    message: str,
    indices: tuple[int, ...],
    suggestions: tuple[str, ...] = (),
) -> Conflict:
    return Conflict(
        severity=Severity.ERROR,
        kind=kind,
        message=message,
        rule_indices=indices,
        suggestions=suggestions,
    )


def _warning(
    kind: ConflictKind,
    message: str,
    indices: tuple[int, ...],
    suggestions: tuple[str, ...] = (),
) -> Conflict:
    return Conflict(
        severity=Severity.WARNING,
        kind=kind,
        message=message,
        rule_indices=indices,
        suggestions=suggestions,
    )
