"""
Policy evaluator for x402guard.

The evaluator is the in-process reference for what generated middleware does.
Every request passes through the rules of one PolicyFile, in declaration order.

Design Principles:
    - First deny wins: evaluation stops at the first rule that rejects
    - Fail-closed: a context the rules cannot be checked against is denied
    - Every stateful rule passed through records its event, so several rules
      on the same scope each consume their own budget
    - Predictable: same policy, context and store contents give the same decision

How it works:
    1. The policy is lowered once into an ordered list of CheckDescriptor
    2. Each descriptor is checked against the request context
    3. Rate limits and spending caps check-and-record atomically in the store
    4. The first denial (or the final allow) becomes the Decision
    5. When audit is enabled and a sink was supplied, the decision is recorded

Evaluation time is the context timestamp, not the wall clock, so simulated
traffic and replayed requests see the windows they would have seen live.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import assert_never

from x402guard.audit import AuditRecord, AuditSink
from x402guard.errors import ConfigurationError
from x402guard.policy.checks import CheckDescriptor, build_checks, quantize_amount
from x402guard.policy.store import StateStore
from x402guard.schema import (
    Decision,
    DecisionReason,
    PolicyFile,
    RequestContext,
    RuleType,
)

logger = logging.getLogger(__name__)


class PolicyEngine:
    """
    Evaluates request contexts against one validated PolicyFile.

    Usage:
        engine = PolicyEngine(policy)
        decision = engine.evaluate(RequestContext.now(agent_id="a1", amount=Decimal("0.5")))
        if not decision.allowed:
            respond(decision.http_status, decision.message)

    The policy must have passed the validator; the engine does not re-check it.

    Attributes:
        policy: The policy file being enforced
        store: Sliding-window state shared by every evaluation
        sink: Where audit records go (None disables auditing)
        checks: Lowered rules, in evaluation order
    """

    def __init__(
        self,
        policy: PolicyFile,
        store: StateStore | None = None,
        sink: AuditSink | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            policy: Validated policy file
            store: State store to use (a fresh one by default)
            sink: Audit sink, used only when the policy enables auditing
        """
        self.policy = policy
        self.store = store if store is not None else StateStore()
        self.sink = sink
        self.checks: list[CheckDescriptor] = build_checks(policy)

    def evaluate(self, context: RequestContext) -> Decision:
        """
        Decide one request.

        Args:
            context: The request, with its arrival timestamp

        Returns:
            Decision; never raises for a malformed context
        """
        now = context.timestamp.timestamp()
        decision = Decision.allow()

        for check in self.checks:
            try:
                denial = self._apply(check, context, now)
            except ConfigurationError as e:
                logger.warning("%s: %s", check.label, e.message)
                denial = Decision(
                    allowed=False,
                    reason=DecisionReason.CONFIGURATION_ERROR,
                    matched_rule=check.index,
                    rule_type=check.kind,
                    message=f"{check.label}: {e.message}",
                )
            if denial is not None:
                decision = denial
                break

        logger.debug(
            "agent=%s wallet=%s ip=%s -> %s%s",
            context.agent_id,
            context.wallet_address,
            context.ip_address,
            decision.reason.value,
            f" (rule #{decision.matched_rule})" if decision.matched_rule is not None else "",
        )

        if self.sink is not None and self.policy.audit.enabled:
            self.sink.write(AuditRecord.from_decision(context, decision))

        return decision

    def reset(self) -> None:
        """Forget all window state."""
        self.store.reset()

    # =========================================================================
    # Per-kind checks (return a denial, or None to continue)
    # =========================================================================

    def _apply(
        self,
        check: CheckDescriptor,
        context: RequestContext,
        now: float,
    ) -> Decision | None:
        if check.kind == RuleType.ALLOWLIST:
            return self._check_allowlist(check, context)
        elif check.kind == RuleType.DENYLIST:
            return self._check_denylist(check, context)
        elif check.kind == RuleType.RATE_LIMIT:
            return self._check_rate_limit(check, context, now)
        elif check.kind == RuleType.SPENDING_CAP:
            return self._check_spending_cap(check, context, now)
        else:
            assert_never(check.kind)

    def _check_allowlist(self, check: CheckDescriptor, context: RequestContext) -> Decision | None:
        value = _require(check, context)
        if value in check.values:
            return None
        return _deny(check, f"{check.field.value} '{value}' is not on the allowlist")

    def _check_denylist(self, check: CheckDescriptor, context: RequestContext) -> Decision | None:
        value = _require(check, context)
        if value not in check.values:
            return None
        return _deny(check, f"{check.field.value} '{value}' is denylisted")

    def _check_rate_limit(
        self,
        check: CheckDescriptor,
        context: RequestContext,
        now: float,
    ) -> Decision | None:
        if check.max_requests is None or check.window_seconds is None:
            raise ValueError(f"{check.label} is missing its limit or window")
        value = _require(check, context)
        result = self.store.try_consume(
            check.state_key(value),
            window_seconds=check.window_seconds,
            max_requests=check.max_requests,
            now=now,
        )
        if result.allowed:
            return None
        retry_after = (
            timedelta(seconds=result.retry_after) if result.retry_after is not None else None
        )
        return _deny(
            check,
            f"Rate limit of {check.max_requests} request(s) per {check.window_seconds}s "
            f"reached for {check.field.value} '{value}'",
            retry_after=retry_after,
        )

    def _check_spending_cap(
        self,
        check: CheckDescriptor,
        context: RequestContext,
        now: float,
    ) -> Decision | None:
        if check.max_amount is None or check.window_seconds is None:
            raise ValueError(f"{check.label} is missing its cap or window")
        value = _require(check, context)
        amount = self._requested_amount(check, context)
        # Compared in micro-units, like the generated middleware
        result = self.store.try_spend(
            check.state_key(value),
            window_seconds=check.window_seconds,
            amount=quantize_amount(amount),
            max_amount=quantize_amount(check.max_amount),
            now=now,
        )
        if result.allowed:
            return None
        return _deny(
            check,
            f"Spending cap of {check.max_amount} {check.currency} per "
            f"{check.window_seconds}s exceeded for {check.field.value} '{value}' "
            f"({result.total} spent, {amount} requested)",
        )

    def _requested_amount(self, check: CheckDescriptor, context: RequestContext) -> Decimal:
        amount = context.amount
        if amount is None:
            if self.policy.pricing is None:
                raise ConfigurationError(rule_index=check.index, field_name="amount")
            amount = self.policy.pricing.amount
        if amount < 0:
            raise ConfigurationError(
                message=f"Requested amount must not be negative (got {amount})",
                rule_index=check.index,
                field_name="amount",
            )
        return amount


def evaluate(
    policy: PolicyFile,
    context: RequestContext,
    store: StateStore,
) -> Decision:
    """
    Evaluate one request without keeping an engine around.

    The store carries all state between calls, so repeated calls with the same
    store behave exactly like one long-lived PolicyEngine without an audit sink.
    """
    return PolicyEngine(policy, store=store).evaluate(context)


def _require(check: CheckDescriptor, context: RequestContext) -> str:
    value = context.value_of(check.field)
    if value is None:
        raise ConfigurationError(rule_index=check.index, field_name=check.field.value)
    return value


def _deny(
    check: CheckDescriptor,
    detail: str,
    retry_after: timedelta | None = None,
) -> Decision:
    return Decision.deny(
        reason=check.deny_reason,
        rule_index=check.index,
        rule_type=check.kind,
        message=f"{check.label}: {detail}",
        retry_after=retry_after,
    )
