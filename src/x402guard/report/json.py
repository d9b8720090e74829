"""
JSON reports for x402guard.

Structured output for the CLI's --json flag.

Design Principles:
    - Consistent schema: every report carries report_version and kind
    - Human-readable keys: descriptive snake_case names
    - Amounts as strings, timestamps as ISO 8601
"""

import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from x402guard import __version__
from x402guard.errors import X402GuardError
from x402guard.policy.checks import build_checks
from x402guard.schema import Conflict, Decision, PolicyFile
from x402guard.simulate import SimulationResult

REPORT_VERSION = "1.0"


def to_json(report: dict[str, Any], indent: int = 2) -> str:
    return json.dumps(report, indent=indent, default=_json_serializer)


def build_validation_dict(
    source: str,
    policy: PolicyFile | None,
    conflicts: list[Conflict],
    error: X402GuardError | None = None,
) -> dict[str, Any]:
    """
    Build the validation report.

    Args:
        source: Policy file name
        policy: Parsed policy, or None when parsing failed
        conflicts: Validator output
        error: Parse error, when parsing failed
    """
    errors = [c for c in conflicts if c.is_error]
    return {
        **_envelope("validation"),
        "source": source,
        "valid": error is None and not errors,
        "rules": [
            {
                "index": check.index,
                "type": check.kind.value,
                "field": check.field.value,
                "summary": check.summary(),
            }
            for check in (build_checks(policy) if policy is not None else [])
        ],
        "diagnostics": [_serialize_conflict(c) for c in conflicts],
        "error_count": len(errors) + (1 if error is not None else 0),
        "warning_count": len(conflicts) - len(errors),
        "error": error.to_dict() if error is not None else None,
    }


def build_generation_dict(
    source: str,
    target: str,
    out: str | None,
    code: str | None,
    warnings: list[Conflict],
) -> dict[str, Any]:
    """Build the report for a successful `generate` run."""
    return {
        **_envelope("generation"),
        "source": source,
        "target": target,
        "out": out,
        "bytes": len(code.encode("utf-8")) if code is not None else 0,
        "code": code if out is None else None,
        "warnings": [_serialize_conflict(c) for c in warnings],
    }


def build_simulation_dict(source: str, traffic: str, result: SimulationResult) -> dict[str, Any]:
    """Build the report for a simulation run."""
    return {
        **_envelope("simulation"),
        "policy": source,
        "traffic": traffic,
        "statistics": {
            "total": result.total,
            "allowed": result.allowed,
            "denied": result.denied,
            "by_reason": {reason.value: count for reason, count in result.by_reason.items()},
            "by_rule": {str(rule): count for rule, count in result.by_rule.items()},
            "duration_ms": result.duration_ms,
        },
        "requests": [
            {
                "sequence": item.sequence,
                "timestamp": item.context.timestamp.isoformat(),
                "agent_id": item.context.agent_id,
                "wallet_address": item.context.wallet_address,
                "ip_address": item.context.ip_address,
                "amount": item.context.amount,
                "endpoint": item.context.endpoint,
                "decision": serialize_decision(item.decision),
            }
            for item in result.requests
        ],
    }


def build_error_dict(error: X402GuardError) -> dict[str, Any]:
    return {**_envelope("error"), "error": error.to_dict()}


def serialize_decision(decision: Decision) -> dict[str, Any]:
    return {
        "allowed": decision.allowed,
        "reason": decision.reason.value,
        "status": decision.http_status,
        "matched_rule": decision.matched_rule,
        "rule_type": decision.rule_type.value if decision.rule_type else None,
        "message": decision.message,
        "retry_after_seconds": (
            decision.retry_after.total_seconds() if decision.retry_after is not None else None
        ),
    }


def _serialize_conflict(conflict: Conflict) -> dict[str, Any]:
    return {
        "severity": conflict.severity.value,
        "kind": conflict.kind.value,
        "message": conflict.message,
        "rule_indices": list(conflict.rule_indices),
        "suggestions": list(conflict.suggestions),
    }


def _envelope(kind: str) -> dict[str, Any]:
    return {
        "report_version": REPORT_VERSION,
        "kind": kind,
        "x402guard_version": __version__,
        "generated_at": datetime.now(UTC).isoformat(),
    }


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
