"""
Code generator for enforcement middleware.

Renders a validated PolicyFile into self-contained JavaScript for one web
framework. Both targets include the same core template, rendered from the same
CheckDescriptor list the in-process evaluator runs, so rule order, state keys,
deny reasons and status codes cannot drift between them. A target template
only adds the framework glue: reading the request and writing the response.

Generation is pure: nothing is written to disk here.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from x402guard import __version__
from x402guard.audit import AUDIT_COLUMNS
from x402guard.errors import CodegenTemplateError, UnsupportedTargetError
from x402guard.policy.checks import AMOUNT_UNITS, CheckDescriptor, build_checks, to_units
from x402guard.schema import PolicyFile, RuleType

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class Target:
    """
    A framework we can render enforcement code for.

    Attributes:
        name: CLI name of the target
        template: Template file under templates/
        description: One-line description for help output
        default_file_name: Suggested output file name
    """

    name: str
    template: str
    description: str
    default_file_name: str = "x402-policy.js"


TARGETS: dict[str, Target] = {
    "express": Target(
        name="express",
        template="express.js.j2",
        description="Express middleware factory (x402PolicyMiddleware)",
    ),
    "fastify": Target(
        name="fastify",
        template="fastify.js.j2",
        description="Fastify plugin with an onRequest hook",
    ),
}


def supported_targets() -> list[str]:
    return sorted(TARGETS)


def get_target(name: str) -> Target:
    """
    Look up a target by name (case-insensitive).

    Raises:
        UnsupportedTargetError: If no such target exists
    """
    target = TARGETS.get(name.strip().lower())
    if target is None:
        raise UnsupportedTargetError(target=name, supported=supported_targets())
    return target


@lru_cache(maxsize=1)
def _get_jinja2_env() -> Environment:
    """Template environment, created on first use."""
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def generate(policy: PolicyFile, target: str, source_file_name: str = "policy.yaml") -> str:
    """
    Render enforcement source for one target.

    The policy must already have passed the validator; it is not re-checked.

    Args:
        policy: Validated policy file
        target: Target framework name (see TARGETS)
        source_file_name: Policy file name, quoted in the generated header

    Returns:
        JavaScript source text

    Raises:
        UnsupportedTargetError: If the target is unknown
        CodegenTemplateError: If the template fails to render
    """
    selected = get_target(target)
    checks = build_checks(policy)
    context = build_template_context(policy, checks, source_file_name)

    try:
        template = _get_jinja2_env().get_template(selected.template)
        source = template.render(**context)
    except TemplateError as e:
        raise CodegenTemplateError(target=selected.name, underlying_error=str(e)) from e

    logger.info(
        "Rendered %s target from %s (%d rule(s), %d bytes)",
        selected.name,
        source_file_name,
        len(checks),
        len(source),
    )
    return source


def build_template_context(
    policy: PolicyFile,
    checks: list[CheckDescriptor],
    source_file_name: str,
) -> dict[str, Any]:
    """Plain, JSON-safe values the templates render from."""
    audit = policy.audit
    pricing = policy.pricing
    return {
        "version": __version__,
        "source_file_name": " ".join(source_file_name.splitlines()),
        "amount_units": AMOUNT_UNITS,
        "default_amount_units": to_units(pricing.amount) if pricing is not None else None,
        "audit": {
            "enabled": audit.enabled,
            "format": audit.format.value,
            "destination": None if audit.writes_to_stdout else audit.destination,
        },
        "audit_columns": list(AUDIT_COLUMNS),
        "checks": [_check_context(check) for check in checks],
        "has_rate_limits": any(c.kind == RuleType.RATE_LIMIT for c in checks),
        "has_spending_caps": any(c.kind == RuleType.SPENDING_CAP for c in checks),
    }


def _check_context(check: CheckDescriptor) -> dict[str, Any]:
    window_seconds = check.window_seconds
    return {
        "index": check.index,
        "kind": check.kind.value,
        "field": check.field.value,
        "label": check.label,
        "summary": check.summary(),
        "reason": check.deny_reason.value,
        "status": check.status,
        "values": list(check.values),
        "key_prefix": check.state_key(""),
        "max_requests": check.max_requests,
        "max_amount": str(check.max_amount) if check.max_amount is not None else None,
        "max_amount_units": check.max_amount_units,
        "currency": check.currency,
        "cap_text": f"{check.max_amount} {check.currency}" if check.max_amount is not None else None,
        "window_seconds": window_seconds,
        "window_ms": window_seconds * 1000 if window_seconds is not None else None,
    }
