"""
Policy module for x402guard.

Loads policy files, checks them, and evaluates requests against them.

Key concepts:
    - parse / load_policy: YAML to PolicyFile (shape only)
    - validate / ensure_valid: every business-rule problem, in one pass
    - StateStore: sliding-window event history for stateful rules
    - PolicyEngine: first-deny-wins evaluation in declaration order

A policy file must pass validation before it reaches the engine or the code
generator. Neither re-validates.
"""

from x402guard.policy.checks import CheckDescriptor, build_checks
from x402guard.policy.engine import PolicyEngine, evaluate
from x402guard.policy.parser import load_policy, parse
from x402guard.policy.store import StateStore
from x402guard.policy.validator import ensure_valid, validate

__all__ = [
    "CheckDescriptor",
    "PolicyEngine",
    "StateStore",
    "build_checks",
    "ensure_valid",
    "evaluate",
    "load_policy",
    "parse",
    "validate",
]
