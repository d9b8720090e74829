"""
Reporting module for x402guard.

Human-readable and machine-readable output for the CLI commands.

Output formats:
    - Console: Rich tables for diagnostics and simulation timelines
    - JSON: Structured output for CI and scripting

Example:
    from x402guard.report import print_validation_report, build_validation_dict, to_json

    print_validation_report(console, "policy.yaml", policy, conflicts)
    print(to_json(build_validation_dict("policy.yaml", policy, conflicts)))
"""

from x402guard.report.console import (
    print_rules,
    print_simulation_report,
    print_validation_report,
)
from x402guard.report.json import (
    build_error_dict,
    build_generation_dict,
    build_simulation_dict,
    build_validation_dict,
    serialize_decision,
    to_json,
)

__all__ = [
    "build_error_dict",
    "build_generation_dict",
    "build_simulation_dict",
    "build_validation_dict",
    "print_rules",
    "print_simulation_report",
    "print_validation_report",
    "serialize_decision",
    "to_json",
]
