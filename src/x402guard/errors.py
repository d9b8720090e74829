"""
Exception hierarchy for x402guard.

All x402guard exceptions inherit from X402GuardError, allowing callers to catch
every library-specific failure with a single except clause.

Exception Categories:
    - ParseError: Policy file is malformed (wrong shape or primitive types)
    - ConflictError: Policy file parsed but contains contradictory or nonsensical rules
    - ConfigurationError: Valid policy, but the request context lacks a field a rule needs
    - UnsupportedTargetError: Code generation asked for a framework we don't render
    - AuditWriteError: An audit sink could not persist a record

Propagation:
    - ParseError and ConflictError always reach the caller. A billing policy that
      fails to load must never degrade to "no policy".
    - ConfigurationError is raised inside the evaluator and converted to a deny
      decision there. It never escapes PolicyEngine.evaluate().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from x402guard.schema import Conflict


# =============================================================================
# Error Codes
# =============================================================================

# Parse errors: 1xxx
ERROR_PARSE_INVALID = 1001
ERROR_PARSE_READ = 1002
ERROR_PARSE_TRAFFIC = 1003

# Conflict errors: 2xxx
ERROR_POLICY_CONFLICT = 2001

# Evaluation errors: 3xxx
ERROR_CONFIGURATION = 3001

# Code generation errors: 4xxx
ERROR_UNSUPPORTED_TARGET = 4001
ERROR_CODEGEN_TEMPLATE = 4002

# Audit errors: 5xxx
ERROR_AUDIT_WRITE = 5001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class X402GuardError(Exception):
    """
    Base exception for all x402guard errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Parse Errors
# =============================================================================


@dataclass
class ParseError(X402GuardError):
    """
    Raised when a policy file does not have the expected shape.

    Only structure and primitive types are checked at this stage. Whether the
    numbers make sense is the validator's job.

    Attributes:
        rule_index: Index of the offending entry in `policies` (if applicable)
        field_name: Name of the offending key (if applicable)
        source: File name or "<string>" for in-memory input
    """

    rule_index: int | None = None
    field_name: str | None = None
    source: str = "<string>"

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Malformed policy file: {self.source}"
        if self.code == 0:
            self.code = ERROR_PARSE_INVALID
        self.context.update({
            "rule_index": self.rule_index,
            "field": self.field_name,
            "source": self.source,
        })


@dataclass
class PolicyReadError(ParseError):
    """Raised when the policy file cannot be read from disk."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot read policy file {self.source}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_PARSE_READ
        if not self.suggestion:
            self.suggestion = "Check that the path exists and is readable"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class TrafficParseError(ParseError):
    """Raised when a simulated traffic file is malformed."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Malformed traffic file: {self.source}"
        if self.code == 0:
            self.code = ERROR_PARSE_TRAFFIC
        super().__post_init__()


# =============================================================================
# Conflict Errors
# =============================================================================


@dataclass
class ConflictError(X402GuardError):
    """
    Raised when a parsed policy file has error-level diagnostics.

    Always carries the complete list. Callers fix a file in one edit cycle,
    so the list is never truncated to the first problem.

    Attributes:
        conflicts: Every error-severity diagnostic found by the validator
    """

    conflicts: list[Conflict] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            count = len(self.conflicts)
            noun = "problem" if count == 1 else "problems"
            self.message = f"Policy validation failed with {count} {noun}"
        if self.code == 0:
            self.code = ERROR_POLICY_CONFLICT
        if not self.suggestion:
            self.suggestion = "Run `x402guard validate` to see every diagnostic"
        self.context["conflicts"] = [c.message for c in self.conflicts]


# =============================================================================
# Evaluation Errors
# =============================================================================


@dataclass
class ConfigurationError(X402GuardError):
    """
    Raised when a request context lacks something a rule needs.

    This is a programmer error in whatever populated the context. The
    evaluator turns it into a deny decision (fail-closed).

    Attributes:
        rule_index: Rule that could not be checked
        field_name: Missing or unusable context field
    """

    rule_index: int | None = None
    field_name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Request context is missing required field '{self.field_name}'"
        if self.code == 0:
            self.code = ERROR_CONFIGURATION
        self.context.update({
            "rule_index": self.rule_index,
            "field": self.field_name,
        })


# =============================================================================
# Code Generation Errors
# =============================================================================


@dataclass
class UnsupportedTargetError(X402GuardError):
    """Raised when code generation is asked for an unknown framework."""

    target: str = ""
    supported: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unsupported code generation target: {self.target}"
        if self.code == 0:
            self.code = ERROR_UNSUPPORTED_TARGET
        if not self.suggestion and self.supported:
            self.suggestion = f"Choose one of: {', '.join(self.supported)}"
        self.context.update({
            "target": self.target,
            "supported": self.supported,
        })


@dataclass
class CodegenTemplateError(X402GuardError):
    """Raised when a code template fails to render."""

    target: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to render {self.target} template: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CODEGEN_TEMPLATE
        self.context.update({
            "target": self.target,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Audit Errors
# =============================================================================


@dataclass
class AuditWriteError(X402GuardError):
    """Raised when an audit sink cannot write a record."""

    destination: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Audit write to {self.destination} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_AUDIT_WRITE
        if not self.suggestion:
            self.suggestion = "Check that the audit destination is writable"
        self.context.update({
            "destination": self.destination,
            "underlying_error": self.underlying_error,
        })
