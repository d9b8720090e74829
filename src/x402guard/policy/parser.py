"""
Policy file parser.

Turns YAML text into a PolicyFile. Only the shape is checked here: required
keys present, primitive types right, rule `type` and `field` drawn from the
known sets. Whether a window of zero seconds makes sense is left to the
validator, so that one `validate` run can report every business-rule problem.

Errors point at the offending rule index and key, e.g.
    Rule #2 (rate_limit): 'window_seconds' is required
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from x402guard.errors import ParseError, PolicyReadError
from x402guard.schema import PolicyFile


def parse(data: bytes | str, source: str = "<string>") -> PolicyFile:
    """
    Parse a policy file from raw YAML.

    Args:
        data: YAML document (bytes are decoded as UTF-8)
        source: Name used in error messages

    Returns:
        PolicyFile with rules in declaration order

    Raises:
        ParseError: If the YAML is invalid or does not match the schema
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(
                message=f"Policy file {source} is not valid UTF-8: {e}",
                source=source,
            ) from e

    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise ParseError(
            message=f"Invalid YAML in {source}: {e}",
            source=source,
            suggestion="Check indentation and quoting",
        ) from e

    if document is None:
        raise ParseError(
            message=f"Policy file {source} is empty",
            source=source,
            suggestion="Add a top-level `policies:` list",
        )
    if not isinstance(document, dict):
        raise ParseError(
            message=f"Policy file {source} must be a mapping with a `policies` key",
            source=source,
        )

    try:
        return PolicyFile.model_validate(document)
    except ValidationError as e:
        raise _to_parse_error(e, document, source) from e


def load_policy(path: Path | str) -> PolicyFile:
    """
    Load a policy file from disk.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed PolicyFile (not yet validated)

    Raises:
        PolicyReadError: If the file cannot be read
        ParseError: If the content is malformed
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise PolicyReadError(source=str(path), underlying_error=str(e)) from e
    return parse(data, source=str(path))


def _to_parse_error(
    error: ValidationError,
    document: dict[str, Any],
    source: str,
) -> ParseError:
    """Describe the first schema violation in plain language."""
    details = error.errors()
    first = details[0]
    loc = first["loc"]

    rule_index: int | None = None
    field_name: str | None = None

    if len(loc) >= 2 and loc[0] == "policies" and isinstance(loc[1], int):
        rule_index = loc[1]
        rule_type = _declared_type(document, rule_index)
        if first["type"] in ("union_tag_invalid", "union_tag_not_found"):
            field_name = "type"
            if first["type"] == "union_tag_not_found":
                detail = "'type' is required"
            else:
                detail = (
                    f"unknown type {rule_type!r}; expected one of "
                    "allowlist, denylist, rate_limit, spending_cap"
                )
        else:
            # loc is ("policies", idx, <tag>, <key>, ...)
            keys = [str(part) for part in loc[3:]]
            field_name = keys[0] if keys else None
            detail = _describe(first, ".".join(keys))
        label = f"Rule #{rule_index}" + (f" ({rule_type})" if rule_type else "")
        message = f"{label}: {detail}"
    else:
        keys = [str(part) for part in loc]
        field_name = keys[-1] if keys else None
        message = _describe(first, ".".join(keys))

    if len(details) > 1:
        message += f" (and {len(details) - 1} more problem(s))"

    return ParseError(
        message=f"{source}: {message}",
        rule_index=rule_index,
        field_name=field_name,
        source=source,
        context={"errors": [_error_summary(d) for d in details]},
    )


def _declared_type(document: dict[str, Any], index: int) -> str | None:
    policies = document.get("policies")
    if isinstance(policies, list) and index < len(policies):
        entry = policies[index]
        if isinstance(entry, dict):
            declared = entry.get("type")
            return str(declared) if declared is not None else None
    return None


def _describe(detail: Any, key: str) -> str:
    kind = detail["type"]
    if kind == "missing":
        return f"'{key}' is required"
    if kind == "extra_forbidden":
        return f"'{key}' is not a recognized key"
    if not key:
        return detail["msg"]
    return f"'{key}' {_lowercase_first(detail['msg'])}"


def _lowercase_first(text: str) -> str:
    return text[:1].lower() + text[1:] if text else text


def _error_summary(detail: Any) -> dict[str, Any]:
    return {
        "loc": [str(part) for part in detail["loc"]],
        "type": detail["type"],
        "msg": detail["msg"],
    }
