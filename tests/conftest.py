"""
Pytest configuration and fixtures for x402guard tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable, Generator

import pytest

from x402guard.policy import parse
from x402guard.schema import PolicyFile, RequestContext

# Fixed origin for deterministic timestamps
T0 = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_policy_yaml() -> str:
    """Return a policy with one rule of each kind."""
    return """
policies:
  - type: denylist
    field: wallet_address
    values: ["0xBAD"]
  - type: allowlist
    field: agent_id
    values: ["agent-1", "agent-2"]
  - type: rate_limit
    max_requests: 3
    window_seconds: 60
  - type: spending_cap
    max_amount: 10.00
    currency: USDC
    window_seconds: 86400
pricing:
  amount: 0.50
  currency: USDC
"""


@pytest.fixture
def sample_policy(sample_policy_yaml: str) -> PolicyFile:
    """Parsed sample policy."""
    return parse(sample_policy_yaml)


@pytest.fixture
def conflicting_policy_yaml() -> str:
    """Return a policy with three independent errors."""
    return """
policies:
  - type: allowlist
    field: agent_id
    values: ["a1"]
  - type: denylist
    field: agent_id
    values: ["a1"]
  - type: rate_limit
    max_requests: 0
    window_seconds: 60
  - type: spending_cap
    max_amount: 5
    currency: XYZ
    window_seconds: 3600
"""


@pytest.fixture
def policy_file(temp_dir: Path, sample_policy_yaml: str) -> Path:
    """Sample policy written to disk."""
    path = temp_dir / "policy.yaml"
    path.write_text(sample_policy_yaml)
    return path


@pytest.fixture
def at() -> Callable[..., RequestContext]:
    """Build request contexts stamped a number of seconds after T0."""

    def _at(seconds: float, **kwargs) -> RequestContext:
        return RequestContext(timestamp=T0 + timedelta(seconds=seconds), **kwargs)

    return _at
