"""
Traffic simulation for x402guard.

The Simulator replays a scripted stream of requests through one PolicyEngine
so a policy can be tried out before any middleware is generated. It is the
local counterpart of the generated handlers: same rules, same order, same
window arithmetic.

Traffic files look like:

    start: 2026-01-01T00:00:00Z
    requests:
      - agent_id: agent-1
        amount: 2.50
        at: 0
      - agent_id: agent-1
        amount: 2.50
        at: 10
        repeat: 5
        interval: 1

Execution Flow:
    1. Expand every entry by `repeat`, spacing copies `interval` seconds apart
    2. Order the expanded requests by arrival time (stable for ties)
    3. Evaluate each one against a fresh StateStore
    4. Tally decisions by reason and by rule
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator

from x402guard.audit import AuditSink
from x402guard.errors import TrafficParseError
from x402guard.policy.engine import PolicyEngine
from x402guard.policy.store import StateStore
from x402guard.schema import Decision, DecisionReason, PolicyFile, RequestContext

logger = logging.getLogger(__name__)


# =============================================================================
# Traffic Models
# =============================================================================


class TrafficRequest(BaseModel):
    """
    One scripted request (or a burst of identical ones).

    Attributes:
        agent_id: Calling agent identifier
        wallet_address: Paying wallet address
        ip_address: Client IP address
        amount: Requested payment amount
        endpoint: Requested path
        at: Arrival offset from the traffic start, in seconds
        repeat: How many identical requests to send
        interval: Seconds between repeated requests
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    agent_id: StrictStr | None = None
    wallet_address: StrictStr | None = None
    ip_address: StrictStr | None = None
    amount: Decimal | None = None
    endpoint: StrictStr | None = None
    at: float = Field(default=0.0, ge=0)
    repeat: int = Field(default=1, ge=1)
    interval: float = Field(default=0.0, ge=0)

    @field_validator("agent_id", "wallet_address", "ip_address", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Any:
        if isinstance(v, float):
            return Decimal(str(v))
        return v


class TrafficFile(BaseModel):
    """
    A scripted traffic run.

    Attributes:
        start: Wall-clock time of offset 0 (defaults to now)
        requests: Scripted requests
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: datetime | None = None
    requests: list[TrafficRequest] = Field(default_factory=list)

    def expand(self, start: datetime | None = None) -> list[RequestContext]:
        """Concrete request contexts, ordered by arrival time."""
        origin = start or self.start or datetime.now(UTC)
        if origin.tzinfo is None:
            origin = origin.replace(tzinfo=UTC)

        timed: list[tuple[float, RequestContext]] = []
        for entry in self.requests:
            for n in range(entry.repeat):
                offset = entry.at + n * entry.interval
                context = RequestContext(
                    agent_id=entry.agent_id,
                    wallet_address=entry.wallet_address,
                    ip_address=entry.ip_address,
                    amount=entry.amount,
                    endpoint=entry.endpoint,
                    timestamp=origin + timedelta(seconds=offset),
                )
                timed.append((offset, context))
        timed.sort(key=lambda pair: pair[0])
        return [context for _, context in timed]


def parse_traffic(data: bytes | str, source: str = "<string>") -> TrafficFile:
    """
    Parse a traffic file from raw YAML.

    Raises:
        TrafficParseError: If the YAML is invalid or does not match the schema
    """
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise TrafficParseError(
            message=f"Invalid YAML in {source}: {e}",
            source=source,
        ) from e

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise TrafficParseError(
            message=f"Traffic file {source} must be a mapping with a `requests` key",
            source=source,
        )

    try:
        return TrafficFile.model_validate(document)
    except ValidationError as e:
        first = e.errors()[0]
        loc = [str(part) for part in first["loc"]]
        rule_index = None
        if len(loc) >= 2 and loc[0] == "requests" and loc[1].isdigit():
            rule_index = int(loc[1])
            where = f"Request #{rule_index}: '{'.'.join(loc[2:])}'"
        else:
            where = f"'{'.'.join(loc)}'"
        raise TrafficParseError(
            message=f"{source}: {where} {first['msg'][:1].lower()}{first['msg'][1:]}",
            rule_index=rule_index,
            field_name=loc[-1] if loc else None,
            source=source,
        ) from e


def load_traffic(path: Path | str) -> TrafficFile:
    """
    Load a traffic file from disk.

    Raises:
        TrafficParseError: If the file cannot be read or is malformed
    """
    path = Path(path)
    try:
        data = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise TrafficParseError(
            message=f"Cannot read traffic file {path}: {e}",
            source=str(path),
            suggestion="Check that the path exists and is readable",
        ) from e
    return parse_traffic(data, source=str(path))


# =============================================================================
# Results
# =============================================================================


@dataclass
class SimulatedRequest:
    """
    Outcome of one simulated request.

    Attributes:
        sequence: Position in the expanded, time-ordered stream
        context: The request as evaluated
        decision: The evaluator's verdict
    """

    sequence: int
    context: RequestContext
    decision: Decision


@dataclass
class SimulationResult:
    """
    Outcome of a complete traffic run.

    Attributes:
        requests: Per-request outcomes, in evaluation order
        allowed: Number of allowed requests
        denied: Number of denied requests
        by_reason: Decision count per reason
        by_rule: Denial count per rule index
        duration_ms: Wall time spent evaluating
    """

    requests: list[SimulatedRequest] = field(default_factory=list)
    allowed: int = 0
    denied: int = 0
    by_reason: dict[DecisionReason, int] = field(default_factory=dict)
    by_rule: dict[int, int] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return len(self.requests)

    @property
    def decisions(self) -> list[Decision]:
        return [r.decision for r in self.requests]


# =============================================================================
# Simulator
# =============================================================================


class Simulator:
    """
    Runs scripted traffic through a PolicyEngine.

    Usage:
        simulator = Simulator(policy)
        result = simulator.run(load_traffic("traffic.yaml"))
        print(f"{result.allowed} allowed, {result.denied} denied")

    Each run starts from an empty StateStore, so runs are independent and
    repeatable.
    """

    def __init__(self, policy: PolicyFile, sink: AuditSink | None = None) -> None:
        """
        Initialize the simulator.

        Args:
            policy: Validated policy file
            sink: Audit sink, used only when the policy enables auditing
        """
        self.policy = policy
        self.sink = sink

    def run(self, traffic: TrafficFile, start: datetime | None = None) -> SimulationResult:
        """
        Evaluate every request in a traffic file.

        Args:
            traffic: Parsed traffic file
            start: Overrides the file's start time

        Returns:
            SimulationResult with per-request outcomes and tallies
        """
        started = datetime.now(UTC)
        engine = PolicyEngine(self.policy, store=StateStore(), sink=self.sink)
        contexts = traffic.expand(start)
        logger.info("Simulating %d request(s) against %d rule(s)", len(contexts), len(engine.checks))

        result = SimulationResult()
        reasons: Counter[DecisionReason] = Counter()
        rules: Counter[int] = Counter()

        for sequence, context in enumerate(contexts):
            decision = engine.evaluate(context)
            result.requests.append(SimulatedRequest(sequence, context, decision))
            reasons[decision.reason] += 1
            if decision.allowed:
                result.allowed += 1
            else:
                result.denied += 1
                if decision.matched_rule is not None:
                    rules[decision.matched_rule] += 1

        result.by_reason = dict(reasons)
        result.by_rule = dict(sorted(rules.items()))
        result.duration_ms = (datetime.now(UTC) - started).total_seconds() * 1000
        logger.info("Simulation finished: %d allowed, %d denied", result.allowed, result.denied)
        return result
