"""
x402guard - Policy enforcement and middleware generation for x402 pay-per-request APIs.

Operators declare allowlists, denylists, rate limits and spending caps in a
small YAML file. x402guard either evaluates those rules locally against
simulated traffic, or emits equivalent enforcement code for Express or Fastify.
It provides:
- Static validation with every diagnostic reported in one pass
- Sliding-window rate limits and spending caps
- Fail-closed evaluation with deterministic rule priority
- Self-contained generated middleware

Example usage:
    $ x402guard validate policy.yaml
    $ x402guard generate policy.yaml --target express --out x402-policy.js
    $ x402guard simulate policy.yaml traffic.yaml
"""

__version__ = "0.1.0"
__author__ = "x402guard Contributors"

__all__ = [
    "__version__",
    "__author__",
]
