"""
Code generation for x402guard.

Turns a validated policy file into enforcement middleware that runs without
x402guard installed.

Targets:
    - express: middleware factory `x402PolicyMiddleware()`
    - fastify: plugin registering an `onRequest` hook

Every generated module also exports `evaluatePolicy(ctx)` and
`resetPolicyState()` so the emitted logic can be exercised directly.

Example:
    from x402guard.codegen import generate

    source = generate(policy, "express", source_file_name="policy.yaml")
    Path("x402-policy.js").write_text(source)
"""

from x402guard.codegen.generator import TARGETS, Target, generate, get_target, supported_targets

__all__ = [
    "TARGETS",
    "Target",
    "generate",
    "get_target",
    "supported_targets",
]
