"""Type definitions for auglag-jax.

This module contains type aliases and custom types used throughout the package.
All types use jaxtyping for runtime type checking with beartype.
"""

from collections.abc import Callable
from typing import Any

from jaxtyping import Array, Float

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]

# Gradient function type: takes parameters and args, returns gradient of objective
# grad_fn(x, args) -> ∇f(x)
GradFn = Callable[[Vector, Any], Vector]

# Single constraint and its gradient, as plain callables of x
ConstraintFn = Callable[[Vector], Scalar]
ConstraintGradFn = Callable[[Vector], Vector]


# Result codes for solver termination
class SolverResult:
    """Constants for solver termination status."""

    SUCCESS = 0
    MAX_ITERATIONS = 1
    NON_FINITE = 2

    @staticmethod
    def describe(code: int) -> str:
        return {
            SolverResult.SUCCESS: "constraint tolerance reached",
            SolverResult.MAX_ITERATIONS: "maximum number of outer iterations reached",
            SolverResult.NON_FINITE: "non-finite objective, gradient or constraint value",
        }.get(code, "unknown")
