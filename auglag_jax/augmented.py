"""Augmented Lagrangian of a constrained problem.

For a problem with objective f and equality constraints c_i, multipliers
lambda and penalty sigma, the augmented Lagrangian is

    L(x) = f(x) - sum_i lambda_i c_i(x) + (sigma / 2) sum_i c_i(x)^2

with gradient

    ∇L(x) = ∇f(x) - sum_i lambda_i ∇c_i(x) + sigma sum_i c_i(x) ∇c_i(x)

Both are accumulated from the problem's own value and gradient calls. This
module is internal to the solver: :class:`auglag_jax.AugLagrangian` builds the
function, rebinds (lambda, sigma) between outer iterations, and hands it to
the inner L-BFGS minimiser as its ``args``.
"""

from typing import Any

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Float

from auglag_jax.problem import AbstractConstrainedProblem
from auglag_jax.types import Scalar, Vector


class AugmentedLagrangianFunction(eqx.Module):
    """Unconstrained view of a constrained problem for fixed (lambda, sigma).

    Attributes:
        problem: The wrapped problem. Its leaves are reused across rebinds.
        lagrange_multipliers: One multiplier per constraint, shape (m,).
        sigma: Penalty parameter (0-d array).
    """

    problem: AbstractConstrainedProblem
    lagrange_multipliers: Float[Array, " m"]
    sigma: Float[Array, ""]

    def __check_init__(self):
        m = self.problem.num_constraints()
        if self.lagrange_multipliers.shape != (m,):
            raise ValueError(
                f"Expected {m} Lagrange multipliers, "
                f"got shape {self.lagrange_multipliers.shape}."
            )

    def num_constraints(self) -> int:
        return self.problem.num_constraints()

    def evaluate(self, x: Vector) -> Scalar:
        value = self.problem.evaluate(x)
        for i in range(self.num_constraints()):
            c_i = self.problem.evaluate_constraint(i, x)
            value = (
                value
                - self.lagrange_multipliers[i] * c_i
                + 0.5 * self.sigma * c_i**2
            )
        return value

    def gradient(self, x: Vector) -> Vector:
        grad = self.problem.gradient(x)
        for i in range(self.num_constraints()):
            c_i = self.problem.evaluate_constraint(i, x)
            weight = self.sigma * c_i - self.lagrange_multipliers[i]
            grad = grad + weight * self.problem.gradient_constraint(i, x)
        return grad

    def constraint_values(self, x: Vector) -> Float[Array, " m"]:
        m = self.num_constraints()
        if m == 0:
            return jnp.zeros((0,), dtype=x.dtype)
        return jnp.stack([self.problem.evaluate_constraint(i, x) for i in range(m)])

    def with_multipliers(
        self,
        lagrange_multipliers: Float[Array, " m"],
        sigma: Scalar,
    ) -> "AugmentedLagrangianFunction":
        """Copy of this function bound to new multipliers and penalty."""
        return eqx.tree_at(
            lambda f: (f.lagrange_multipliers, f.sigma),
            self,
            (jnp.asarray(lagrange_multipliers), jnp.asarray(sigma)),
        )


def augmented_value(x: Vector, function: AugmentedLagrangianFunction) -> Scalar:
    """Objective in the ``fn(y, args)`` form optimistix expects."""
    return function.evaluate(x)


def augmented_gradient(x: Vector, function: AugmentedLagrangianFunction) -> Vector:
    """Gradient in the ``grad_fn(y, args)`` form the L-BFGS minimiser expects."""
    return function.gradient(x)


def bind(
    problem: AbstractConstrainedProblem,
    sigma: Any,
    dtype=None,
) -> AugmentedLagrangianFunction:
    """Augmented Lagrangian of ``problem`` with zero multipliers."""
    return AugmentedLagrangianFunction(
        problem=problem,
        lagrange_multipliers=jnp.zeros((problem.num_constraints(),), dtype=dtype),
        sigma=jnp.asarray(sigma, dtype=dtype),
    )
