"""Constrained problems with known solutions.

These are small problems with closed-form optima and multipliers, used to
check the solver and as templates for writing new
:class:`~auglag_jax.problem.AbstractConstrainedProblem` subclasses.
Multipliers follow the sign convention of the augmented Lagrangian,
∇f(x*) = sum_i lambda_i ∇c_i(x*).
"""

from typing import Optional

import equinox as eqx
import jax.numpy as jnp

from auglag_jax.problem import AbstractConstrainedProblem
from auglag_jax.types import Scalar, Vector


class AugLagrangianTestFunction(AbstractConstrainedProblem):
    """Quadratic with one linear constraint.

        minimize    6 x0^2 + 4 x0 x1 + 3 x1^2
        subject to  x0 + x1 = 5

    Solution x* = (1, 4), lambda* = 28. Starts from the origin.
    """

    def evaluate(self, x: Vector) -> Scalar:
        return 6.0 * x[0] ** 2 + 4.0 * x[0] * x[1] + 3.0 * x[1] ** 2

    def gradient(self, x: Vector) -> Vector:
        return jnp.stack([12.0 * x[0] + 4.0 * x[1], 4.0 * x[0] + 6.0 * x[1]])

    def num_constraints(self) -> int:
        return 1

    def evaluate_constraint(self, index: int, x: Vector) -> Scalar:
        return x[0] + x[1] - 5.0

    def gradient_constraint(self, index: int, x: Vector) -> Vector:
        return jnp.ones_like(x)

    def num_variables(self) -> Optional[int]:
        return 2

    def initial_point(self) -> Vector:
        return jnp.zeros(2)


class SphereLinearProblem(AbstractConstrainedProblem):
    """Squared norm on a hyperplane.

        minimize    ||x||^2
        subject to  sum(x) = target

    Solution x*_i = target / n, lambda* = 2 target / n.
    """

    n: int = eqx.field(static=True, default=2)
    target: float = 1.0

    def evaluate(self, x: Vector) -> Scalar:
        return jnp.sum(x**2)

    def gradient(self, x: Vector) -> Vector:
        return 2.0 * x

    def num_constraints(self) -> int:
        return 1

    def evaluate_constraint(self, index: int, x: Vector) -> Scalar:
        return jnp.sum(x) - self.target

    def gradient_constraint(self, index: int, x: Vector) -> Vector:
        return jnp.ones_like(x)

    def num_variables(self) -> Optional[int]:
        return self.n

    def initial_point(self) -> Vector:
        return jnp.zeros(self.n)

    def solution(self) -> tuple[Vector, Vector]:
        """Closed-form (x*, lambda*)."""
        return (
            jnp.full(self.n, self.target / self.n),
            jnp.array([2.0 * self.target / self.n]),
        )


class PlanesProblem(AbstractConstrainedProblem):
    """Squared norm on the intersection of two planes in R^3.

        minimize    x^2 + y^2 + z^2
        subject to  x + y + z = 3
                    x - y = 1

    Solution (1.5, 0.5, 1), lambda* = (2, 1).
    """

    def evaluate(self, x: Vector) -> Scalar:
        return jnp.sum(x**2)

    def gradient(self, x: Vector) -> Vector:
        return 2.0 * x

    def num_constraints(self) -> int:
        return 2

    def evaluate_constraint(self, index: int, x: Vector) -> Scalar:
        if index == 0:
            return x[0] + x[1] + x[2] - 3.0
        return x[0] - x[1] - 1.0

    def gradient_constraint(self, index: int, x: Vector) -> Vector:
        if index == 0:
            return jnp.ones_like(x)
        return jnp.array([1.0, -1.0, 0.0], dtype=x.dtype)

    def num_variables(self) -> Optional[int]:
        return 3

    def initial_point(self) -> Vector:
        return jnp.zeros(3)


class CircleProblem(AbstractConstrainedProblem):
    """Distance to (2, 2) from the unit circle.

        minimize    (x0 - 2)^2 + (x1 - 2)^2
        subject to  x0^2 + x1^2 = 1

    Solution (1/sqrt2, 1/sqrt2), lambda* = 1 - 2 sqrt2.
    """

    def evaluate(self, x: Vector) -> Scalar:
        return (x[0] - 2.0) ** 2 + (x[1] - 2.0) ** 2

    def gradient(self, x: Vector) -> Vector:
        return 2.0 * (x - 2.0)

    def num_constraints(self) -> int:
        return 1

    def evaluate_constraint(self, index: int, x: Vector) -> Scalar:
        return x[0] ** 2 + x[1] ** 2 - 1.0

    def gradient_constraint(self, index: int, x: Vector) -> Vector:
        return 2.0 * x

    def num_variables(self) -> Optional[int]:
        return 2

    def initial_point(self) -> Vector:
        return jnp.array([0.5, 0.5])
