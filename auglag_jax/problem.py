"""Constrained problem interface.

Every problem handed to :class:`auglag_jax.AugLagrangian` implements
:class:`AbstractConstrainedProblem`:

    minimize    f(x)
    subject to  c_i(x) = 0,   i = 0, ..., m - 1

The problem supplies f, its gradient, and each constraint with its gradient.
Nothing is differentiated automatically. Problems must be stateless with
respect to the optimization: all progress (multipliers, penalty, iterate)
belongs to the solver, so one problem instance can be shared between runs.
"""

import abc
from collections.abc import Callable, Sequence
from typing import Optional

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Float

from auglag_jax.types import ConstraintFn, ConstraintGradFn, Scalar, Vector


class AbstractConstrainedProblem(eqx.Module):
    """Equality-constrained problem with caller-supplied derivatives.

    Subclasses must implement :meth:`evaluate`, :meth:`gradient`,
    :meth:`num_constraints`, :meth:`evaluate_constraint` and
    :meth:`gradient_constraint`. The number of constraints must be a Python
    int and must not change over the lifetime of the instance.

    :meth:`num_variables` and :meth:`initial_point` are optional.
    """

    @abc.abstractmethod
    def evaluate(self, x: Vector) -> Scalar:
        """Objective value f(x)."""

    @abc.abstractmethod
    def gradient(self, x: Vector) -> Vector:
        """Objective gradient, same shape as ``x``."""

    @abc.abstractmethod
    def num_constraints(self) -> int:
        """Number m >= 0 of equality constraints."""

    @abc.abstractmethod
    def evaluate_constraint(self, index: int, x: Vector) -> Scalar:
        """Value of constraint ``index`` at ``x``."""

    @abc.abstractmethod
    def gradient_constraint(self, index: int, x: Vector) -> Vector:
        """Gradient of constraint ``index`` at ``x``."""

    def num_variables(self) -> Optional[int]:
        """Expected length of ``x``, or None when the problem accepts any."""
        return None

    def initial_point(self) -> Vector:
        """Default starting point."""
        raise NotImplementedError(
            f"{type(self).__name__} does not define an initial point; "
            "pass starting coordinates explicitly."
        )


class FunctionProblem(AbstractConstrainedProblem):
    """Constrained problem assembled from plain callables.

    Attributes:
        objective: f(x) -> scalar.
        objective_grad: x -> ∇f(x).
        constraints: One callable per constraint, c_i(x) -> scalar.
        constraint_grads: One callable per constraint, x -> ∇c_i(x).
        n: Optional expected dimension of x.
        x0: Optional default starting point.

    Example:
        >>> import jax.numpy as jnp
        >>> from auglag_jax import FunctionProblem
        >>>
        >>> problem = FunctionProblem(
        ...     objective=lambda x: jnp.sum(x**2),
        ...     objective_grad=lambda x: 2.0 * x,
        ...     constraints=(lambda x: x[0] + x[1] - 1.0,),
        ...     constraint_grads=(lambda x: jnp.ones_like(x),),
        ... )
    """

    objective: Callable[[Vector], Scalar] = eqx.field(static=True)
    objective_grad: Callable[[Vector], Vector] = eqx.field(static=True)
    constraints: tuple[ConstraintFn, ...] = eqx.field(
        static=True, default=(), converter=tuple
    )
    constraint_grads: tuple[ConstraintGradFn, ...] = eqx.field(
        static=True, default=(), converter=tuple
    )
    n: Optional[int] = eqx.field(static=True, default=None)
    x0: Optional[Float[Array, " n"]] = None

    def __check_init__(self):
        if len(self.constraints) != len(self.constraint_grads):
            raise ValueError(
                f"Got {len(self.constraints)} constraints but "
                f"{len(self.constraint_grads)} constraint gradients."
            )

    def evaluate(self, x: Vector) -> Scalar:
        return jnp.asarray(self.objective(x))

    def gradient(self, x: Vector) -> Vector:
        return jnp.asarray(self.objective_grad(x))

    def num_constraints(self) -> int:
        return len(self.constraints)

    def evaluate_constraint(self, index: int, x: Vector) -> Scalar:
        return jnp.asarray(self.constraints[index](x))

    def gradient_constraint(self, index: int, x: Vector) -> Vector:
        return jnp.asarray(self.constraint_grads[index](x))

    def num_variables(self) -> Optional[int]:
        if self.n is not None:
            return self.n
        if self.x0 is not None:
            return self.x0.shape[0]
        return None

    def initial_point(self) -> Vector:
        if self.x0 is None:
            return super().initial_point()
        return self.x0


def function_problem(
    objective: Callable[[Vector], Scalar],
    objective_grad: Callable[[Vector], Vector],
    constraints: Sequence[tuple[ConstraintFn, ConstraintGradFn]] = (),
    x0=None,
) -> FunctionProblem:
    """Build a :class:`FunctionProblem` from ``(c_i, ∇c_i)`` pairs."""
    return FunctionProblem(
        objective=objective,
        objective_grad=objective_grad,
        constraints=tuple(c for c, _ in constraints),
        constraint_grads=tuple(g for _, g in constraints),
        x0=None if x0 is None else jnp.asarray(x0),
    )
