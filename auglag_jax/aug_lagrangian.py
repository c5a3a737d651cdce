"""Augmented Lagrangian method (method of multipliers).

This module contains the outer solver for equality-constrained problems

    minimize f(x)  subject to  c_i(x) = 0, i = 0, ..., m - 1

Each outer iteration:

1. Minimizes the augmented Lagrangian

       L(x) = f(x) - lambda^T c(x) + (sigma / 2) ||c(x)||^2

   from the current point with the L-BFGS minimiser.
2. Evaluates the constraints at the new point.
3. Updates the multipliers by a dual ascent step, lambda <- lambda - sigma c(x).
4. Multiplies sigma by ``penalty_growth`` if ||c(x)|| did not drop below
   ``sufficient_decrease`` times its previous value.
5. Stops with success once ||c(x)|| < ``constraint_tolerance``.

The outer loop runs eagerly in Python; each inner minimization is a compiled
``optimistix.minimise`` call. Multipliers and sigma are passed to it as array
leaves of ``args``, so every outer iteration reuses the same compiled code.
"""

import logging
import math
from typing import Any, NamedTuple, Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
import optimistix as optx
from jaxtyping import Array, Float

from auglag_jax.augmented import (
    AugmentedLagrangianFunction,
    augmented_gradient,
    augmented_value,
    bind,
)
from auglag_jax.minimiser import LBFGS
from auglag_jax.problem import AbstractConstrainedProblem
from auglag_jax.types import SolverResult
from auglag_jax.utils import all_finite

logger = logging.getLogger(__name__)

# Literature defaults (Nocedal & Wright, Framework 17.3; Conn, Gould & Toint)
PENALTY_GROWTH = 10.0
SUFFICIENT_DECREASE = 0.25
DEFAULT_SIGMA = 0.5


class AugLagrangianSolution(NamedTuple):
    """Result of an augmented Lagrangian run.

    Attributes:
        value: Final coordinates. On failure, the last finite iterate.
        success: Whether the constraint tolerance was reached.
        result: A :class:`SolverResult` code.
        lagrange_multipliers: Final multiplier estimates.
        sigma: Final penalty parameter.
        num_steps: Number of outer iterations performed.
        constraint_violation: ||c(value)||_2 (NaN if never evaluated).
        objective: f(value) (NaN if never evaluated).
        violation_history: ||c(x_k)||_2 after each outer iteration.
    """

    value: Float[Array, " n"]
    success: bool
    result: int
    lagrange_multipliers: Float[Array, " m"]
    sigma: float
    num_steps: int
    constraint_violation: float
    objective: float
    violation_history: tuple[float, ...]


@eqx.filter_jit
def _evaluate_problem(function: AugmentedLagrangianFunction, y):
    return (
        function.problem.evaluate(y),
        function.gradient(y),
        function.constraint_values(y),
    )


class AugLagrangian(eqx.Module):
    """Augmented Lagrangian solver for equality-constrained problems.

    Attributes:
        function: The constrained problem to solve.
        num_basis: Number of (s, y) pairs kept by the inner L-BFGS.
        constraint_tolerance: Success threshold on ||c(x)||_2. Defaults to the
            square root of machine epsilon of the coordinates' dtype.
        penalty_growth: Factor applied to sigma when the violation stalls.
        sufficient_decrease: Fraction of the previous violation that the new
            violation must fall below for sigma to stay unchanged.
        inner_max_steps: Iteration budget of each inner minimization.
        inner_rtol: Relative gradient tolerance of the inner minimiser.
        inner_atol: Absolute gradient tolerance of the inner minimiser.
            Both default to eps^(2/3) of the coordinates' dtype.

    Example:
        >>> import numpy as np
        >>> from auglag_jax import AugLagrangian
        >>> from auglag_jax.problems import AugLagrangianTestFunction
        >>>
        >>> solver = AugLagrangian(AugLagrangianTestFunction(), num_basis=5)
        >>> x = np.zeros(2)
        >>> converged = solver.optimize(20, x)

    Fields are read like any attribute. Static fields such as ``num_basis``
    are not pytree leaves, so change them with ``dataclasses.replace``, which
    re-runs ``__check_init__``:

        >>> import dataclasses
        >>> solver = dataclasses.replace(solver, num_basis=10)
    """

    function: AbstractConstrainedProblem
    num_basis: int = eqx.field(static=True, default=5)
    constraint_tolerance: Optional[float] = None
    penalty_growth: float = PENALTY_GROWTH
    sufficient_decrease: float = SUFFICIENT_DECREASE
    inner_max_steps: int = eqx.field(static=True, default=1000)
    inner_rtol: Optional[float] = None
    inner_atol: Optional[float] = None

    def __check_init__(self):
        if self.num_basis < 1:
            raise ValueError(
                f"num_basis (L-BFGS memory) must be positive, got {self.num_basis}."
            )
        if not self.penalty_growth > 1.0:
            raise ValueError(
                f"penalty_growth must be greater than 1, got {self.penalty_growth}."
            )
        if not 0.0 < self.sufficient_decrease < 1.0:
            raise ValueError(
                "sufficient_decrease must lie in (0, 1), "
                f"got {self.sufficient_decrease}."
            )
        tol = self.constraint_tolerance
        if tol is not None and not tol > 0.0:
            raise ValueError(
                "constraint_tolerance must be positive, "
                f"got {self.constraint_tolerance}."
            )
        if self.inner_max_steps < 1:
            raise ValueError(
                f"inner_max_steps must be positive, got {self.inner_max_steps}."
            )
        if self.function.num_constraints() < 0:
            raise ValueError("The problem reports a negative number of constraints.")

    def _constraint_tolerance(self, dtype) -> float:
        if self.constraint_tolerance is not None:
            return self.constraint_tolerance
        return math.sqrt(float(jnp.finfo(dtype).eps))

    def _inner_solver(self, dtype) -> LBFGS:
        # Default: eps^(2/3) of the working precision
        default_tol = float(jnp.finfo(dtype).eps) ** (2.0 / 3.0)
        return LBFGS(
            rtol=default_tol if self.inner_rtol is None else self.inner_rtol,
            atol=default_tol if self.inner_atol is None else self.inner_atol,
            memory=self.num_basis,
            grad_fn=augmented_gradient,
        )

    def _check_coordinates(self, y0: Any) -> Float[Array, " n"]:
        y = jnp.asarray(y0)
        if y.ndim != 1:
            raise ValueError(f"Coordinates must be a 1-D array, got shape {y.shape}.")
        if not jnp.issubdtype(y.dtype, jnp.floating):
            y = y.astype(jnp.result_type(float))

        n = self.function.num_variables()
        if n is not None and n != y.shape[0]:
            raise ValueError(
                f"The problem expects {n} variables, got coordinates of size "
                f"{y.shape[0]}."
            )

        grad_struct = jax.eval_shape(self.function.gradient, y)
        if grad_struct.shape != y.shape:
            raise ValueError(
                f"The problem gradient has shape {grad_struct.shape} for "
                f"coordinates of shape {y.shape}."
            )
        return y

    def solve(
        self,
        y0: Optional[Any] = None,
        max_iterations: int = 1000,
        sigma: float = DEFAULT_SIGMA,
    ) -> AugLagrangianSolution:
        """Run the method of multipliers.

        Args:
            y0: Starting coordinates; defaults to ``function.initial_point()``.
            max_iterations: Maximum number of outer iterations. Zero returns
                immediately with failure and the starting point.
            sigma: Initial penalty parameter.

        Returns:
            An :class:`AugLagrangianSolution`. Non-convergence and non-finite
            evaluations are reported through ``success`` and ``result``, not
            raised.

        Raises:
            ValueError: On invalid configuration (coordinate shape or size,
                negative ``max_iterations``, non-positive ``sigma``).
        """
        if max_iterations < 0:
            raise ValueError(
                f"max_iterations must be non-negative, got {max_iterations}."
            )
        if not sigma > 0.0:
            raise ValueError(f"The initial sigma must be positive, got {sigma}.")
        if y0 is None:
            y0 = self.function.initial_point()
        y = self._check_coordinates(y0)

        m = self.function.num_constraints()
        sigma = float(sigma)
        augmented = bind(self.function, sigma, dtype=y.dtype)

        def finish(y, result, num_steps, violation, objective, history):
            success = result == SolverResult.SUCCESS
            log = logger.info if success else logger.warning
            log(
                "Augmented Lagrangian stopped after %d iterations: %s.",
                num_steps,
                SolverResult.describe(result),
            )
            return AugLagrangianSolution(
                value=y,
                success=success,
                result=result,
                lagrange_multipliers=augmented.lagrange_multipliers,
                sigma=sigma,
                num_steps=num_steps,
                constraint_violation=violation,
                objective=objective,
                violation_history=tuple(history),
            )

        if max_iterations == 0:
            return finish(
                y, SolverResult.MAX_ITERATIONS, 0, math.nan, math.nan, []
            )

        f_val, grad, cons = _evaluate_problem(augmented, y)
        if not all_finite(y, f_val, grad, cons):
            return finish(
                y,
                SolverResult.NON_FINITE,
                0,
                float(jnp.linalg.norm(cons)),
                float(f_val),
                [],
            )

        logger.info(
            "Augmented Lagrangian: n = %d, m = %d, num_basis = %d, sigma0 = %g",
            y.shape[0],
            m,
            self.num_basis,
            sigma,
        )
        logger.info(
            "%5s  %14s  %12s  %10s  %10s  %6s",
            "iter",
            "f",
            "||c||",
            "sigma",
            "max|lam|",
            "inner",
        )

        inner = self._inner_solver(y.dtype)
        tolerance = self._constraint_tolerance(y.dtype)
        history: list[float] = []
        previous_violation = math.inf
        violation = float(jnp.linalg.norm(cons))
        objective = float(f_val)

        for iteration in range(1, max_iterations + 1):
            sol = optx.minimise(
                augmented_value,
                inner,
                y,
                args=augmented,
                max_steps=self.inner_max_steps,
                throw=False,
            )
            y_new = sol.value
            if not bool(sol.result == optx.RESULTS.successful):
                logger.debug(
                    "Inner L-BFGS did not converge in iteration %d; continuing "
                    "from its best point.",
                    iteration,
                )

            f_val, grad, cons = _evaluate_problem(augmented, y_new)
            if not all_finite(y_new, f_val, grad, cons):
                return finish(
                    y, SolverResult.NON_FINITE, iteration, violation, objective, history
                )

            y = y_new
            objective = float(f_val)
            violation = float(jnp.linalg.norm(cons))
            history.append(violation)

            # Dual ascent step on the multipliers
            multipliers = augmented.lagrange_multipliers - augmented.sigma * cons

            if violation > self.sufficient_decrease * previous_violation:
                sigma = sigma * self.penalty_growth
                logger.debug(
                    "Violation %g did not drop below %g; sigma increased to %g.",
                    violation,
                    self.sufficient_decrease * previous_violation,
                    sigma,
                )
            previous_violation = violation

            augmented = augmented.with_multipliers(
                multipliers, jnp.asarray(sigma, dtype=y.dtype)
            )

            logger.info(
                "%5d  %14.8e  %12.6e  %10.3e  %10.3e  %6d",
                iteration,
                objective,
                violation,
                sigma,
                float(jnp.max(jnp.abs(multipliers))) if m > 0 else 0.0,
                int(sol.stats["num_steps"]),
            )

            if violation < tolerance:
                return finish(
                    y, SolverResult.SUCCESS, iteration, violation, objective, history
                )

        return finish(
            y,
            SolverResult.MAX_ITERATIONS,
            max_iterations,
            violation,
            objective,
            history,
        )

    def optimize(
        self,
        max_iterations: int,
        coordinates: np.ndarray,
        sigma: float = DEFAULT_SIGMA,
    ) -> bool:
        """Run the method of multipliers, updating ``coordinates`` in place.

        Args:
            max_iterations: Maximum number of outer iterations.
            coordinates: Writable NumPy array holding the starting point. It
                receives the final point, or the last finite iterate when the
                run fails.
            sigma: Initial penalty parameter.

        Returns:
            True if the constraint tolerance was reached.
        """
        if not isinstance(coordinates, np.ndarray) or not coordinates.flags.writeable:
            raise TypeError(
                "coordinates must be a writable numpy array; use solve() for "
                "JAX arrays."
            )
        if not np.issubdtype(coordinates.dtype, np.floating):
            raise TypeError(
                f"coordinates must have a floating dtype, got {coordinates.dtype}."
            )
        solution = self.solve(coordinates, max_iterations=max_iterations, sigma=sigma)
        coordinates[...] = np.asarray(solution.value)
        return solution.success
