"""L-BFGS unconstrained minimiser implemented on Optimistix.

This module contains the inner solver used by the augmented Lagrangian
method. It extends optimistix.AbstractMinimiser, so besides being driven by
:class:`auglag_jax.AugLagrangian` it can be run on its own through
``optimistix.minimise``.

Each iteration:

1. Computes the quasi-Newton direction d = -H g with the L-BFGS two-loop
   recursion (steepest descent when no curvature pairs are stored yet, or
   when d is not a descent direction).
2. Performs a backtracking Armijo line search along d.
3. Stores the new (s, y) pair, or clears the history if the line search
   failed.

The gradient is taken from a user-supplied ``grad_fn`` when given, and from
jax.grad otherwise.
"""

from collections.abc import Callable
from typing import Any, Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import optimistix as optx
import optimistix._misc as optx_misc
from jaxtyping import Array, Bool, Float, Int

from auglag_jax.lbfgs import (
    LBFGSHistory,
    lbfgs_append,
    lbfgs_init,
    lbfgs_inverse_hvp,
    lbfgs_reset,
)
from auglag_jax.line_search import backtracking_line_search
from auglag_jax.types import GradFn


class LBFGSState(eqx.Module):
    """State for the L-BFGS minimiser.

    Attributes:
        step_count: Current iteration number.
        f_val: Current objective function value f(x_k).
        grad: Gradient of objective at current point.
        history: L-BFGS (s, y) history.
        stagnated: Set when a steepest-descent line search made no progress.
    """

    step_count: Int[Array, ""]
    f_val: Float[Array, ""]
    grad: Float[Array, " n"]
    history: LBFGSHistory
    stagnated: Bool[Array, ""]


class LBFGS(optx.AbstractMinimiser):
    """Limited-memory BFGS minimiser.

    Attributes:
        rtol: Relative tolerance for convergence.
        atol: Absolute tolerance for convergence.
        norm: Norm used on the gradient for the convergence check.
        memory: Number of (s, y) pairs kept by L-BFGS.
        grad_fn: Optional gradient of the objective, grad_fn(x, args).
        line_search_max_steps: Maximum step halvings per line search.
        armijo_c1: Armijo sufficient decrease constant.

    The iteration stops when

        norm(∇f) <= atol + rtol * max(|f|, 1)

    or early, with ``RESULTS.nonlinear_divergence``, when a steepest-descent
    line search cannot decrease f or f stops being finite. Not converging is
    never an error under ``throw=False``: the best point found is returned.

    Example:
        >>> import jax.numpy as jnp
        >>> import optimistix as optx
        >>> from auglag_jax import LBFGS
        >>>
        >>> def objective(x, args):
        ...     return jnp.sum((x - 1.0) ** 2)
        >>>
        >>> solver = LBFGS(rtol=1e-8, atol=1e-8, memory=5)
        >>> sol = optx.minimise(objective, solver, jnp.zeros(3))
    """

    # Convergence tolerances
    rtol: float = 1e-8
    atol: float = 1e-8

    # Norm function for convergence checking (required by AbstractMinimiser)
    norm: Callable = eqx.field(static=True, default=optx_misc.max_norm)

    # L-BFGS memory depth
    memory: int = eqx.field(static=True, default=10)

    # Optional user-supplied gradient (static - not differentiated by optimistix)
    grad_fn: Optional[GradFn] = eqx.field(static=True, default=None)

    # Line search parameters
    line_search_max_steps: int = eqx.field(static=True, default=30)
    armijo_c1: float = 1e-4

    def __check_init__(self):
        if self.memory < 1:
            raise ValueError(f"L-BFGS memory must be positive, got {self.memory}.")

    def _compute_grad(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
    ) -> Float[Array, " n"]:
        """Compute gradient of objective using user-supplied fn or AD."""
        if self.grad_fn is not None:
            return self.grad_fn(y, args)
        return jax.grad(lambda x: fn(x, args)[0])(y)

    def init(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        f_struct: Any,
        aux_struct: Any,
        tags: frozenset[object],
    ) -> LBFGSState:
        """Initialize the L-BFGS state.

        Args:
            fn: Objective function with signature fn(y, args) -> (f_val, aux).
            y: Initial parameter values.
            args: Additional arguments passed to fn.
            options: Runtime options dictionary.
            f_struct: Structure of function output (for type inference).
            aux_struct: Structure of auxiliary output.
            tags: Lineax tags for the problem.

        Returns:
            Initial LBFGSState with an empty history.
        """
        f_val, _aux = fn(y, args)
        grad = self._compute_grad(fn, y, args)
        return LBFGSState(
            step_count=jnp.array(0),
            f_val=f_val,
            grad=grad,
            history=lbfgs_init(y.shape[0], self.memory, dtype=y.dtype),
            stagnated=jnp.array(False),
        )

    def step(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: LBFGSState,
        tags: frozenset[object],
    ) -> tuple[Float[Array, " n"], LBFGSState, Any]:
        """Perform one L-BFGS iteration.

        Args:
            fn: Objective function.
            y: Current parameter values.
            args: Additional arguments.
            options: Runtime options.
            state: Current solver state.
            tags: Lineax tags.

        Returns:
            Tuple of (new_y, new_state, aux).
        """
        grad = state.grad

        # Step 1: quasi-Newton direction, falling back to steepest descent
        direction = -lbfgs_inverse_hvp(state.history, grad)
        is_descent = jnp.dot(grad, direction) < 0.0
        direction = jnp.where(is_descent, direction, -grad)
        used_steepest = (state.history.count == 0) | ~is_descent

        # Step 2: line search
        ls_result = backtracking_line_search(
            fn=fn,
            x=y,
            direction=direction,
            args=args,
            f_val=state.f_val,
            grad=grad,
            c1=self.armijo_c1,
            max_iter=self.line_search_max_steps,
        )

        y_new = y + ls_result.alpha * direction
        # The accepted trial already carries aux; a failed search stays at y
        aux = jax.lax.cond(
            ls_result.success,
            lambda: ls_result.aux,
            lambda: fn(y, args)[1],
        )
        grad_new = self._compute_grad(fn, y_new, args)

        # Step 3: curvature update, or restart from steepest descent
        history = jax.lax.cond(
            ls_result.success,
            lambda: lbfgs_append(state.history, y_new - y, grad_new - grad),
            lambda: lbfgs_reset(state.history),
        )

        new_state = LBFGSState(
            step_count=state.step_count + 1,
            f_val=ls_result.f_val,
            grad=grad_new,
            history=history,
            stagnated=~ls_result.success & used_steepest,
        )
        return y_new, new_state, aux

    def terminate(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: LBFGSState,
        tags: frozenset[object],
    ) -> tuple[Bool[Array, ""], Any]:
        """Check if the solver should terminate.

        Returns:
            Tuple of (done, result) where done is a bool indicating
            termination and result is the termination status code.
        """
        grad_norm = self.norm(state.grad)
        f_ref = jnp.maximum(jnp.abs(state.f_val), 1.0)
        converged = grad_norm <= self.atol + self.rtol * f_ref

        non_finite = ~jnp.isfinite(state.f_val) | ~jnp.all(jnp.isfinite(state.grad))
        stopped = state.stagnated | non_finite

        done = converged | stopped
        result = jax.lax.cond(
            converged,
            lambda: optx.RESULTS.successful,
            lambda: jax.lax.cond(
                stopped,
                lambda: optx.RESULTS.nonlinear_divergence,
                lambda: optx.RESULTS.successful,  # Still running
            ),
        )
        return done, result

    def postprocess(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        aux: Any,
        args: Any,
        options: dict[str, Any],
        state: LBFGSState,
        tags: frozenset[object],
        result: Any,
    ) -> tuple[Float[Array, " n"], Any, dict[str, Any]]:
        """Post-process the optimization result.

        Returns:
            Tuple of (y, aux, stats) where stats is a dictionary
            containing solver statistics.
        """
        stats = {
            "num_steps": state.step_count,
            "final_objective": state.f_val,
            "final_grad_norm": self.norm(state.grad),
            "stored_pairs": state.history.count,
        }
        return y, aux, stats
