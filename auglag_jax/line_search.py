"""Backtracking line search for the inner L-BFGS minimiser.

Finds a step size α along a descent direction d satisfying the Armijo
sufficient decrease condition:

    f(x + α d) ≤ f(x) + c1 α ∇f(x)^T d

starting from α = 1 and shrinking geometrically. Non-finite trial values are
treated as failures of the condition, so the search backs away from regions
where the objective overflows.
"""

from collections.abc import Callable
from typing import Any, NamedTuple

import jax
import jax.numpy as jnp
from jaxtyping import Array, Bool, Int

from auglag_jax.types import Scalar, Vector


class LineSearchResult(NamedTuple):
    """Result from the line search.

    Attributes:
        alpha: The step size found.
        f_val: Function value at new point.
        success: Whether the Armijo condition was satisfied.
        n_evals: Number of function evaluations.
        aux: Auxiliary output of fn at the last trial point. Only meaningful
            when ``success`` is True.
    """

    alpha: Scalar
    f_val: Scalar
    success: Bool[Array, ""]
    n_evals: Int[Array, ""]
    aux: Any


class _LSState(NamedTuple):
    alpha: Scalar
    f_val: Scalar
    aux: Any
    iteration: Int[Array, ""]
    done: Bool[Array, ""]


def backtracking_line_search(
    fn: Callable,
    x: Vector,
    direction: Vector,
    args: Any,
    f_val: Scalar,
    grad: Vector,
    c1: float = 1e-4,
    rho: float = 0.5,
    max_iter: int = 30,
    alpha_init: float = 1.0,
) -> LineSearchResult:
    """Perform backtracking line search with the Armijo condition.

    Args:
        fn: Objective function fn(x, args) -> (f_val, aux).
        x: Current point.
        direction: Search direction (must be a descent direction).
        args: Arguments to pass to fn.
        f_val: Current objective value.
        grad: Gradient of objective at x.
        c1: Armijo condition parameter (default 1e-4).
        rho: Step reduction factor (default 0.5).
        max_iter: Maximum number of step reductions.
        alpha_init: Initial step size (default 1.0).

    Returns:
        LineSearchResult with the found step size and function value. When
        no step satisfies the condition, ``success`` is False and ``alpha`` is
        zero so the caller stays at ``x``.
    """
    grad_dot_d = jnp.dot(grad, direction)

    def evaluate_at_alpha(alpha):
        return fn(x + alpha * direction, args)

    def accepted(alpha, f_new):
        return jnp.isfinite(f_new) & (f_new <= f_val + c1 * alpha * grad_dot_d)

    alpha0 = jnp.asarray(alpha_init, dtype=f_val.dtype)
    f0, aux0 = evaluate_at_alpha(alpha0)
    init_state = _LSState(
        alpha=alpha0,
        f_val=f0,
        aux=aux0,
        iteration=jnp.array(0),
        done=accepted(alpha0, f0),
    )

    def cond_fn(state: _LSState) -> Bool[Array, ""]:
        """Continue while not done and under iteration limit."""
        return ~state.done & (state.iteration < max_iter)

    def body_fn(state: _LSState) -> _LSState:
        """One iteration of backtracking."""
        new_alpha = rho * state.alpha
        f_new, aux_new = evaluate_at_alpha(new_alpha)
        return _LSState(
            alpha=new_alpha,
            f_val=f_new,
            aux=aux_new,
            iteration=state.iteration + 1,
            done=accepted(new_alpha, f_new),
        )

    final_state = jax.lax.while_loop(cond_fn, body_fn, init_state)

    success = final_state.done
    return LineSearchResult(
        alpha=jnp.where(success, final_state.alpha, 0.0),
        f_val=jnp.where(success, final_state.f_val, f_val),
        success=success,
        n_evals=final_state.iteration + 1,
        aux=final_state.aux,
    )
