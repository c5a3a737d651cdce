"""L-BFGS inverse Hessian approximation.

This module implements the Limited-memory BFGS (L-BFGS) history used by the
inner unconstrained minimiser.

Instead of storing a dense n x n matrix (O(n^2) memory), L-BFGS stores
the last k (s, y) pairs and applies the inverse Hessian approximation H to a
vector in O(kn) time with the two-loop recursion (Nocedal & Wright,
Algorithm 7.4):

    q = v
    for i = newest .. oldest:   a_i = rho_i s_i^T q;  q -= a_i y_i
    r = gamma * q
    for i = oldest .. newest:   b = rho_i y_i^T r;    r += (a_i - b) s_i

with rho_i = 1 / (y_i^T s_i) and gamma = s^T y / y^T y from the newest pair.

A pair is only stored when its curvature s^T y is safely positive, which
keeps H positive definite for unconstrained minimization.
"""

import equinox as eqx
import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, Int, jaxtyped


class LBFGSHistory(eqx.Module):
    """L-BFGS history buffer for the inverse Hessian approximation.

    Stores the last k (s, y) pairs in a circular buffer.

    Attributes:
        s_history: Stored step vectors s_i = x_{i+1} - x_i.
        y_history: Stored gradient differences y_i = g_{i+1} - g_i.
        rho: Stored 1 / (y_i^T s_i).
        gamma: Initial inverse Hessian scaling (H_0 = gamma * I).
        count: Number of valid pairs stored (0 to memory size).
        next_idx: Next write position in the circular buffer.
    """

    s_history: Float[Array, "memory n"]
    y_history: Float[Array, "memory n"]
    rho: Float[Array, " memory"]
    gamma: Float[Array, ""]
    count: Int[Array, ""]
    next_idx: Int[Array, ""]


def lbfgs_init(n: int, memory: int, dtype=None) -> LBFGSHistory:
    """Initialize an empty L-BFGS history buffer.

    Args:
        n: Dimension of the parameter space.
        memory: Maximum number of (s, y) pairs to store (typically 3-20).
        dtype: Floating dtype of the stored vectors (default: JAX default).

    Returns:
        An initialized LBFGSHistory with no stored pairs and gamma=1.
    """
    return LBFGSHistory(
        s_history=jnp.zeros((memory, n), dtype=dtype),
        y_history=jnp.zeros((memory, n), dtype=dtype),
        rho=jnp.zeros((memory,), dtype=dtype),
        gamma=jnp.array(1.0, dtype=dtype),
        count=jnp.array(0),
        next_idx=jnp.array(0),
    )


@jaxtyped(typechecker=beartype)
def lbfgs_inverse_hvp(
    history: LBFGSHistory,
    v: Float[Array, " n"],
) -> Float[Array, " n"]:
    """Compute H @ v using the L-BFGS two-loop recursion.

    When no pairs are stored (count=0), this reduces to H = I.

    Complexity: O(kn) where k is the number of stored pairs.

    Args:
        history: L-BFGS history buffer.
        v: Vector to multiply by the inverse Hessian approximation.

    Returns:
        H @ v.
    """
    k = history.s_history.shape[0]
    count = history.count

    def newest_first(j):
        # j-th most recent pair lives at next_idx - 1 - j
        return (history.next_idx - 1 - j + k) % k

    def first_loop(j, carry):
        q, alpha = carry
        idx = newest_first(j)
        valid = j < count
        a = history.rho[idx] * jnp.dot(history.s_history[idx], q)
        a = jnp.where(valid, a, 0.0)
        q = q - a * history.y_history[idx]
        return q, alpha.at[idx].set(a)

    q, alpha = jax.lax.fori_loop(0, k, first_loop, (v, jnp.zeros_like(history.rho)))

    r = history.gamma * q

    def second_loop(j, r):
        # Walk back from the oldest valid pair to the newest
        idx = newest_first(k - 1 - j)
        valid = (k - 1 - j) < count
        b = history.rho[idx] * jnp.dot(history.y_history[idx], r)
        correction = jnp.where(valid, alpha[idx] - b, 0.0)
        return r + correction * history.s_history[idx]

    r = jax.lax.fori_loop(0, k, second_loop, r)

    # Fall back to the identity if the recursion produced garbage
    return jnp.where(jnp.all(jnp.isfinite(r)), r, v)


@jaxtyped(typechecker=beartype)
def lbfgs_append(
    history: LBFGSHistory,
    s: Float[Array, " n"],
    y: Float[Array, " n"],
    curvature_threshold: float = 1e-10,
    skip_threshold: float = 1e-16,
) -> LBFGSHistory:
    """Append a new (s, y) pair to the L-BFGS history.

    The pair is skipped when the step is negligible, when any value is
    non-finite, or when the curvature condition

        s^T y > curvature_threshold * ||s|| ||y||

    fails, so that H stays positive definite.

    After appending, gamma is updated to s^T y / (y^T y).

    Args:
        history: Current L-BFGS history.
        s: Step vector s = x_{k+1} - x_k.
        y: Gradient difference y = ∇f_{k+1} - ∇f_k.
        curvature_threshold: Minimum relative curvature (default 1e-10).
        skip_threshold: Minimum step norm for update (default 1e-16).

    Returns:
        Updated L-BFGS history with the new pair appended.
    """
    s_norm = jnp.linalg.norm(s)
    y_norm = jnp.linalg.norm(y)
    sTy = jnp.dot(s, y)

    has_bad_values = ~(
        jnp.isfinite(s_norm) & jnp.isfinite(y_norm) & jnp.isfinite(sTy)
    )
    step_too_small = s_norm < skip_threshold
    curvature_too_small = sTy <= curvature_threshold * s_norm * y_norm

    should_skip = has_bad_values | step_too_small | curvature_too_small

    def do_append():
        yTy = jnp.dot(y, y)
        k = history.s_history.shape[0]
        idx = history.next_idx
        return LBFGSHistory(
            s_history=history.s_history.at[idx].set(s),
            y_history=history.y_history.at[idx].set(y),
            rho=history.rho.at[idx].set(1.0 / sTy),
            gamma=sTy / yTy,
            count=jnp.minimum(history.count + 1, jnp.array(k)),
            next_idx=(idx + 1) % k,
        )

    def skip():
        return history

    return jax.lax.cond(~should_skip, do_append, skip)


def lbfgs_reset(history: LBFGSHistory) -> LBFGSHistory:
    """Forget all stored pairs (H back to the identity)."""
    return lbfgs_init(
        history.s_history.shape[1],
        history.s_history.shape[0],
        dtype=history.s_history.dtype,
    )
