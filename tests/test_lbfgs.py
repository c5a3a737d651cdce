"""Unit tests for the L-BFGS history and the backtracking line search."""

import jax
import jax.numpy as jnp
import numpy as np

from auglag_jax.lbfgs import (
    lbfgs_append,
    lbfgs_init,
    lbfgs_inverse_hvp,
    lbfgs_reset,
)
from auglag_jax.line_search import backtracking_line_search

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


class TestLBFGSHistory:
    """Tests for the circular (s, y) buffer."""

    def test_empty_history_is_identity(self):
        history = lbfgs_init(3, 5)
        v = jnp.array([1.0, -2.0, 3.0])
        np.testing.assert_allclose(lbfgs_inverse_hvp(history, v), v)

    def test_append_stores_pair(self):
        history = lbfgs_init(2, 3)
        s = jnp.array([1.0, 0.0])
        y = jnp.array([2.0, 0.0])
        history = lbfgs_append(history, s, y)

        assert int(history.count) == 1
        assert int(history.next_idx) == 1
        np.testing.assert_allclose(history.rho[0], 0.5)
        # gamma = s^T y / y^T y
        np.testing.assert_allclose(history.gamma, 0.5)

    def test_secant_condition_newest_pair(self):
        """The BFGS inverse update satisfies H y = s for the newest pair."""
        history = lbfgs_init(3, 4)
        pairs = [
            (jnp.array([1.0, 0.5, 0.0]), jnp.array([2.0, 0.7, 0.1])),
            (jnp.array([0.0, 1.0, -0.5]), jnp.array([0.3, 1.5, -0.4])),
            (jnp.array([0.2, -0.1, 1.0]), jnp.array([0.1, 0.0, 3.0])),
        ]
        for s, y in pairs:
            history = lbfgs_append(history, s, y)

        s, y = pairs[-1]
        np.testing.assert_allclose(lbfgs_inverse_hvp(history, y), s, rtol=1e-10)

    def test_quadratic_pairs_positive_definite(self):
        """Pairs from a convex quadratic keep H positive definite."""
        A = jnp.array([[4.0, 1.0], [1.0, 3.0]])
        history = lbfgs_init(2, 5)
        for s in (jnp.array([1.0, 0.0]), jnp.array([0.0, 1.0])):
            history = lbfgs_append(history, s, A @ s)

        v = jnp.array([0.3, -0.7])
        Hv = lbfgs_inverse_hvp(history, v)
        assert float(jnp.dot(v, Hv)) > 0.0
        np.testing.assert_allclose(
            lbfgs_inverse_hvp(history, A @ jnp.array([0.0, 1.0])),
            [0.0, 1.0],
            atol=1e-12,
        )

    def test_negative_curvature_is_skipped(self):
        history = lbfgs_init(2, 3)
        s = jnp.array([1.0, 0.0])
        y = jnp.array([-1.0, 0.0])
        history = lbfgs_append(history, s, y)
        assert int(history.count) == 0

    def test_non_finite_pair_is_skipped(self):
        history = lbfgs_init(2, 3)
        s = jnp.array([1.0, 0.0])
        y = jnp.array([jnp.nan, 1.0])
        history = lbfgs_append(history, s, y)
        assert int(history.count) == 0

    def test_circular_buffer_wraps(self):
        history = lbfgs_init(2, 2)
        for scale in (1.0, 2.0, 3.0):
            s = jnp.array([scale, 1.0])
            history = lbfgs_append(history, s, 2.0 * s)

        assert int(history.count) == 2
        assert int(history.next_idx) == 1
        # Oldest pair (scale=1) was overwritten by scale=3
        np.testing.assert_allclose(history.s_history[0], [3.0, 1.0])

    def test_reset(self):
        history = lbfgs_init(2, 3)
        history = lbfgs_append(history, jnp.array([1.0, 0.0]), jnp.array([1.0, 0.0]))
        history = lbfgs_reset(history)
        assert int(history.count) == 0
        assert history.s_history.shape == (3, 2)

    def test_jit_compilation(self):
        @jax.jit
        def apply(s, y, v):
            history = lbfgs_append(lbfgs_init(2, 3), s, y)
            return lbfgs_inverse_hvp(history, v)

        result = apply(jnp.array([1.0, 0.0]), jnp.array([2.0, 0.0]), jnp.array([2.0, 0.0]))
        np.testing.assert_allclose(result, [1.0, 0.0])


class TestBacktrackingLineSearch:
    """Tests for the Armijo backtracking line search."""

    @staticmethod
    def _square(x, args):
        return jnp.sum(x**2), None

    def test_full_step_accepted(self):
        x = jnp.array([1.0])
        grad = 2.0 * x
        # Newton direction for x^2 lands on the minimum
        result = backtracking_line_search(
            self._square, x, -0.5 * grad, None, jnp.sum(x**2), grad
        )
        assert bool(result.success)
        np.testing.assert_allclose(result.alpha, 1.0)
        np.testing.assert_allclose(result.f_val, 0.0)

    def test_step_halved(self):
        x = jnp.array([1.0])
        grad = 2.0 * x
        # Steepest descent overshoots to x = -1 with alpha = 1
        result = backtracking_line_search(
            self._square, x, -grad, None, jnp.sum(x**2), grad
        )
        assert bool(result.success)
        np.testing.assert_allclose(result.alpha, 0.5)
        assert int(result.n_evals) == 2

    def test_ascent_direction_fails(self):
        x = jnp.array([1.0])
        grad = 2.0 * x
        result = backtracking_line_search(
            self._square, x, grad, None, jnp.sum(x**2), grad, max_iter=5
        )
        assert not bool(result.success)
        np.testing.assert_allclose(result.alpha, 0.0)
        np.testing.assert_allclose(result.f_val, 1.0)

    def test_non_finite_trial_rejected(self):
        def fn(x, args):
            return jnp.where(x[0] < -0.5, jnp.inf, jnp.sum(x**2)), None

        x = jnp.array([1.0])
        grad = 2.0 * x
        result = backtracking_line_search(fn, x, -grad, None, jnp.sum(x**2), grad)
        assert bool(result.success)
        assert bool(jnp.isfinite(result.f_val))

    def test_aux_from_accepted_step(self):
        def fn(x, args):
            return jnp.sum(x**2), x + 1.0

        x = jnp.array([1.0])
        grad = 2.0 * x
        # alpha = 1 is rejected, alpha = 0.5 lands on x = 0
        result = backtracking_line_search(fn, x, -grad, None, jnp.sum(x**2), grad)
        assert bool(result.success)
        np.testing.assert_allclose(result.aux, [1.0])
