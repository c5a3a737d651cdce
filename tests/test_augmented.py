"""Tests for the augmented Lagrangian function."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from auglag_jax import function_problem
from auglag_jax.augmented import (
    AugmentedLagrangianFunction,
    augmented_gradient,
    augmented_value,
    bind,
)
from auglag_jax.problems import CircleProblem, PlanesProblem, SphereLinearProblem

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


class TestAugmentedValues:
    """Values and gradients against hand-computed results."""

    def test_sphere_known_values(self):
        # f = 0.2, c = -0.4:  L = 0.2 - 0.3 * (-0.4) + (2 / 2) * 0.16
        function = bind(SphereLinearProblem(n=2, target=1.0), 2.0).with_multipliers(
            jnp.array([0.3]), 2.0
        )
        x = jnp.array([0.2, 0.4])
        np.testing.assert_allclose(function.evaluate(x), 0.48, rtol=1e-12)
        np.testing.assert_allclose(function.gradient(x), [-0.7, -0.3], rtol=1e-12)

    def test_zero_multipliers_is_quadratic_penalty(self):
        problem = CircleProblem()
        function = bind(problem, 4.0)
        x = jnp.array([0.3, -1.2])
        c = x[0] ** 2 + x[1] ** 2 - 1.0
        expected = problem.evaluate(x) + 2.0 * c**2
        np.testing.assert_allclose(function.evaluate(x), expected, rtol=1e-12)

    @pytest.mark.parametrize(
        "x",
        [
            jnp.array([0.0, 0.0, 0.0]),
            jnp.array([1.0, -2.0, 0.5]),
            jnp.array([3.0, 0.1, -4.0]),
        ],
    )
    def test_gradient_matches_autodiff(self, x):
        function = bind(PlanesProblem(), 3.0).with_multipliers(
            jnp.array([0.7, -1.5]), 3.0
        )
        np.testing.assert_allclose(
            function.gradient(x), jax.grad(function.evaluate)(x), rtol=1e-10
        )

    def test_optimistix_wrappers(self):
        function = bind(CircleProblem(), 1.5)
        x = jnp.array([0.4, 0.9])
        np.testing.assert_array_equal(augmented_value(x, function), function.evaluate(x))
        np.testing.assert_array_equal(
            augmented_gradient(x, function), function.gradient(x)
        )


class TestAugmentedEdgeCases:
    """Unconstrained problems, purity and rebinding."""

    def test_unconstrained_is_plain_objective(self):
        problem = function_problem(
            lambda x: jnp.sum((x - 1.0) ** 4),
            lambda x: 4.0 * (x - 1.0) ** 3,
        )
        function = bind(problem, 10.0)
        x = jnp.array([0.5, 2.0, -1.0])

        assert function.lagrange_multipliers.shape == (0,)
        np.testing.assert_array_equal(function.evaluate(x), problem.evaluate(x))
        np.testing.assert_array_equal(function.gradient(x), problem.gradient(x))
        assert function.constraint_values(x).shape == (0,)

    def test_repeated_calls_identical(self):
        function = bind(PlanesProblem(), 2.0).with_multipliers(
            jnp.array([1.0, 0.5]), 2.0
        )
        x = jnp.array([0.1, 0.2, 0.3])
        np.testing.assert_array_equal(function.evaluate(x), function.evaluate(x))
        np.testing.assert_array_equal(function.gradient(x), function.gradient(x))

    def test_with_multipliers_leaves_original(self):
        function = bind(SphereLinearProblem(), 0.5)
        rebound = function.with_multipliers(jnp.array([2.0]), 5.0)

        np.testing.assert_array_equal(function.lagrange_multipliers, [0.0])
        np.testing.assert_allclose(function.sigma, 0.5)
        np.testing.assert_array_equal(rebound.lagrange_multipliers, [2.0])
        np.testing.assert_allclose(rebound.sigma, 5.0)

    def test_constraint_values(self):
        function = bind(PlanesProblem(), 1.0)
        np.testing.assert_allclose(
            function.constraint_values(jnp.array([1.0, 2.0, 3.0])), [3.0, -2.0]
        )

    def test_bind_dtype(self):
        function = bind(PlanesProblem(), 1.0, dtype=jnp.float32)
        assert function.lagrange_multipliers.shape == (2,)
        assert function.lagrange_multipliers.dtype == jnp.float32
        assert function.sigma.dtype == jnp.float32

    def test_wrong_multiplier_shape(self):
        with pytest.raises(ValueError, match="Lagrange multipliers"):
            AugmentedLagrangianFunction(
                problem=PlanesProblem(),
                lagrange_multipliers=jnp.zeros(3),
                sigma=jnp.asarray(1.0),
            )

    def test_jit(self):
        function = bind(SphereLinearProblem(n=3), 2.0)

        @jax.jit
        def value_and_grad(function, x):
            return function.evaluate(x), function.gradient(x)

        x = jnp.array([1.0, 0.0, -1.0])
        value, grad = value_and_grad(function, x)
        np.testing.assert_allclose(value, function.evaluate(x))
        np.testing.assert_allclose(grad, function.gradient(x))
