"""auglag-jax: the Augmented Lagrangian method in pure JAX.

This package solves equality-constrained nonlinear problems with the method
of multipliers: a sequence of unconstrained subproblems, each minimized by a
limited-memory BFGS solver built on the Optimistix framework, interleaved
with Lagrange multiplier and penalty updates. Problems supply their own
objective and constraint gradients through AbstractConstrainedProblem.
"""

import logging

from auglag_jax.aug_lagrangian import (
    DEFAULT_SIGMA,
    PENALTY_GROWTH,
    SUFFICIENT_DECREASE,
    AugLagrangian,
    AugLagrangianSolution,
)
from auglag_jax.lbfgs import (
    LBFGSHistory,
    lbfgs_append,
    lbfgs_init,
    lbfgs_inverse_hvp,
)
from auglag_jax.line_search import backtracking_line_search
from auglag_jax.minimiser import LBFGS, LBFGSState
from auglag_jax.problem import (
    AbstractConstrainedProblem,
    FunctionProblem,
    function_problem,
)
from auglag_jax.types import GradFn, SolverResult

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Main solver
    "AugLagrangian",
    "AugLagrangianSolution",
    "DEFAULT_SIGMA",
    "PENALTY_GROWTH",
    "SUFFICIENT_DECREASE",
    # Problems
    "AbstractConstrainedProblem",
    "FunctionProblem",
    "function_problem",
    # Types
    "GradFn",
    "SolverResult",
    # Inner minimiser
    "LBFGS",
    "LBFGSState",
    "backtracking_line_search",
    # L-BFGS
    "LBFGSHistory",
    "lbfgs_init",
    "lbfgs_inverse_hvp",
    "lbfgs_append",
]
