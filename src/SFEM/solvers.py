"""Poisson solve pipeline: assemble, enforce boundary data, solve, collect errors.

    Problem + Mesh -> assembly (K, M, b) -> boundary (K_ff, b_f)
                   -> LinearSolver / fixed_point (x_free) -> Solution
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Sequence

import numpy as np
import pyamg
from numpy.typing import NDArray
from scipy.sparse import csr_matrix, spmatrix
from scipy.sparse.csgraph import connected_components
from scipy.sparse.linalg import cg, gmres, splu

from .assembly import (
    assemble_load,
    assemble_mass,
    assemble_stiffness,
    noise_intensity,
    noise_source,
    white_noise,
)
from .boundary import dirichlet_values, neubc_2d, partition_dofs, reduce_system
from .datastructures import Mesh2d, Metrics, Solution, SolverParameters
from .exceptions import NonConvergenceError, SingularSystemError
from .interpolation import nodal_errors
from .mesh import square_mesh
from .problem import PoissonProblem

log = logging.getLogger(__name__)

LINEAR_SOLVERS = ("direct", "lu", "gmres", "cg", "amg")

# Relative size of A @ 1 below which constants are taken to lie in the null space
NULLSPACE_TOL = 1e-10

# Largest relative residual accepted from the LU solve
DIRECT_RESIDUAL_TOL = 1e-8


# =============================================================================
# Linear Solver
# =============================================================================
class LinearSolver:
    """Cached solver for the reduced system A x = b.

    The direct method factorizes once; AMG builds its hierarchy once. Krylov
    methods warm-start from the previous solution.
    """

    def __init__(self, A: spmatrix, params: SolverParameters | None = None):
        self.params = params or SolverParameters()
        self.method = self.params.solver.lower()
        if self.method not in LINEAR_SOLVERS:
            raise ValueError(f"Unknown solver {self.params.solver!r}. Use one of {LINEAR_SOLVERS}")

        self.A = csr_matrix(A)
        self.n = self.A.shape[0]
        self._x_prev = np.zeros(self.n)
        if self.n == 0:
            return

        self._check_constant_nullspace()
        if self.method in ("direct", "lu"):
            try:
                self.lu = splu(self.A.tocsc())
            except RuntimeError as exc:
                raise SingularSystemError(f"Reduced system is singular: {exc}") from exc
        elif self.method == "amg":
            self.ml = pyamg.smoothed_aggregation_solver(self.A)

    def _check_constant_nullspace(self) -> None:
        # A pure Neumann block maps constants on its connected component to zero
        scale = np.abs(self.A).max()
        if scale == 0:
            raise SingularSystemError("Reduced system matrix is zero")
        n_components, labels = connected_components(self.A, directed=False)
        row_sums = np.abs(self.A @ np.ones(self.n))
        component_max = np.zeros(n_components)
        np.maximum.at(component_max, labels, row_sums)
        floating = np.where(component_max <= NULLSPACE_TOL * scale)[0]
        if len(floating):
            raise SingularSystemError(
                f"{len(floating)} of {n_components} connected blocks of the reduced system "
                f"annihilate constants (first free index {np.argmax(labels == floating[0])}); "
                "add Dirichlet data to fix the solution"
            )

    def solve(self, b: NDArray[np.float64]) -> tuple[NDArray[np.float64], float]:
        """Solve A x = b. Returns (x, relative residual)."""
        if self.n == 0:
            return np.zeros(0), 0.0

        p = self.params
        iterations = None
        if self.method in ("direct", "lu"):
            x = self.lu.solve(b)
        elif self.method == "gmres":
            x, info = gmres(self.A, b, x0=self._x_prev, rtol=p.linear_tol, atol=0.0,
                            maxiter=p.linear_maxiter)
            iterations = self._krylov_info(info)
        elif self.method == "cg":
            x, info = cg(self.A, b, x0=self._x_prev, rtol=p.linear_tol, atol=0.0,
                         maxiter=p.linear_maxiter)
            iterations = self._krylov_info(info)
        else:
            residuals: list[float] = []
            x = self.ml.solve(b, x0=self._x_prev, tol=p.linear_tol, maxiter=p.linear_maxiter,
                              residuals=residuals)
            iterations = len(residuals) - 1

        if not np.all(np.isfinite(x)):
            raise SingularSystemError(f"{self.method} produced non-finite values")

        b_norm = np.linalg.norm(b)
        residual = float(np.linalg.norm(self.A @ x - b) / (b_norm if b_norm > 0 else 1.0))
        if iterations is None and residual > max(p.linear_tol, DIRECT_RESIDUAL_TOL):
            raise SingularSystemError(
                f"LU solve left relative residual {residual:.3e}; reduced system is numerically singular"
            )
        if iterations is not None and iterations >= p.linear_maxiter and residual > p.linear_tol:
            raise NonConvergenceError(iterations=iterations, residual=residual,
                                      message=f"{self.method} did not reach rtol={p.linear_tol} "
                                              f"in {iterations} iterations (residual={residual:.3e})")

        self._x_prev = x
        return x, residual

    def _krylov_info(self, info: int) -> int:
        if info < 0:
            raise SingularSystemError(f"{self.method} breakdown (info={info})")
        return self.params.linear_maxiter if info > 0 else 0


def solve_linear_system(
    A: spmatrix,
    b: NDArray[np.float64],
    params: SolverParameters | None = None,
) -> tuple[NDArray[np.float64], float]:
    """One-shot solve of A x = b with the configured method."""
    return LinearSolver(A, params).solve(b)


# =============================================================================
# Non-linear (fixed-point) iteration
# =============================================================================
def fixed_point(
    mesh: Mesh2d,
    problem: PoissonProblem,
    M: spmatrix,
    linear_solver: LinearSolver,
    b_const: NDArray[np.float64],
    fixed: NDArray[np.int64],
    free: NDArray[np.int64],
    g: NDArray[np.float64],
    params: SolverParameters,
    u0: NDArray[np.float64] | None = None,
) -> tuple[NDArray[np.float64], int, float]:
    """
    Picard iteration for -Δu = f(u): reassemble the load from the previous
    iterate and solve until ||x_new - x_old||_inf < tol.

    `b_const` holds the reduced contributions that do not depend on u
    (Dirichlet lifting, Neumann flux, noise). Returns (u, iterations, step).
    """
    u = np.zeros(mesh.nonodes) if u0 is None else np.array(u0, dtype=np.float64)
    u[fixed] = g

    step = float("inf")
    for iteration in range(1, params.maxiter + 1):
        b = assemble_load(mesh, problem, M, u)
        x_free, _ = linear_solver.solve(b[free] + b_const)
        step = float(np.max(np.abs(x_free - u[free]))) if len(free) else 0.0
        u[free] = x_free
        log.debug(f"Fixed-point iteration {iteration}: step={step:.3e}")
        if step < params.tol:
            return u, iteration, step

    raise NonConvergenceError(iterations=params.maxiter, residual=step)


# =============================================================================
# Solution assembly
# =============================================================================
def assemble_solution(
    mesh: Mesh2d,
    problem: PoissonProblem,
    x_free: NDArray[np.float64],
    fixed: NDArray[np.int64],
    free: NDArray[np.int64],
    g: NDArray[np.float64],
    M: spmatrix,
    params: SolverParameters,
    metrics: Metrics,
) -> Solution:
    """Merge free and Dirichlet values into the full field and compute errors."""
    u = np.zeros(mesh.nonodes)
    u[free] = x_free
    u[fixed] = g

    u_analytic = error = None
    errors: dict[str, float] = {}
    if problem.sol is not None:
        u_analytic, error, errors = nodal_errors(mesh, u, problem.sol, M, problem.Du)
        metrics.l_inf_error = errors["l_inf"]
        metrics.L2_error = errors["L2"]
        metrics.H1_error = errors.get("H1", float("inf"))

    return Solution(mesh=mesh, u=u, errors=errors, u_analytic=u_analytic, error=error,
                    params=params, metrics=metrics)


# =============================================================================
# Entry point
# =============================================================================
def solve(
    mesh: Mesh2d,
    problem: PoissonProblem,
    solver: str | None = None,
    params: SolverParameters | None = None,
    noise: np.random.Generator | int | None = None,
) -> Solution:
    """
    Solve a Poisson problem on a mesh.

    Parameters
    ----------
    mesh : Mesh2d
    problem : PoissonProblem
    solver : str, optional
        "direct" (or "lu"), "gmres", "cg" or "amg". Overrides params.solver.
    params : SolverParameters, optional
    noise : Generator or int, optional
        Noise source for stochastic problems. Falls back to params.seed.

    Returns
    -------
    Solution
    """
    params = params or SolverParameters()
    if solver is not None:
        params = replace(params, solver=solver)
    flags = problem.flags
    time_start = time.perf_counter()

    # Boundary and noise data are validated before any assembly work
    fixed, free = partition_dofs(mesh)
    g = dirichlet_values(mesh, problem, fixed)
    sigma = noise_intensity(mesh, problem) if flags.stochastic else None

    log.info(
        f"Solving Poisson: {mesh.nonodes} nodes, {len(free)} free, {len(fixed)} fixed, "
        f"solver={params.solver}, linear={flags.linear}, stochastic={flags.stochastic}"
    )

    K = assemble_stiffness(mesh, params.area_eps)
    M = assemble_mass(mesh, eps=params.area_eps)

    b_extra = neubc_2d(mesh, problem, np.zeros(mesh.nonodes))
    if flags.stochastic:
        rng = noise_source(noise if noise is not None else params.seed)
        b_extra += white_noise(mesh, sigma, rng, params.area_eps)

    metrics = Metrics(nonodes=mesh.nonodes, n_free=len(free), n_fixed=len(fixed))

    if flags.linear:
        b = assemble_load(mesh, problem, M) + b_extra
        K_ff, b_f = reduce_system(K, b, fixed, free, g)
        x_free, metrics.linear_residual = LinearSolver(K_ff, params).solve(b_f)
        metrics.iterations = 1
    else:
        K_ff, b_const = reduce_system(K, b_extra, fixed, free, g)
        linear_solver = LinearSolver(K_ff, params)
        u, metrics.iterations, _ = fixed_point(
            mesh, problem, M, linear_solver, b_const, fixed, free, g, params
        )
        x_free = u[free]
        b_f = assemble_load(mesh, problem, M, u)[free] + b_const
        metrics.linear_residual = float(
            np.linalg.norm(K_ff @ x_free - b_f) / max(np.linalg.norm(b_f), 1e-300)
        )

    metrics.converged = True
    metrics.wall_time_seconds = time.perf_counter() - time_start
    solution = assemble_solution(mesh, problem, x_free, fixed, free, g, M, params, metrics)

    log.info(
        f"Done: {metrics.iterations} iter, time={metrics.wall_time_seconds:.3f}s"
        + (f", l_inf={solution.errors['l_inf']:.3e}" if solution.errors else "")
    )
    return solution


solve_poisson = solve


# =============================================================================
# Studies
# =============================================================================
def monte_carlo(
    mesh: Mesh2d,
    problem: PoissonProblem,
    n_trials: int,
    seed: int | None = None,
    solver: str | None = None,
    params: SolverParameters | None = None,
) -> Solution:
    """
    Ensemble mean of `n_trials` independent stochastic solves.

    Each trial draws from its own generator spawned from `seed`. The returned
    Solution carries the mean field, its errors against the analytic solution,
    and n_trials as its iteration count.
    """
    if n_trials < 1:
        raise ValueError(f"n_trials must be positive, got {n_trials}")
    params = params or SolverParameters()
    if solver is not None:
        params = replace(params, solver=solver)

    time_start = time.perf_counter()
    children = np.random.SeedSequence(seed).spawn(n_trials)
    u_sum = np.zeros(mesh.nonodes)
    for child in children:
        u_sum += solve(mesh, problem, params=params, noise=np.random.default_rng(child)).u
    u_mean = u_sum / n_trials

    fixed, free = partition_dofs(mesh)
    metrics = Metrics(iterations=n_trials, converged=True, nonodes=mesh.nonodes,
                      n_free=len(free), n_fixed=len(fixed))
    M = assemble_mass(mesh, eps=params.area_eps)
    metrics.wall_time_seconds = time.perf_counter() - time_start
    log.info(f"Monte Carlo: {n_trials} trials in {metrics.wall_time_seconds:.2f}s")
    return assemble_solution(mesh, problem, u_mean[free], fixed, free, u_mean[fixed], M,
                             params, metrics)


def convergence_study(
    problem: PoissonProblem,
    dxs: Sequence,
    bounds: Sequence[float] = (0, 1, 0, 1),
    bc_type: str = "Dirichlet",
    solver: str | None = None,
    params: SolverParameters | None = None,
) -> dict[str, list[float]]:
    """
    Solve on a sequence of square meshes and report errors and observed rates.

    Returns
    -------
    dict
        h, l_inf, L2, H1 (when a gradient is known) and the corresponding *_rates.
    """
    if problem.sol is None:
        raise ValueError("Convergence study needs an analytic solution")

    results: dict[str, list[float]] = {"h": [], "l_inf": [], "L2": []}
    if problem.Du is not None:
        results["H1"] = []

    for dx in dxs:
        mesh = square_mesh(bounds, dx, bc_type)
        sol = solve(mesh, problem, solver=solver, params=params)
        results["h"].append(float(dx))
        for key in results:
            if key != "h":
                results[key].append(sol.errors[key])
        log.info(f"dx={float(dx):.5f}: l_inf={sol.errors['l_inf']:.3e}, L2={sol.errors['L2']:.3e}")

    h = np.asarray(results["h"])
    for key in [k for k in results if k != "h"]:
        e = np.asarray(results[key])
        results[f"{key}_rates"] = list(np.log(e[:-1] / e[1:]) / np.log(h[:-1] / h[1:]))
    return results
