"""Poisson problem definitions and a small library of premade problems.

Functions are vectorized over node/point coordinate arrays:

    f(x, y)        linear forcing
    f(u, x, y)     non-linear forcing (u = current nodal iterate)
    sol(x, y)      analytic solution
    Du(x, y)       analytic gradient, returns (ux, uy)
    gD(x, y)       Dirichlet data
    gN(x, y)       Neumann flux du/dn
    sigma(x, y)    noise intensity
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np
from numpy.typing import NDArray

log = logging.getLogger(__name__)

# Noise intensity used when a stochastic problem does not set one
DEFAULT_SIGMA = 1.0


def evaluate(func: Callable, *args: NDArray[np.float64]) -> NDArray[np.float64]:
    """Call `func` and broadcast the result to the shape of the last argument."""
    value = np.asarray(func(*args), dtype=np.float64)
    return np.broadcast_to(value, np.shape(args[-1])).copy()


@dataclass(frozen=True)
class ProblemFlags:
    """Which load-vector and solve path a problem takes."""

    linear: bool = True
    stochastic: bool = False


@dataclass(frozen=True)
class PoissonProblem:
    """Poisson problem -Δu = f (+ σẆ when stochastic)."""

    f: Callable
    sol: Callable | None = None
    Du: Callable | None = None
    gN: Callable | None = None
    gD: Callable | None = None
    is_linear: bool = True
    sigma: Callable | None = None
    stochastic: bool = False

    def __post_init__(self) -> None:
        if self.stochastic and self.sigma is None:
            log.warning(f"Stochastic problem without sigma; using constant {DEFAULT_SIGMA}")
            object.__setattr__(self, "sigma", lambda x, y: DEFAULT_SIGMA)

    @property
    def flags(self) -> ProblemFlags:
        return ProblemFlags(linear=self.is_linear, stochastic=self.stochastic)

    @property
    def true_known(self) -> bool:
        return self.sol is not None


# ============================================================================
# Premade problems
# ============================================================================


def wave_problem() -> PoissonProblem:
    """-Δu = sin(2πx)cos(2πy) with u = sin(2πx)cos(2πy)/(8π²)."""

    def f(x, y):
        return np.sin(2 * np.pi * x) * np.cos(2 * np.pi * y)

    def sol(x, y):
        return np.sin(2 * np.pi * x) * np.cos(2 * np.pi * y) / (8 * np.pi**2)

    def Du(x, y):
        return (
            np.cos(2 * np.pi * x) * np.cos(2 * np.pi * y) / (4 * np.pi),
            -np.sin(2 * np.pi * x) * np.sin(2 * np.pi * y) / (4 * np.pi),
        )

    return PoissonProblem(f=f, sol=sol, Du=Du)


def noisy_wave_problem(sigma: float = 5.0) -> PoissonProblem:
    """The wave problem driven by additive white noise of constant intensity."""
    wave = wave_problem()
    return PoissonProblem(
        f=wave.f,
        sol=wave.sol,
        Du=wave.Du,
        sigma=lambda x, y: sigma,
        stochastic=True,
    )


def birth_death_problem() -> PoissonProblem:
    """Non-linear -Δu = 1 - u/2 with u = 2 on the boundary (steady state u = 2)."""
    return PoissonProblem(
        f=lambda u, x, y: 1.0 - u / 2.0,
        gD=lambda x, y: 2.0,
        is_linear=False,
    )


def manufactured_problem() -> PoissonProblem:
    """-Δu = 2π² sin(πx)sin(πy) with u = sin(πx)sin(πy) on the unit square."""

    def Du(x, y):
        return (
            np.pi * np.cos(np.pi * x) * np.sin(np.pi * y),
            np.pi * np.sin(np.pi * x) * np.cos(np.pi * y),
        )

    return PoissonProblem(
        f=lambda x, y: 2 * np.pi**2 * np.sin(np.pi * x) * np.sin(np.pi * y),
        sol=lambda x, y: np.sin(np.pi * x) * np.sin(np.pi * y),
        Du=Du,
    )


PROBLEMS = {
    "wave": wave_problem,
    "noisy_wave": noisy_wave_problem,
    "birth_death": birth_death_problem,
    "manufactured": manufactured_problem,
}
