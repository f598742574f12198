"""SFEM package for (stochastic) 2D Poisson problems.

This package implements P1 (linear) triangular finite elements for solving
-Δu = f, optionally non-linear in u and optionally driven by additive
space-time white noise, with Dirichlet and Neumann boundary conditions.

Main components:
- Mesh2d, square_mesh: 2D triangular meshes
- PoissonProblem: problem definition (forcing, analytic solution, BC data, noise)
- assemble_stiffness, assemble_mass, assemble_load, white_noise: global assembly
- partition_dofs, neubc_2d, reduce_system: boundary condition application
- solve: high-level solver returning a Solution

Example
-------
>>> from fractions import Fraction
>>> from SFEM import square_mesh, wave_problem, solve
>>>
>>> mesh = square_mesh((0, 1, 0, 1), Fraction(1, 32), "Dirichlet")
>>> sol = solve(mesh, wave_problem(), solver="gmres")
>>> sol.errors["l_inf"]
"""

from .datastructures import (
    Mesh2d,
    Metrics,
    Solution,
    SolverParameters,
    LEFT,
    RIGHT,
    BOTTOM,
    TOP,
    INTERIOR,
    DIRICHLET,
    NEUMANN,
)
from .exceptions import (
    FEMError,
    InvalidSpacingError,
    DegenerateTriangleError,
    MissingBoundaryDataError,
    SingularSystemError,
    NonConvergenceError,
)
from .mesh import square_mesh
from .problem import (
    PoissonProblem,
    ProblemFlags,
    wave_problem,
    noisy_wave_problem,
    birth_death_problem,
    manufactured_problem,
)
from .assembly import (
    assemble_stiffness,
    assemble_mass,
    assemble_load,
    white_noise,
)
from .boundary import (
    partition_dofs,
    dirichlet_values,
    neubc_2d,
    reduce_system,
    get_boundary_nodes,
    get_boundary_edges,
)
from .solvers import (
    LinearSolver,
    solve,
    solve_poisson,
    monte_carlo,
    convergence_study,
)

__all__ = [
    # Mesh
    "Mesh2d",
    "square_mesh",
    "LEFT",
    "RIGHT",
    "BOTTOM",
    "TOP",
    "INTERIOR",
    "DIRICHLET",
    "NEUMANN",
    # Problem
    "PoissonProblem",
    "ProblemFlags",
    "wave_problem",
    "noisy_wave_problem",
    "birth_death_problem",
    "manufactured_problem",
    # Assembly
    "assemble_stiffness",
    "assemble_mass",
    "assemble_load",
    "white_noise",
    # Boundary conditions
    "partition_dofs",
    "dirichlet_values",
    "neubc_2d",
    "reduce_system",
    "get_boundary_nodes",
    "get_boundary_edges",
    # Solvers
    "LinearSolver",
    "solve",
    "solve_poisson",
    "monte_carlo",
    "convergence_study",
    # Results and configuration
    "Solution",
    "SolverParameters",
    "Metrics",
    # Errors
    "FEMError",
    "InvalidSpacingError",
    "DegenerateTriangleError",
    "MissingBoundaryDataError",
    "SingularSystemError",
    "NonConvergenceError",
]
