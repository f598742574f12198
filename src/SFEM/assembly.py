from __future__ import annotations

import numpy as np
from numba import njit
from numpy.typing import NDArray
from scipy.sparse import csr_matrix

from .datastructures import EDGE_VERTICES, Mesh2d
from .elements import element_mass, element_noise_weights
from .exceptions import DegenerateTriangleError, MissingBoundaryDataError
from .problem import PoissonProblem, evaluate

# Smallest accepted ratio of triangle area to its longest edge squared
AREA_EPS = 1e-14


def element_areas(mesh: Mesh2d, eps: float = AREA_EPS) -> NDArray[np.float64]:
    """Triangle areas; raises on the first area <= eps * (longest edge)^2."""
    areas = mesh.areas
    edges = mesh.EToV[:, EDGE_VERTICES]
    edge_sq = (mesh.VX[edges[..., 1]] - mesh.VX[edges[..., 0]]) ** 2 + (
        mesh.VY[edges[..., 1]] - mesh.VY[edges[..., 0]]
    ) ** 2
    degenerate = np.where(areas <= eps * edge_sq.max(axis=1))[0]
    if len(degenerate):
        e = int(degenerate[0])
        raise DegenerateTriangleError(element=e, area=float(areas[e]))
    return areas


def _assemble_csr(mesh: Mesh2d, Ke_all: NDArray[np.float64]) -> csr_matrix:
    """Scatter-accumulate (noelms, 3, 3) local matrices into the global CSR matrix."""
    nnz = len(mesh._csr_indices)
    csr_data = np.zeros(nnz, dtype=np.float64)
    np.add.at(csr_data, mesh._csr_data_map, Ke_all.ravel())

    return csr_matrix(
        (csr_data, mesh._csr_indices, mesh._csr_indptr),
        shape=(mesh.nonodes, mesh.nonodes),
    )


@njit
def _assemble_stiffness_core(x1, y1, x2, y2, x3, y3, areas):
    n_elem = len(areas)
    Ke_all = np.zeros((n_elem, 3, 3))
    b = np.empty(3)
    c = np.empty(3)
    for e in range(n_elem):
        b[0] = y2[e] - y3[e]
        b[1] = y3[e] - y1[e]
        b[2] = y1[e] - y2[e]
        c[0] = x3[e] - x2[e]
        c[1] = x1[e] - x3[e]
        c[2] = x2[e] - x1[e]
        scale = 1.0 / (4.0 * areas[e])
        for i in range(3):
            for j in range(3):
                Ke_all[e, i, j] = scale * (b[i] * b[j] + c[i] * c[j])
    return Ke_all


@njit
def _assemble_mass_core(areas, Me_unit):
    n_elem = len(areas)
    Me_all = np.zeros((n_elem, 3, 3))
    for e in range(n_elem):
        for i in range(3):
            for j in range(3):
                Me_all[e, i, j] = areas[e] * Me_unit[i, j]
    return Me_all


def local_stiffness_matrices(mesh: Mesh2d, eps: float = AREA_EPS) -> NDArray[np.float64]:
    """Local P1 stiffness matrices, shape (noelms, 3, 3)."""
    areas = element_areas(mesh, eps)
    x1, y1, x2, y2, x3, y3 = mesh.vertex_coords
    return _assemble_stiffness_core(x1, y1, x2, y2, x3, y3, areas)


def assemble_stiffness(mesh: Mesh2d, eps: float = AREA_EPS) -> csr_matrix:
    """
    Assemble the stiffness matrix K where K_ij = ∫ ∇φ_i·∇φ_j dΩ.
    """
    return _assemble_csr(mesh, local_stiffness_matrices(mesh, eps))


def assemble_mass(mesh: Mesh2d, coeff: float = 1.0, eps: float = AREA_EPS) -> csr_matrix:
    """
    Assemble the mass matrix M where M_ij = ∫ φ_i φ_j dΩ.
    """
    areas = element_areas(mesh, eps)
    Me_unit = element_mass(1.0, coeff).astype(np.float64)
    return _assemble_csr(mesh, _assemble_mass_core(areas, Me_unit))


def assemble_load(
    mesh: Mesh2d,
    problem: PoissonProblem,
    M: csr_matrix,
    u: NDArray[np.float64] | None = None,
) -> NDArray[np.float64]:
    """
    Assemble the deterministic load vector b = M f(nodes).

    For non-linear problems f is evaluated at the nodal iterate `u`.
    """
    if problem.flags.linear:
        f_nodes = evaluate(problem.f, mesh.VX, mesh.VY)
    else:
        if u is None:
            raise ValueError("Non-linear forcing needs the current iterate u")
        f_nodes = evaluate(problem.f, u, mesh.VX, mesh.VY)
    return M @ f_nodes


def noise_source(noise: np.random.Generator | int | None = None) -> np.random.Generator:
    """Normalize a seed (or None) into an explicit random generator."""
    if isinstance(noise, np.random.Generator):
        return noise
    return np.random.default_rng(noise)


def noise_intensity(mesh: Mesh2d, problem: PoissonProblem) -> NDArray[np.float64]:
    """σ at the triangle centroids; raises if it is undefined anywhere."""
    if problem.sigma is None:
        raise MissingBoundaryDataError("Stochastic problem has no noise intensity")
    xc, yc = mesh.centroids
    sigma = evaluate(problem.sigma, xc, yc)
    bad = np.where(~np.isfinite(sigma))[0]
    if len(bad):
        raise MissingBoundaryDataError(
            f"Noise intensity undefined at centroid of triangle {bad[0]}", nodes=mesh.EToV[bad[0]]
        )
    return sigma


def white_noise(
    mesh: Mesh2d,
    sigma: NDArray[np.float64],
    rng: np.random.Generator,
    eps: float = AREA_EPS,
) -> NDArray[np.float64]:
    """
    Discretized white-noise load ∫ σ dW φ_i.

    Each triangle draws one sample with variance σ(centroid)² |T| and hands
    an equal third of it to each of its vertices.
    """
    areas = element_areas(mesh, eps)
    samples = sigma * np.sqrt(areas) * rng.standard_normal(mesh.noelms)
    shares = samples[:, None] * element_noise_weights()[None, :]

    b = np.zeros(mesh.nonodes)
    np.add.at(b, mesh.EToV.ravel(), shares.ravel())
    return b
