from __future__ import annotations

from typing import Callable

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import spmatrix

from .datastructures import Mesh2d
from .problem import evaluate


def interpolate(
    mesh: Mesh2d,
    u_nodal: NDArray[np.float64],
    points: NDArray[np.float64],
    tol: float = 1e-8,
) -> NDArray[np.float64]:
    """
    Evaluate the piecewise linear interpolant at (N, 2) points. NaN outside the mesh.
    """
    points = np.atleast_2d(points)
    values = np.full(len(points), np.nan)

    v1, v2, v3 = mesh._v1, mesh._v2, mesh._v3
    x1, y1, x2, y2, x3, y3 = mesh.vertex_coords
    det = (y2 - y3) * (x1 - x3) + (x3 - x2) * (y1 - y3)

    for i, (px, py) in enumerate(points):
        lam1 = ((y2 - y3) * (px - x3) + (x3 - x2) * (py - y3)) / det
        lam2 = ((y3 - y1) * (px - x3) + (x1 - x3) * (py - y3)) / det
        lam3 = 1.0 - lam1 - lam2

        inside = (lam1 >= -tol) & (lam2 >= -tol) & (lam3 >= -tol)
        elem_idx = np.where(inside)[0]
        if len(elem_idx) > 0:
            e = elem_idx[0]
            values[i] = lam1[e] * u_nodal[v1[e]] + lam2[e] * u_nodal[v2[e]] + lam3[e] * u_nodal[v3[e]]

    return values


def element_gradients(
    mesh: Mesh2d,
    u_nodal: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Element-constant gradient (du/dx, du/dy) of the P1 field."""
    u_elem = u_nodal[mesh.EToV]  # (noelms, 3)
    du_dx = np.sum(u_elem * mesh.abc[:, :, 1], axis=1) / mesh.delta
    du_dy = np.sum(u_elem * mesh.abc[:, :, 2], axis=1) / mesh.delta
    return du_dx, du_dy


def discrete_l2_error(M: spmatrix, error: NDArray[np.float64]) -> float:
    """Mass-weighted discrete L2 norm sqrt(e^T M e) of a nodal error."""
    return float(np.sqrt(max(error @ (M @ error), 0.0)))


def linf_error(error: NDArray[np.float64]) -> float:
    """Max absolute nodal error."""
    return float(np.max(np.abs(error))) if len(error) else 0.0


def h1_seminorm_error(
    mesh: Mesh2d,
    u_nodal: NDArray[np.float64],
    grad_u_exact: Callable[[NDArray, NDArray], tuple[NDArray, NDArray]],
) -> float:
    """H1 seminorm error |u_h - u|_1, exact gradient sampled at centroids."""
    du_dx, du_dy = element_gradients(mesh, u_nodal)
    xc, yc = mesh.centroids
    ux, uy = grad_u_exact(xc, yc)
    ux = np.broadcast_to(np.asarray(ux, dtype=np.float64), xc.shape)
    uy = np.broadcast_to(np.asarray(uy, dtype=np.float64), xc.shape)
    error_sq = np.sum(mesh.areas * ((ux - du_dx) ** 2 + (uy - du_dy) ** 2))
    return float(np.sqrt(error_sq))


def nodal_errors(
    mesh: Mesh2d,
    u_nodal: NDArray[np.float64],
    u_exact: Callable,
    M: spmatrix,
    grad_u_exact: Callable | None = None,
) -> tuple[NDArray[np.float64], NDArray[np.float64], dict[str, float]]:
    """
    Analytic nodal values, nodal error (analytic - computed) and error norms.
    """
    u_analytic = evaluate(u_exact, mesh.VX, mesh.VY)
    error = u_analytic - u_nodal
    errors = {
        "l_inf": linf_error(error),
        "L2": discrete_l2_error(M, error),
    }
    if grad_u_exact is not None:
        errors["H1"] = h1_seminorm_error(mesh, u_nodal, grad_u_exact)
    return u_analytic, error, errors
