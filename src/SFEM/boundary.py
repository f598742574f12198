from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_matrix, spmatrix

from .datastructures import DIRICHLET, NEUMANN, Mesh2d
from .exceptions import MissingBoundaryDataError
from .problem import PoissonProblem, evaluate


def get_boundary_nodes(mesh: Mesh2d, bc: int | None = None) -> NDArray[np.int64]:
    """Boundary node indices, optionally only those classified as `bc`."""
    if bc is None:
        return mesh.boundary_nodes
    return mesh.boundary_nodes[mesh.node_bc[mesh.boundary_nodes] == bc]


def get_boundary_edges(mesh: Mesh2d, bc: int | None = None) -> NDArray[np.int64]:
    """Boundary edges as (N, 2) node pairs, optionally those touching a `bc` node."""
    if bc is None:
        return mesh.boundary_edges
    touches = (mesh.node_bc[mesh.boundary_edges] == bc).any(axis=1)
    return mesh.boundary_edges[touches]


def partition_dofs(mesh: Mesh2d) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
    """Split node indices into fixed (Dirichlet) and free (interior + Neumann)."""
    is_fixed = mesh.node_bc == DIRICHLET
    return np.where(is_fixed)[0], np.where(~is_fixed)[0]


def dirichlet_values(
    mesh: Mesh2d,
    problem: PoissonProblem,
    fixed: NDArray[np.int64],
) -> NDArray[np.float64]:
    """Prescribed values at the fixed nodes: gD if given, else the analytic solution."""
    if len(fixed) == 0:
        return np.zeros(0)
    if problem.gD is not None:
        g = evaluate(problem.gD, mesh.VX[fixed], mesh.VY[fixed])
    elif problem.sol is not None:
        g = evaluate(problem.sol, mesh.VX[fixed], mesh.VY[fixed])
    else:
        raise MissingBoundaryDataError(
            f"No Dirichlet data (gD or sol) for {len(fixed)} Dirichlet nodes, "
            f"first node {fixed[0]}",
            nodes=fixed,
        )

    bad = np.where(~np.isfinite(g))[0]
    if len(bad):
        raise MissingBoundaryDataError(
            f"Dirichlet data undefined at node {fixed[bad[0]]}", nodes=fixed[bad]
        )
    return g


def neubc_2d(
    mesh: Mesh2d,
    problem: PoissonProblem,
    b: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Add Neumann flux to the load vector: b_i += gN(x_i) * |edge| / 2 per boundary edge."""
    if problem.gN is None:
        return b
    edges = get_boundary_edges(mesh, NEUMANN)
    if len(edges) == 0:
        return b

    i, j = edges[:, 0], edges[:, 1]
    edge_lengths = np.hypot(mesh.VX[j] - mesh.VX[i], mesh.VY[j] - mesh.VY[i])

    for nodes in (i, j):
        is_neumann = mesh.node_bc[nodes] == NEUMANN
        targets = nodes[is_neumann]
        q = evaluate(problem.gN, mesh.VX[targets], mesh.VY[targets])
        np.add.at(b, targets, q * edge_lengths[is_neumann] / 2)
    return b


def reduce_system(
    A: spmatrix,
    b: NDArray[np.float64],
    fixed: NDArray[np.int64],
    free: NDArray[np.int64],
    g: NDArray[np.float64],
) -> tuple[csr_matrix, NDArray[np.float64]]:
    """
    Eliminate Dirichlet nodes: b_f = b[free] - A[free, fixed] g, A_ff = A[free, free].
    """
    A_csr = A.tocsr()
    A_free_rows = A_csr[free]
    b_free = b[free] - A_free_rows[:, fixed] @ g
    return A_free_rows[:, free].tocsr(), b_free
