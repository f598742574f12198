"""Data structures for meshes, solver configuration and results.

             Params (input/config)         Metrics (output/results)
             ─────────────────────         ────────────────────────
Global       SolverParameters              Metrics
             solver, tol, maxiter...       wall_time, converged, iterations...

Spatial      Mesh2d                        Solution
             VX, VY, EToV, node_bc         u, error, errors{l_inf, L2, H1}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping

import numpy as np
import pandas as pd
from numpy.typing import NDArray

if TYPE_CHECKING:
    import meshio

# Boundary side constants (square domains)
LEFT, RIGHT, BOTTOM, TOP = 0, 1, 2, 3

# Per-node boundary classification
INTERIOR, DIRICHLET, NEUMANN = 0, 1, 2
BC_TAGS = {"dirichlet": DIRICHLET, "neumann": NEUMANN}

# Tolerance for boundary node detection (floating-point comparison)
BOUNDARY_TOL = 1e-10

# Element configuration (P1 triangles)
N_LOCAL_NODES = 3

# Edge k connects these vertex positions in EToV
EDGE_VERTICES = np.array([[0, 1], [1, 2], [2, 0]])


def parse_bc_tag(tag: str) -> int:
    """Map a boundary tag ("Dirichlet" / "Neumann") to its node classification."""
    try:
        return BC_TAGS[str(tag).lower()]
    except KeyError:
        raise ValueError(f"Unknown boundary type {tag!r}. Use 'Dirichlet' or 'Neumann'") from None


# ============================================================================
# Mesh
# ============================================================================


@dataclass
class Mesh2d:
    """2D triangular mesh for P1 finite elements.

    Parameters
    ----------
    VX, VY : array_like (nonodes,)
        Node coordinates; the array index is the node id.
    EToV : array_like (noelms, 3)
        Element-to-vertex connectivity (0-based node indices).
    node_bc : array_like (nonodes,), optional
        Per-node classification (INTERIOR, DIRICHLET or NEUMANN). Defaults to
        DIRICHLET on every boundary node.
    """

    VX: NDArray[np.float64]
    VY: NDArray[np.float64]
    EToV: NDArray[np.int64]
    node_bc: NDArray[np.int8] | None = None

    # Computed mesh properties
    noelms: int = field(init=False)
    nonodes: int = field(init=False)

    # Basis function data
    abc: NDArray[np.float64] = field(init=False, repr=False)
    delta: NDArray[np.float64] = field(init=False, repr=False)

    # Boundary data
    boundary_edges: NDArray[np.int64] = field(init=False, repr=False)
    boundary_nodes: NDArray[np.int64] = field(init=False, repr=False)

    # Internal vertex index arrays
    _v1: NDArray[np.int64] = field(init=False, repr=False)
    _v2: NDArray[np.int64] = field(init=False, repr=False)
    _v3: NDArray[np.int64] = field(init=False, repr=False)

    # CSR assembly pattern (pre-computed for direct CSR construction)
    _csr_indptr: NDArray[np.int64] = field(init=False, repr=False)
    _csr_indices: NDArray[np.int64] = field(init=False, repr=False)
    _csr_data_map: NDArray[np.int64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.VX = np.array(self.VX, dtype=np.float64).ravel()
        self.VY = np.array(self.VY, dtype=np.float64).ravel()
        self.EToV = np.array(self.EToV, dtype=np.int64)
        self.nonodes = len(self.VX)
        self.noelms = len(self.EToV)

        self._validate()
        self._compute_assembly_indices()
        self._compute_boundary_edges()
        self._compute_node_bc()
        self._compute_basis()

        for arr in (self.VX, self.VY, self.EToV, self.node_bc, self.delta, self.abc,
                    self.boundary_edges, self.boundary_nodes):
            arr.setflags(write=False)

    def _validate(self) -> None:
        if len(self.VY) != self.nonodes:
            raise ValueError(f"VX and VY differ in length: {self.nonodes} != {len(self.VY)}")
        if self.EToV.ndim != 2 or self.EToV.shape[1] != N_LOCAL_NODES:
            raise ValueError(f"EToV must have shape (noelms, 3), got {self.EToV.shape}")
        if self.noelms == 0:
            raise ValueError("Mesh has no triangles")

        bad = np.where((self.EToV < 0).any(axis=1) | (self.EToV >= self.nonodes).any(axis=1))[0]
        if len(bad):
            raise ValueError(f"Triangle {bad[0]} references a node outside [0, {self.nonodes})")

        e = self.EToV
        repeated = np.where((e[:, 0] == e[:, 1]) | (e[:, 1] == e[:, 2]) | (e[:, 0] == e[:, 2]))[0]
        if len(repeated):
            raise ValueError(f"Triangle {repeated[0]} repeats a node: {e[repeated[0]]}")

        used = np.zeros(self.nonodes, dtype=bool)
        used[e.ravel()] = True
        if not used.all():
            raise ValueError(f"Node {np.argmin(used)} is not part of any triangle")

    def _compute_assembly_indices(self) -> None:
        """Compute vertex indices and CSR sparsity pattern for direct assembly."""
        self._v1 = self.EToV[:, 0]
        self._v2 = self.EToV[:, 1]
        self._v3 = self.EToV[:, 2]

        # Entry (e, i, j) of the local 3x3 matrices sits at e*9 + i*3 + j
        n = N_LOCAL_NODES
        rows = np.repeat(self.EToV, n, axis=1).ravel()
        cols = np.tile(self.EToV, n).ravel()
        n_entries = len(rows)

        # Sort by (row, col) to group duplicates and build CSR structure
        sort_order = np.lexsort((cols, rows))
        sorted_rows = rows[sort_order]
        sorted_cols = cols[sort_order]

        row_diff = np.diff(sorted_rows, prepend=-1)
        col_diff = np.diff(sorted_cols, prepend=-1)
        is_new_pair = (row_diff != 0) | (col_diff != 0)

        unique_rows = sorted_rows[is_new_pair]
        unique_cols = sorted_cols[is_new_pair]

        self._csr_indptr = np.zeros(self.nonodes + 1, dtype=np.int64)
        np.add.at(self._csr_indptr, unique_rows + 1, 1)
        np.cumsum(self._csr_indptr, out=self._csr_indptr)

        self._csr_indices = unique_cols

        # Map each local entry to its position in CSR data array
        pair_indices = np.cumsum(is_new_pair) - 1
        self._csr_data_map = np.empty(n_entries, dtype=np.int64)
        self._csr_data_map[sort_order] = pair_indices

    def _compute_boundary_edges(self) -> None:
        """Boundary edges are the edges that belong to exactly one triangle."""
        edges = np.sort(self.EToV[:, EDGE_VERTICES].reshape(-1, 2), axis=1)
        unique_edges, counts = np.unique(edges, axis=0, return_counts=True)
        self.boundary_edges = unique_edges[counts == 1]
        self.boundary_nodes = np.unique(self.boundary_edges)

    def _compute_node_bc(self) -> None:
        if self.node_bc is None:
            node_bc = np.full(self.nonodes, INTERIOR, dtype=np.int8)
            node_bc[self.boundary_nodes] = DIRICHLET
            self.node_bc = node_bc
            return

        self.node_bc = np.array(self.node_bc, dtype=np.int8).ravel()
        if len(self.node_bc) != self.nonodes:
            raise ValueError(f"node_bc has {len(self.node_bc)} entries for {self.nonodes} nodes")
        if not np.isin(self.node_bc, (INTERIOR, DIRICHLET, NEUMANN)).all():
            raise ValueError("node_bc entries must be INTERIOR, DIRICHLET or NEUMANN")

        interior = np.ones(self.nonodes, dtype=bool)
        interior[self.boundary_nodes] = False
        tagged_inside = np.where(interior & (self.node_bc != INTERIOR))[0]
        if len(tagged_inside):
            raise ValueError(f"Interior node {tagged_inside[0]} carries a boundary condition")

    def _compute_basis(self) -> None:
        """Compute delta and basis function coefficients for each element."""
        x1, y1, x2, y2, x3, y3 = self.vertex_coords

        # Twice the signed area
        self.delta = x1 * (y2 - y3) + x2 * (y3 - y1) + x3 * (y1 - y2)

        # Shape: (noelms, 3 basis functions, 3 coefficients [a, b, c])
        self.abc = np.empty((self.noelms, 3, 3), dtype=np.float64)
        self.abc[:, 0, 0] = x2 * y3 - x3 * y2
        self.abc[:, 0, 1] = y2 - y3
        self.abc[:, 0, 2] = x3 - x2
        self.abc[:, 1, 0] = x3 * y1 - x1 * y3
        self.abc[:, 1, 1] = y3 - y1
        self.abc[:, 1, 2] = x1 - x3
        self.abc[:, 2, 0] = x1 * y2 - x2 * y1
        self.abc[:, 2, 1] = y1 - y2
        self.abc[:, 2, 2] = x2 - x1

    @classmethod
    def from_meshio(
        cls,
        mesh: meshio.Mesh | str | Path,
        bc_type: str = "Dirichlet",
    ) -> Mesh2d:
        """
        Create Mesh2d from a meshio mesh or mesh file.

        Points that no triangle references (geometry points written by gmsh)
        are dropped and the connectivity renumbered.

        Parameters
        ----------
        mesh : meshio.Mesh or str or Path
            Either a meshio Mesh object or path to a mesh file.
        bc_type : str
            Boundary tag applied to every boundary node.

        Returns
        -------
        Mesh2d
        """
        import meshio as mio

        if isinstance(mesh, (str, Path)):
            mesh = mio.read(mesh)

        EToV = None
        for cell_block in mesh.cells:
            if cell_block.type == "triangle":
                EToV = cell_block.data.astype(np.int64)
                break

        if EToV is None:
            raise ValueError("No triangle cells found in mesh")

        used = np.unique(EToV)
        renumber = np.full(len(mesh.points), -1, dtype=np.int64)
        renumber[used] = np.arange(len(used))

        points = mesh.points[used, :2].astype(np.float64)
        instance = cls(VX=points[:, 0], VY=points[:, 1], EToV=renumber[EToV])
        return instance.with_boundary_type(bc_type)

    def with_boundary_type(self, bc_type: str) -> Mesh2d:
        """Return a copy of this mesh with every boundary node tagged `bc_type`."""
        node_bc = np.full(self.nonodes, INTERIOR, dtype=np.int8)
        node_bc[self.boundary_nodes] = parse_bc_tag(bc_type)
        return Mesh2d(VX=self.VX, VY=self.VY, EToV=self.EToV, node_bc=node_bc)

    def to_meshio(self) -> meshio.Mesh:
        """Export nodes and triangles as a meshio mesh."""
        import meshio as mio

        points = np.column_stack([self.VX, self.VY, np.zeros(self.nonodes)])
        return mio.Mesh(points, [("triangle", np.asarray(self.EToV))],
                        point_data={"node_bc": np.asarray(self.node_bc)})

    @property
    def vertex_coords(
        self,
    ) -> tuple[
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
        NDArray[np.float64],
    ]:
        """Return (x1, y1, x2, y2, x3, y3) coordinates for all elements."""
        return (
            self.VX[self._v1],
            self.VY[self._v1],
            self.VX[self._v2],
            self.VY[self._v2],
            self.VX[self._v3],
            self.VY[self._v3],
        )

    @property
    def areas(self) -> NDArray[np.float64]:
        return 0.5 * np.abs(self.delta)

    @property
    def centroids(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        x1, y1, x2, y2, x3, y3 = self.vertex_coords
        return (x1 + x2 + x3) / 3.0, (y1 + y2 + y3) / 3.0

    @property
    def h(self) -> float:
        """Largest edge length in the mesh."""
        edges = self.EToV[:, EDGE_VERTICES]
        dx = self.VX[edges[..., 1]] - self.VX[edges[..., 0]]
        dy = self.VY[edges[..., 1]] - self.VY[edges[..., 0]]
        return float(np.sqrt(dx**2 + dy**2).max())

    @property
    def dirichlet_nodes(self) -> NDArray[np.int64]:
        return np.where(self.node_bc == DIRICHLET)[0]

    @property
    def neumann_nodes(self) -> NDArray[np.int64]:
        return np.where(self.node_bc == NEUMANN)[0]


# ============================================================================
# Parameters (Input Configuration) - logged to MLflow as params
# ============================================================================


@dataclass
class SolverParameters:
    """Solver configuration for a single solve."""

    solver: str = "direct"
    tol: float = 1e-6
    maxiter: int = 100
    linear_tol: float = 1e-10
    linear_maxiter: int = 1000
    seed: int | None = None
    area_eps: float = 1e-14  # relative to the squared longest edge

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if v is not None
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_mlflow()])


# ============================================================================
# Metrics (Output Results) - logged to MLflow as metrics
# ============================================================================


@dataclass
class Metrics:
    """Solver metrics - output results computed during/after solving."""

    iterations: int = 0
    converged: bool = False
    wall_time_seconds: float = 0.0
    nonodes: int = 0
    n_free: int = 0
    n_fixed: int = 0
    linear_residual: float = float("inf")
    l_inf_error: float = float("inf")
    L2_error: float = float("inf")
    H1_error: float = float("inf")

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (bools as int, skip inf)."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if v != float("inf")  # Skip unset values
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_mlflow()])


# ============================================================================
# Solution (Spatial Solution Data)
# ============================================================================


@dataclass(frozen=True)
class Solution:
    """Nodal solution of one solve, with errors against the analytic solution.

    Only `u` and `errors` are meant for downstream consumers.
    """

    mesh: Mesh2d
    u: NDArray[np.float64]
    errors: Mapping[str, float] = field(default_factory=dict)
    u_analytic: NDArray[np.float64] | None = None
    error: NDArray[np.float64] | None = None
    params: SolverParameters = field(default_factory=SolverParameters)
    metrics: Metrics = field(default_factory=Metrics)

    def __post_init__(self) -> None:
        object.__setattr__(self, "errors", MappingProxyType(dict(self.errors)))
        for arr in (self.u, self.u_analytic, self.error):
            if arr is not None:
                arr.setflags(write=False)

    @property
    def true_known(self) -> bool:
        return self.u_analytic is not None

    def to_dataframe(self) -> pd.DataFrame:
        """Nodal table with coordinates, solution and (when known) error."""
        data = {"x": self.mesh.VX, "y": self.mesh.VY, "u": self.u}
        if self.u_analytic is not None:
            data["u_analytic"] = self.u_analytic
            data["error"] = self.error
        return pd.DataFrame(data)
