"""Tests for mesh data structures and the square-domain generator.

Run with: uv run pytest tests/test_mesh.py -v
"""

from fractions import Fraction

import meshio
import numpy as np
import pytest

from SFEM import (
    BOTTOM,
    DIRICHLET,
    INTERIOR,
    LEFT,
    NEUMANN,
    RIGHT,
    TOP,
    InvalidSpacingError,
    Mesh2d,
    square_mesh,
)


class TestSquareMesh:
    """Test structured mesh generation."""

    @pytest.fixture
    def mesh_4x2(self):
        """4x2 cells on [0,2]x[0,1] with dx=1/2."""
        return square_mesh((0, 2, 0, 1), Fraction(1, 2), "Dirichlet")

    def test_counts(self, mesh_4x2):
        """(n+1)(m+1) nodes and 2nm triangles."""
        assert mesh_4x2.nonodes == 5 * 3
        assert mesh_4x2.noelms == 2 * 4 * 2

    def test_row_major_ordering(self, mesh_4x2):
        """Node k sits at column k % (n+1), row k // (n+1)."""
        k = np.arange(mesh_4x2.nonodes)
        assert np.allclose(mesh_4x2.VX, 0.5 * (k % 5))
        assert np.allclose(mesh_4x2.VY, 0.5 * (k // 5))

    def test_consistent_orientation(self, mesh_4x2):
        """All triangles are counter-clockwise with area dx^2/2."""
        assert np.all(mesh_4x2.delta > 0)
        assert np.allclose(mesh_4x2.areas, 0.125)
        assert np.isclose(mesh_4x2.areas.sum(), 2.0)

    def test_boundary_classification(self, mesh_4x2):
        """Every outer node is Dirichlet, every inner node interior."""
        x, y = mesh_4x2.VX, mesh_4x2.VY
        on_boundary = np.isclose(x, 0) | np.isclose(x, 2) | np.isclose(y, 0) | np.isclose(y, 1)
        assert np.all(mesh_4x2.node_bc[on_boundary] == DIRICHLET)
        assert np.all(mesh_4x2.node_bc[~on_boundary] == INTERIOR)
        assert len(mesh_4x2.boundary_nodes) == 2 * (4 + 2)
        assert len(mesh_4x2.boundary_edges) == 2 * (4 + 2)

    def test_neumann_tag(self):
        """A Neumann tag applies to every boundary node."""
        mesh = square_mesh((0, 1, 0, 1), Fraction(1, 4), "neumann")
        assert np.all(mesh.node_bc[mesh.boundary_nodes] == NEUMANN)
        assert len(mesh.dirichlet_nodes) == 0

    def test_mixed_sides_dirichlet_wins_at_corners(self):
        """Per-side tags; corners shared with a Dirichlet side stay Dirichlet."""
        mesh = square_mesh((0, 1, 0, 1), Fraction(1, 4), {RIGHT: "Neumann", LEFT: "Dirichlet"})
        right = np.isclose(mesh.VX, 1.0)
        corners = right & (np.isclose(mesh.VY, 0.0) | np.isclose(mesh.VY, 1.0))
        assert np.all(mesh.node_bc[right & ~corners] == NEUMANN)
        assert np.all(mesh.node_bc[corners] == DIRICHLET)
        assert len(mesh.neumann_nodes) == 3

    def test_all_sides_mapping(self):
        """Sides missing from the mapping default to Dirichlet."""
        mesh = square_mesh((0, 1, 0, 1), Fraction(1, 2), {TOP: "Neumann", BOTTOM: "Neumann"})
        assert len(mesh.neumann_nodes) == 2
        assert np.all(np.isclose(mesh.VX[mesh.neumann_nodes], 0.5))

    def test_float_spacing(self):
        """Float spacing that divides the domain is accepted."""
        mesh = square_mesh((0.0, 1.0, 0.0, 1.0), 0.25)
        assert mesh.nonodes == 25
        assert np.isclose(mesh.h, np.sqrt(2) * 0.25)

    @pytest.mark.parametrize("dx", [0.3, Fraction(2, 3), 0.4])
    def test_invalid_spacing(self, dx):
        """Spacing that does not divide both sides is rejected."""
        with pytest.raises(InvalidSpacingError):
            square_mesh((0, 1, 0, 2), dx)

    @pytest.mark.parametrize("dx", [0, -0.25, Fraction(-1, 4)])
    def test_non_positive_spacing(self, dx):
        with pytest.raises(InvalidSpacingError):
            square_mesh((0, 1, 0, 1), dx)

    def test_unknown_boundary_tag(self):
        with pytest.raises(ValueError, match="Unknown boundary type"):
            square_mesh((0, 1, 0, 1), Fraction(1, 2), "Robin")

    def test_deterministic(self):
        """Same parameters give identical meshes."""
        a = square_mesh((0, 1, 0, 1), Fraction(1, 8))
        b = square_mesh((0, 1, 0, 1), Fraction(1, 8))
        assert np.array_equal(a.VX, b.VX)
        assert np.array_equal(a.EToV, b.EToV)


class TestMesh2d:
    """Test mesh invariants and conversions."""

    def test_immutable_arrays(self):
        """Mesh arrays are read-only after construction."""
        mesh = square_mesh((0, 1, 0, 1), Fraction(1, 2))
        with pytest.raises(ValueError):
            mesh.VX[0] = 5.0
        with pytest.raises(ValueError):
            mesh.EToV[0, 0] = 1

    def test_invalid_index(self):
        with pytest.raises(ValueError, match="outside"):
            Mesh2d(VX=[0, 1, 0], VY=[0, 0, 1], EToV=[[0, 1, 3]])

    def test_repeated_node(self):
        with pytest.raises(ValueError, match="repeats"):
            Mesh2d(VX=[0, 1, 0], VY=[0, 0, 1], EToV=[[0, 1, 1], [0, 1, 2]])

    def test_unused_node(self):
        with pytest.raises(ValueError, match="not part of any triangle"):
            Mesh2d(VX=[0, 1, 0, 5], VY=[0, 0, 1, 5], EToV=[[0, 1, 2]])

    def test_interior_node_with_bc(self):
        """Only boundary nodes may carry a boundary condition."""
        mesh = square_mesh((0, 1, 0, 1), Fraction(1, 2))
        node_bc = np.array(mesh.node_bc)
        node_bc[4] = NEUMANN  # centre node
        with pytest.raises(ValueError, match="Interior node 4"):
            Mesh2d(VX=mesh.VX, VY=mesh.VY, EToV=mesh.EToV, node_bc=node_bc)

    def test_default_boundary_is_dirichlet(self):
        """Without node_bc every boundary node is Dirichlet."""
        mesh = Mesh2d(VX=[0, 1, 1, 0], VY=[0, 0, 1, 1], EToV=[[0, 1, 2], [0, 2, 3]])
        assert np.all(mesh.node_bc == DIRICHLET)
        assert len(mesh.boundary_edges) == 4

    def test_csr_pattern(self):
        """CSR pattern has one entry per node pair sharing a triangle."""
        mesh = square_mesh((0, 1, 0, 1), Fraction(1, 1))
        # 4 nodes, diagonal 0-3 shared: only 1-2 are not connected
        assert len(mesh._csr_indices) == 16 - 2
        assert len(mesh._csr_data_map) == 9 * mesh.noelms

    def test_meshio_round_trip(self):
        """Export to meshio and read back with a new boundary tag."""
        mesh = square_mesh((0, 1, 0, 1), Fraction(1, 4))
        restored = Mesh2d.from_meshio(mesh.to_meshio(), bc_type="Neumann")
        assert restored.nonodes == mesh.nonodes
        assert np.array_equal(restored.EToV, mesh.EToV)
        assert np.all(restored.node_bc[restored.boundary_nodes] == NEUMANN)

    def test_meshio_drops_unused_points(self):
        """Points not referenced by any triangle are removed."""
        points = np.array([[9.0, 9.0, 0.0], [0, 0, 0], [1, 0, 0], [0, 1, 0]])
        m = meshio.Mesh(points, [("triangle", np.array([[1, 2, 3]]))])
        mesh = Mesh2d.from_meshio(m)
        assert mesh.nonodes == 3
        assert np.array_equal(mesh.EToV, [[0, 1, 2]])
        assert np.allclose(mesh.VX, [0, 1, 0])

    def test_meshio_without_triangles(self):
        m = meshio.Mesh(np.zeros((2, 3)), [("line", np.array([[0, 1]]))])
        with pytest.raises(ValueError, match="No triangle cells"):
            Mesh2d.from_meshio(m)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
