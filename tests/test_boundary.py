"""Tests for Dirichlet elimination and Neumann flux assembly.

Run with: uv run pytest tests/test_boundary.py -v
"""

from fractions import Fraction

import numpy as np
import pytest

from SFEM import (
    NEUMANN,
    RIGHT,
    MissingBoundaryDataError,
    PoissonProblem,
    assemble_stiffness,
    dirichlet_values,
    get_boundary_edges,
    get_boundary_nodes,
    neubc_2d,
    partition_dofs,
    reduce_system,
    square_mesh,
)


@pytest.fixture
def dirichlet_mesh():
    return square_mesh((0, 1, 0, 1), Fraction(1, 4), "Dirichlet")


@pytest.fixture
def neumann_mesh():
    return square_mesh((0, 1, 0, 1), Fraction(1, 4), "Neumann")


@pytest.fixture
def mixed_mesh():
    """Neumann on the right side, Dirichlet elsewhere."""
    return square_mesh((0, 1, 0, 1), Fraction(1, 4), {RIGHT: "Neumann"})


class TestPartition:
    """Test splitting nodes into fixed and free."""

    def test_dirichlet_boundary_is_fixed(self, dirichlet_mesh):
        fixed, free = partition_dofs(dirichlet_mesh)
        assert np.array_equal(fixed, dirichlet_mesh.boundary_nodes)
        assert len(free) == 9

    def test_partition_is_complete(self, mixed_mesh):
        fixed, free = partition_dofs(mixed_mesh)
        assert np.array_equal(np.sort(np.concatenate([fixed, free])), np.arange(mixed_mesh.nonodes))
        assert np.intersect1d(fixed, free).size == 0

    def test_neumann_nodes_are_free(self, mixed_mesh):
        fixed, free = partition_dofs(mixed_mesh)
        assert np.all(np.isin(mixed_mesh.neumann_nodes, free))
        assert len(fixed) == 16 - 3

    def test_boundary_queries(self, mixed_mesh):
        assert len(get_boundary_nodes(mixed_mesh)) == 16
        assert np.array_equal(get_boundary_nodes(mixed_mesh, NEUMANN), mixed_mesh.neumann_nodes)
        # The four edges of the right side touch a Neumann node
        edges = get_boundary_edges(mixed_mesh, NEUMANN)
        assert len(edges) == 4
        assert np.allclose(mixed_mesh.VX[edges], 1.0)


class TestDirichletValues:
    """Test prescribed values at fixed nodes."""

    def test_uses_gD_before_solution(self, dirichlet_mesh):
        problem = PoissonProblem(f=lambda x, y: 0.0, sol=lambda x, y: x, gD=lambda x, y: 5.0)
        fixed, _ = partition_dofs(dirichlet_mesh)
        assert np.allclose(dirichlet_values(dirichlet_mesh, problem, fixed), 5.0)

    def test_falls_back_to_solution(self, dirichlet_mesh):
        problem = PoissonProblem(f=lambda x, y: 0.0, sol=lambda x, y: x + 2 * y)
        fixed, _ = partition_dofs(dirichlet_mesh)
        g = dirichlet_values(dirichlet_mesh, problem, fixed)
        assert np.allclose(g, dirichlet_mesh.VX[fixed] + 2 * dirichlet_mesh.VY[fixed])

    def test_missing_data(self, dirichlet_mesh):
        problem = PoissonProblem(f=lambda x, y: 1.0)
        fixed, _ = partition_dofs(dirichlet_mesh)
        with pytest.raises(MissingBoundaryDataError) as exc_info:
            dirichlet_values(dirichlet_mesh, problem, fixed)
        assert exc_info.value.nodes == list(fixed)

    def test_undefined_data(self, dirichlet_mesh):
        problem = PoissonProblem(f=lambda x, y: 1.0, gD=lambda x, y: np.where(y > 0.9, np.nan, 0.0))
        fixed, _ = partition_dofs(dirichlet_mesh)
        with pytest.raises(MissingBoundaryDataError, match="undefined"):
            dirichlet_values(dirichlet_mesh, problem, fixed)

    def test_no_fixed_nodes(self, neumann_mesh):
        """Pure Neumann meshes need no Dirichlet data."""
        problem = PoissonProblem(f=lambda x, y: 1.0)
        fixed, _ = partition_dofs(neumann_mesh)
        assert dirichlet_values(neumann_mesh, problem, fixed).shape == (0,)


class TestNeumann:
    """Test boundary flux contributions."""

    def test_constant_flux_on_perimeter(self, neumann_mesh):
        """Unit flux adds |edge|/2 per endpoint: total equals the perimeter."""
        problem = PoissonProblem(f=lambda x, y: 0.0, gN=lambda x, y: 1.0)
        b = neubc_2d(neumann_mesh, problem, np.zeros(neumann_mesh.nonodes))
        assert np.isclose(b.sum(), 4.0)
        assert np.allclose(b[neumann_mesh.boundary_nodes], 0.25)
        interior = np.setdiff1d(np.arange(neumann_mesh.nonodes), neumann_mesh.boundary_nodes)
        assert np.allclose(b[interior], 0.0)

    def test_only_neumann_nodes_receive_flux(self, mixed_mesh):
        problem = PoissonProblem(f=lambda x, y: 0.0, gN=lambda x, y: 1.0)
        b = neubc_2d(mixed_mesh, problem, np.zeros(mixed_mesh.nonodes))
        assert np.allclose(b[mixed_mesh.neumann_nodes], 0.25)
        assert np.allclose(b[mixed_mesh.dirichlet_nodes], 0.0)

    def test_flux_evaluated_at_nodes(self, neumann_mesh):
        problem = PoissonProblem(f=lambda x, y: 0.0, gN=lambda x, y: y)
        b = neubc_2d(neumann_mesh, problem, np.zeros(neumann_mesh.nonodes))
        nodes = neumann_mesh.boundary_nodes
        assert np.allclose(b[nodes], 0.25 * neumann_mesh.VY[nodes])

    def test_without_flux(self, neumann_mesh):
        problem = PoissonProblem(f=lambda x, y: 0.0)
        b = np.arange(neumann_mesh.nonodes, dtype=float)
        assert np.array_equal(neubc_2d(neumann_mesh, problem, b.copy()), b)


class TestReduceSystem:
    """Test elimination of Dirichlet nodes."""

    def test_matches_dense_elimination(self, dirichlet_mesh):
        K = assemble_stiffness(dirichlet_mesh)
        fixed, free = partition_dofs(dirichlet_mesh)
        b = np.linspace(-1, 1, dirichlet_mesh.nonodes)
        g = np.linspace(0, 2, len(fixed))

        K_ff, b_f = reduce_system(K, b, fixed, free, g)

        Kd = K.toarray()
        assert np.allclose(K_ff.toarray(), Kd[np.ix_(free, free)])
        assert np.allclose(b_f, b[free] - Kd[np.ix_(free, fixed)] @ g)

    def test_reduced_matrix_spd(self, dirichlet_mesh):
        K = assemble_stiffness(dirichlet_mesh)
        fixed, free = partition_dofs(dirichlet_mesh)
        K_ff, _ = reduce_system(K, np.zeros(dirichlet_mesh.nonodes), fixed, free, np.zeros(len(fixed)))
        dense = K_ff.toarray()
        assert np.allclose(dense, dense.T)
        assert np.linalg.eigvalsh(dense).min() > 0

    def test_constant_lifting(self, dirichlet_mesh):
        """Boundary value 1 with zero load gives the constant solution 1."""
        K = assemble_stiffness(dirichlet_mesh)
        fixed, free = partition_dofs(dirichlet_mesh)
        K_ff, b_f = reduce_system(K, np.zeros(dirichlet_mesh.nonodes), fixed, free, np.ones(len(fixed)))
        assert np.allclose(np.linalg.solve(K_ff.toarray(), b_f), 1.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
