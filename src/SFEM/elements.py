"""Local P1 element matrices for a single triangle.

`element_mass` and `element_noise_weights` feed global assembly directly.
`element_stiffness` is the per-triangle reference form of the numba kernel
in assembly.py, which computes the same (1/4A) G G^T for all triangles at once.
"""

import numpy as np


def element_area(x: np.ndarray, y: np.ndarray) -> float:
    """
    Area of a triangle from its vertex coordinates.

    Parameters
    ----------
    x, y : ndarray (3,)
        Vertex coordinates, any orientation.

    Returns
    -------
    area : float
        Absolute area.
    """
    return 0.5 * abs(x[0] * (y[1] - y[2]) + x[1] * (y[2] - y[0]) + x[2] * (y[0] - y[1]))


def basis_gradients(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Scaled gradients of the three barycentric basis functions.

    Row i is (b_i, c_i) with grad(phi_i) = (b_i, c_i) / (2 * signed area).

    Returns
    -------
    G : ndarray (3, 2)
    """
    return np.array([
        [y[1] - y[2], x[2] - x[1]],
        [y[2] - y[0], x[0] - x[2]],
        [y[0] - y[1], x[1] - x[0]],
    ])


def element_stiffness(x: np.ndarray, y: np.ndarray, coeff: float = 1.0) -> np.ndarray:
    """
    Element stiffness matrix for diffusion term: -coeff * Δu

    Weak form contribution: coeff * ∫ ∇u·∇v dx

    Parameters
    ----------
    x, y : ndarray (3,)
        Vertex coordinates
    coeff : float
        Diffusion coefficient (default 1.0)

    Returns
    -------
    Ke : ndarray (3, 3)
        Element stiffness matrix (1 / (4A)) G G^T
    """
    G = basis_gradients(x, y)
    return coeff / (4.0 * element_area(x, y)) * (G @ G.T)


def element_mass(area: float, coeff: float = 1.0) -> np.ndarray:
    """
    Element mass matrix for reaction term: coeff * u

    Weak form contribution: coeff * ∫ u v dx

    Parameters
    ----------
    area : float
        Triangle area
    coeff : float
        Reaction coefficient (default 1.0)

    Returns
    -------
    Me : ndarray (3, 3)
        Element mass matrix
    """
    return coeff * area / 12 * np.array([[2, 1, 1], [1, 2, 1], [1, 1, 2]])


def element_noise_weights() -> np.ndarray:
    """Share of a triangle's white-noise sample received by each vertex."""
    return np.full(3, 1.0 / 3.0)
