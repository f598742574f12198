from __future__ import annotations

from fractions import Fraction
from numbers import Rational
from typing import Mapping, Sequence

import numpy as np

from .datastructures import (
    BOTTOM,
    BOUNDARY_TOL,
    DIRICHLET,
    INTERIOR,
    LEFT,
    RIGHT,
    TOP,
    Mesh2d,
    parse_bc_tag,
)
from .exceptions import InvalidSpacingError

# Relative tolerance for float spacings (rational spacings are checked exactly)
SPACING_RTOL = 1e-9


def _cell_count(length, dx) -> int:
    """Number of cells of width dx in `length`; raises if dx does not divide it."""
    if isinstance(length, Rational) and isinstance(dx, Rational):
        n = Fraction(length) / Fraction(dx)
        if n.denominator != 1 or n <= 0:
            raise InvalidSpacingError(f"dx={dx} does not divide side length {length}")
        return int(n)

    n = float(length) / float(dx)
    n_int = int(round(n))
    if n_int <= 0 or abs(n - n_int) > SPACING_RTOL * max(1.0, n):
        raise InvalidSpacingError(f"dx={dx} does not divide side length {length}")
    return n_int


def square_mesh(
    bounds: Sequence[float],
    dx,
    bc_type: str | Mapping[int, str] = "Dirichlet",
) -> Mesh2d:
    """
    Create a structured triangle mesh on [x0, x1] x [y0, y1].

    Parameters
    ----------
    bounds : (x0, x1, y0, y1)
        Domain bounds.
    dx : int, Fraction or float
        Cell spacing; must divide both side lengths.
    bc_type : str or mapping
        Tag ("Dirichlet" or "Neumann") for every boundary node, or a mapping
        {LEFT, RIGHT, BOTTOM, TOP} -> tag. Nodes shared by a Dirichlet and a
        Neumann side are Dirichlet.

    Returns
    -------
    Mesh2d
        Nodes row-major by (row, column); each cell split along its
        bottom-left to top-right diagonal.
    """
    x0, x1, y0, y1 = bounds
    if not dx > 0:
        raise InvalidSpacingError(f"dx must be positive, got {dx}")
    nx = _cell_count(x1 - x0, dx)
    ny = _cell_count(y1 - y0, dx)

    temp_x = np.linspace(float(x0), float(x1), nx + 1)
    temp_y = np.linspace(float(y0), float(y1), ny + 1)
    XX, YY = np.meshgrid(temp_x, temp_y)
    VX = XX.ravel()
    VY = YY.ravel()

    row, col = np.meshgrid(np.arange(ny), np.arange(nx), indexing="ij")
    row, col = row.ravel(), col.ravel()
    BL = row * (nx + 1) + col
    BR = BL + 1
    TL = BL + nx + 1
    TR = TL + 1

    EToV = np.empty((2 * nx * ny, 3), dtype=np.int64)
    # Lower triangles: [BL, BR, TR]
    EToV[0::2, 0] = BL
    EToV[0::2, 1] = BR
    EToV[0::2, 2] = TR
    # Upper triangles: [BL, TR, TL]
    EToV[1::2, 0] = BL
    EToV[1::2, 1] = TR
    EToV[1::2, 2] = TL

    node_bc = _side_boundary_types(VX, VY, (float(x0), float(x1), float(y0), float(y1)), bc_type)
    return Mesh2d(VX=VX, VY=VY, EToV=EToV, node_bc=node_bc)


def _side_boundary_types(VX, VY, bounds, bc_type) -> np.ndarray:
    x0, x1, y0, y1 = bounds
    on_side = {
        LEFT: np.abs(VX - x0) < BOUNDARY_TOL,
        RIGHT: np.abs(VX - x1) < BOUNDARY_TOL,
        BOTTOM: np.abs(VY - y0) < BOUNDARY_TOL,
        TOP: np.abs(VY - y1) < BOUNDARY_TOL,
    }
    if isinstance(bc_type, Mapping):
        tags = {side: parse_bc_tag(bc_type.get(side, "Dirichlet")) for side in on_side}
    else:
        tag = parse_bc_tag(bc_type)
        tags = dict.fromkeys(on_side, tag)

    node_bc = np.full(len(VX), INTERIOR, dtype=np.int8)
    # Neumann sides first so that Dirichlet wins at shared corners
    for side in sorted(on_side, key=lambda s: tags[s] == DIRICHLET):
        node_bc[on_side[side]] = tags[side]
    return node_bc
