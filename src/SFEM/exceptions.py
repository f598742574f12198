"""Errors raised by the finite element pipeline."""

from __future__ import annotations

from typing import Sequence


class FEMError(Exception):
    """Base class for all solver errors."""


class InvalidSpacingError(FEMError, ValueError):
    """Cell spacing does not evenly divide the domain."""


class DegenerateTriangleError(FEMError, ValueError):
    """Triangle with zero (or near-zero) area."""

    def __init__(self, element: int, area: float):
        self.element = element
        self.area = area
        super().__init__(f"Degenerate triangle {element}: area={area:.3e}")


class MissingBoundaryDataError(FEMError, ValueError):
    """No way to determine a required value (Dirichlet data or noise intensity)."""

    def __init__(self, message: str, nodes: Sequence[int] | None = None):
        self.nodes = None if nodes is None else list(nodes)
        super().__init__(message)


class SingularSystemError(FEMError, RuntimeError):
    """Reduced linear system has no unique solution."""


class NonConvergenceError(FEMError, RuntimeError):
    """Iteration cap reached before the tolerance was met."""

    def __init__(self, iterations: int, residual: float, message: str | None = None):
        self.iterations = iterations
        self.residual = residual
        if message is None:
            message = f"No convergence after {iterations} iterations (residual={residual:.3e})"
        super().__init__(message)
