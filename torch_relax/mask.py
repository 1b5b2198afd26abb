"""Masking of frozen degrees of freedom.

A :class:`CoordinateMask` maps flat full-system coordinate vectors of length N
to the reduced vectors that step algorithms work with, and back. Frozen
components are dropped by :meth:`CoordinateMask.apply` and reinserted by
:meth:`CoordinateMask.unmask`, so frozen degrees of freedom never reach a step
algorithm or the convergence metric.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Self

import torch
from ase.constraints import FixAtoms, FixCartesian

from torch_relax.errors import UsageError
from torch_relax.potential import DTYPE


if TYPE_CHECKING:
    from collections.abc import Iterable

    from ase import Atoms


logger = logging.getLogger(__name__)


class CoordinateMask:
    """Selection of the free components of a flat coordinate vector.

    Args:
        free: Boolean tensor of shape [N], True for components that are
            optimized.
    """

    def __init__(self, free: torch.Tensor) -> None:
        free = torch.as_tensor(free, dtype=torch.bool).reshape(-1)
        self.free = free

    @classmethod
    def all_free(cls, n_dim: int) -> Self:
        """Mask that freezes nothing."""
        return cls(torch.ones(n_dim, dtype=torch.bool))

    @classmethod
    def from_frozen_indices(cls, n_dim: int, frozen: Iterable[int]) -> Self:
        """Mask freezing the given flat component indices."""
        free = torch.ones(n_dim, dtype=torch.bool)
        frozen = torch.as_tensor(list(frozen), dtype=torch.long)
        if frozen.numel() and (frozen.min() < -n_dim or frozen.max() >= n_dim):
            raise UsageError(f"Frozen index out of range for {n_dim} coordinates")
        free[frozen] = False
        return cls(free)

    @classmethod
    def from_atoms(cls, atoms: Atoms) -> Self:
        """Mask built from the constraints of ``atoms``.

        ``FixAtoms`` freezes all three Cartesian components of its atoms,
        ``FixCartesian`` the components selected by its mask. Other constraint
        types are not masked.
        """
        free = torch.ones((len(atoms), 3), dtype=torch.bool)
        for constraint in atoms.constraints:
            if isinstance(constraint, FixAtoms):
                index = torch.as_tensor(constraint.index, dtype=torch.long)
                free[index] = False
            elif isinstance(constraint, FixCartesian):
                index = torch.as_tensor(constraint.index, dtype=torch.long)
                fixed = torch.as_tensor(constraint.mask, dtype=torch.bool)
                free[index] &= ~fixed
            else:
                logger.warning(
                    "Constraint %s is not handled by the coordinate mask",
                    type(constraint).__name__,
                )
        return cls(free.reshape(-1))

    @property
    def n_full(self) -> int:
        """Length of full coordinate vectors."""
        return self.free.numel()

    @property
    def n_free(self) -> int:
        """Length of reduced coordinate vectors."""
        return int(self.free.sum().item())

    @property
    def frozen_indices(self) -> torch.Tensor:
        """Flat indices of the frozen components."""
        return torch.nonzero(~self.free).reshape(-1)

    def apply(self, full: torch.Tensor) -> torch.Tensor:
        """Drop frozen components: full [N] -> reduced [n_free]."""
        full = torch.as_tensor(full, dtype=DTYPE).reshape(-1)
        if full.numel() != self.n_full:
            raise UsageError(f"Expected {self.n_full} coordinates, got {full.numel()}")
        return full[self.free]

    def unmask(
        self, reduced: torch.Tensor, fill: float | torch.Tensor = 0.0
    ) -> torch.Tensor:
        """Reinsert frozen components: reduced [n_free] -> full [N].

        Args:
            reduced: Values of the free components.
            fill: Value for the frozen components, either a scalar or a
                full-length vector whose frozen components are copied.
        """
        reduced = torch.as_tensor(reduced, dtype=DTYPE).reshape(-1)
        if reduced.numel() != self.n_free:
            raise UsageError(
                f"Expected {self.n_free} free coordinates, got {reduced.numel()}"
            )
        if isinstance(fill, torch.Tensor) and fill.numel() > 1:
            full = fill.to(DTYPE).reshape(-1).clone()
            if full.numel() != self.n_full:
                raise UsageError(
                    f"fill has length {full.numel()}, expected {self.n_full}"
                )
        else:
            full = torch.full((self.n_full,), float(fill), dtype=DTYPE)
        full[self.free] = reduced
        return full

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_full={self.n_full}, n_free={self.n_free})"
