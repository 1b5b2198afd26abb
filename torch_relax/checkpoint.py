"""Checkpointing of optimization runs.

A checkpoint store persists the geometry after every optimization step so an
interrupted run can resume from the last committed point. Any object with
``restore`` and ``commit`` methods can be used; :class:`TrajectoryCheckpoint`
keeps the frames in an extended XYZ trajectory file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import ase.io

from torch_relax.errors import RestoreError


if TYPE_CHECKING:
    from ase import Atoms


logger = logging.getLogger(__name__)


class CheckpointStore(Protocol):
    """Persistence of structure snapshots for resuming a run."""

    def restore(self, atoms: Atoms) -> None:
        """Update ``atoms`` from the stored snapshot.

        Raises:
            RestoreError: If a snapshot exists but cannot be applied.
        """

    def commit(self, atoms: Atoms) -> None:
        """Store a snapshot of ``atoms``."""


class TrajectoryCheckpoint:
    """Checkpoint store appending frames to an extended XYZ file.

    Args:
        path: Trajectory file. It is created on the first commit.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def restore(self, atoms: Atoms) -> None:
        """Copy positions of the last stored frame into ``atoms``.

        A missing file means there is nothing to resume and leaves ``atoms``
        unchanged.

        Raises:
            RestoreError: If the file cannot be read or its last frame does not
                match the atoms of ``atoms``.
        """
        if not self.path.exists():
            logger.info(
                "No checkpoint found at %s, starting from input geometry", self.path
            )
            return
        try:
            frame = ase.io.read(self.path, index=-1, format="extxyz")
        except (OSError, ValueError, IndexError, StopIteration) as exc:
            raise RestoreError(f"Cannot read checkpoint {self.path}: {exc}") from exc

        if frame.get_chemical_symbols() != atoms.get_chemical_symbols():
            raise RestoreError(
                f"Checkpoint {self.path} holds {frame.get_chemical_formula()}, "
                f"expected {atoms.get_chemical_formula()}"
            )
        atoms.set_positions(frame.get_positions(), apply_constraint=False)
        logger.info("Restored geometry from checkpoint %s", self.path)

    def commit(self, atoms: Atoms) -> None:
        """Append the current geometry of ``atoms`` to the trajectory."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = atoms.copy()
        snapshot.calc = None
        ase.io.write(self.path, snapshot, format="extxyz", append=True)
