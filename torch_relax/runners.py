"""High level geometry optimization.

:class:`Optimizer` drives the lazy sequence of the optimization driver until the
forces are converged or the iteration budget is spent, optionally committing a
checkpoint after every step, and returns an :class:`Optimized` summary.

Example::

    atoms = ase.io.read("LJ38.xyz")
    optimized = Optimizer(nmax=200, fmax=0.05).optimize_geometry(
        atoms, LennardJonesModel()
    )
    print(optimized.niter, optimized.fmax, optimized.computed.energy)
"""

from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from torch_relax.config import OptimConfig
from torch_relax.errors import EvaluationError, RestoreError
from torch_relax.optimization import optimize_geometry_iter


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from ase import Atoms

    from torch_relax.checkpoint import CheckpointStore
    from torch_relax.models.interface import ModelInterface, ModelProperties
    from torch_relax.optimization import OptimProgress


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Optimized(Generic[T]):
    """Summary of a finished optimization.

    Attributes:
        niter: Number of optimization steps consumed
        fmax: Final force convergence criterion
        computed: Evaluator payload at the final geometry
        converged: Whether the fmax threshold was met
    """

    niter: int
    fmax: float
    computed: T
    converged: bool = False


class Optimizer:
    """Geometry optimizer with a force convergence criterion.

    Args:
        nmax: Maximum number of optimization steps
        fmax: Forces are converged once the criterion drops below this value
        config: Driver configuration. Defaults to ``OptimConfig.from_env()``.
        checkpoint: Store to restore from before and commit to after every
            step. None disables checkpointing.
    """

    def __init__(
        self,
        nmax: int = 100,
        fmax: float = 0.1,
        *,
        config: OptimConfig | None = None,
        checkpoint: CheckpointStore | None = None,
    ) -> None:
        self.nmax = nmax
        self.fmax = fmax
        self.config = config or OptimConfig.from_env()
        self.checkpoint = checkpoint

    def run(
        self,
        steps: Iterable[OptimProgress[T]],
        on_step: Callable[[OptimProgress[T]], Any] | None = None,
    ) -> Optimized[T]:
        """Consume ``steps`` until convergence or ``nmax`` records.

        Args:
            steps: Progress records, typically from the optimization driver.
                Pulled lazily, never beyond the converged record.
            on_step: Called with every consumed record.

        Returns:
            Optimized with the number of consumed records and the fmax and
            payload of the last one.

        Raises:
            EvaluationError: If no record was produced.
        """
        niter = 0
        fmax = math.nan
        computed = None
        converged = False
        for progress in itertools.islice(steps, self.nmax):
            niter += 1
            fmax = progress.fmax
            computed = progress.extra
            logger.info(
                "iter %4d\tEnergy = %-12.4f\tfmax=%s", niter - 1, progress.energy, fmax
            )
            if on_step is not None:
                on_step(progress)
            if fmax < self.fmax:
                logger.info("forces converged: %s", fmax)
                converged = True
                break

        if niter == 0:
            raise EvaluationError("model was not computed")
        return Optimized(niter=niter, fmax=fmax, computed=computed, converged=converged)

    def optimize_geometry(
        self, atoms: Atoms, model: ModelInterface
    ) -> Optimized[ModelProperties]:
        """Optimize the geometry of ``atoms`` in the potential of ``model``.

        ``atoms`` is left at the final geometry.

        Raises:
            RestoreError: If restoring from the checkpoint fails. Nothing is
                evaluated in that case.
            EvaluationError: If the model fails or was never evaluated.
            UsageError: If the model result lacks energy or forces.
        """
        if self.checkpoint is not None:
            try:
                self.checkpoint.restore(atoms)
            except RestoreError:
                raise
            except Exception as exc:
                raise RestoreError(f"checkpoint restore failed: {exc}") from exc

        steps = optimize_geometry_iter(atoms, model, self.config)
        try:
            return self.run(steps, on_step=lambda _: self._commit(atoms))
        finally:
            steps.close()

    def _commit(self, atoms: Atoms) -> None:
        if self.checkpoint is None:
            return
        try:
            self.checkpoint.commit(atoms)
        except OSError as exc:
            logger.warning("Failed to commit checkpoint: %s", exc)


def optimize(
    atoms: Atoms,
    model: ModelInterface,
    *,
    nmax: int = 100,
    fmax: float = 0.1,
    config: OptimConfig | None = None,
    checkpoint: CheckpointStore | None = None,
) -> Optimized[ModelProperties]:
    """Optimize the geometry of ``atoms``, see :class:`Optimizer`."""
    optimizer = Optimizer(nmax, fmax, config=config, checkpoint=checkpoint)
    return optimizer.optimize_geometry(atoms, model)
