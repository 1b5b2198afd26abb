"""Optimization driver.

The driver couples a step algorithm to a :class:`~torch_relax.potential.Dynamics`
cache and yields one :class:`OptimProgress` record per evaluation. The
generator is lazy and cannot be restarted: every pulled record costs exactly
one potential evaluation, and a consumer that stops pulling wastes nothing.
It never checks convergence or bounds its own length; that is up to the
caller, e.g. :class:`~torch_relax.runners.Optimizer`.

Example::

    steps = optimize_geometry_iter(atoms, LennardJonesModel())
    for progress in itertools.islice(steps, 10):
        print(progress.ncalls, progress.energy, progress.fmax)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

import torch

from torch_relax.config import OptimConfig
from torch_relax.errors import UsageError
from torch_relax.evaluator import MoleculeEvaluator
from torch_relax.mask import CoordinateMask
from torch_relax.optimizers import get_step_algorithm
from torch_relax.potential import Dynamics


if TYPE_CHECKING:
    from collections.abc import Generator

    from ase import Atoms

    from torch_relax.models.interface import ModelInterface, ModelProperties
    from torch_relax.optimizers import StepAlgorithm
    from torch_relax.typing import FmaxMode


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class OptimProgress(Generic[T]):
    """Information on one optimization step.

    Attributes:
        ncalls: Number of potential evaluations so far
        fmax: Force convergence criterion at the evaluated point
        energy: Energy at the evaluated point
        extra: Payload returned by the evaluator, e.g. ModelProperties
    """

    ncalls: int
    fmax: float
    energy: float
    extra: T


def compute_fmax(forces: torch.Tensor, mode: FmaxMode = "atom") -> float:
    """Force convergence criterion.

    Args:
        forces: Flat force vector, frozen components set to zero
        mode: "atom" for the largest norm over consecutive groups of three
            components, "component" for the largest absolute component. "atom"
            falls back to "component" if the length is not a multiple of three.

    Returns:
        The criterion; NaN if any force is NaN, 0.0 for an empty vector.
    """
    if forces.numel() == 0:
        return 0.0
    if mode == "atom" and forces.numel() % 3 == 0:
        return torch.linalg.vector_norm(forces.reshape(-1, 3), dim=1).max().item()
    return forces.abs().max().item()


def _propagate(
    dynamics: Dynamics,
    mask: CoordinateMask,
    algorithm: StepAlgorithm,
    fmax_mode: FmaxMode,
) -> Generator[OptimProgress]:
    while (trial := algorithm.ask()) is not None:
        dynamics.set_position(mask.unmask(trial, dynamics.position))
        energy = dynamics.get_energy()
        forces = mask.apply(dynamics.get_force())
        algorithm.tell(energy, forces)
        yield OptimProgress(
            ncalls=dynamics.ncalls,
            fmax=compute_fmax(mask.unmask(forces, 0.0), fmax_mode),
            energy=energy,
            extra=dynamics.get_extra(),
        )
    logger.info("Step algorithm exhausted after %d evaluations", algorithm.state.n_evals)


def optimize_iter(
    dynamics: Dynamics,
    mask: CoordinateMask | None = None,
    config: OptimConfig | None = None,
) -> Generator[OptimProgress]:
    """Iterate an optimization of the potential cached by ``dynamics``.

    The step algorithm is chosen from ``config.algorithm`` when this function
    is called, before the first record is pulled.

    Args:
        dynamics: Evaluation cache positioned at the starting point
        mask: Frozen degrees of freedom. None optimizes all coordinates.
        config: Driver configuration, defaults to ``OptimConfig()``

    Returns:
        A generator of OptimProgress, one per evaluation.
    """
    config = config or OptimConfig()
    mask = mask or CoordinateMask.all_free(dynamics.n_dim)
    if mask.n_full != dynamics.n_dim:
        raise UsageError(
            f"Mask covers {mask.n_full} coordinates, expected {dynamics.n_dim}"
        )

    algorithm_cls = get_step_algorithm(config.algorithm)
    logger.info("Optimizing using %s algorithm ...", algorithm_cls.__name__)
    algorithm = algorithm_cls(mask.apply(dynamics.position), config)
    return _propagate(dynamics, mask, algorithm, config.fmax_mode)


def optimize_geometry_iter(
    atoms: Atoms,
    model: ModelInterface,
    config: OptimConfig | None = None,
) -> Generator[OptimProgress[ModelProperties]]:
    """Iterate a geometry optimization of ``atoms`` in the potential of ``model``.

    Atoms fixed by ``FixAtoms`` constraints are kept in place. ``atoms`` is
    updated with every evaluated geometry.

    Args:
        atoms: Target structure
        model: Model computing energy and forces
        config: Driver configuration, defaults to ``OptimConfig()``

    Returns:
        A generator of OptimProgress whose ``extra`` is the ModelProperties of
        the evaluated geometry.
    """
    config = config or OptimConfig()
    evaluator = MoleculeEvaluator(atoms, model)
    dynamics = Dynamics(evaluator.positions, evaluator, epsilon=config.epsilon)
    return optimize_iter(dynamics, CoordinateMask.from_atoms(atoms), config)
