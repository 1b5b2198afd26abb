"""Evaluator that binds a structure and a model for one optimization run."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import torch

from torch_relax.errors import EvaluationError, UsageError
from torch_relax.potential import DTYPE


if TYPE_CHECKING:
    from ase import Atoms

    from torch_relax.models.interface import ModelInterface, ModelProperties


logger = logging.getLogger(__name__)


class MoleculeEvaluator:
    """Potential evaluator over the flattened Cartesian positions of ``atoms``.

    Each call evaluates ``model`` on a copy of ``atoms`` moved to the trial
    positions and writes them into ``atoms`` once the model has returned, so
    ``atoms`` always holds the last successfully evaluated geometry. The
    evaluator is the only writer of ``atoms`` and ``model`` while a run is in
    progress.

    Args:
        atoms: Target structure, updated in place
        model: Model computing energy and forces
    """

    def __init__(self, atoms: Atoms, model: ModelInterface) -> None:
        self.atoms = atoms
        self.model = model

    @property
    def positions(self) -> torch.Tensor:
        """Current flattened positions of the structure, shape [3 * n_atoms]."""
        return torch.as_tensor(self.atoms.get_positions(), dtype=DTYPE).reshape(-1)

    def __call__(
        self, positions: torch.Tensor
    ) -> tuple[float, torch.Tensor, ModelProperties]:
        """Evaluate energy and forces at ``positions``.

        Returns:
            Energy, flattened forces of shape [3 * n_atoms] and the full
            ModelProperties record.

        Raises:
            UsageError: If the model result lacks energy or forces.
            EvaluationError: If the model fails. ``atoms`` is left unchanged.
        """
        trial = self.atoms.copy()
        trial.set_positions(
            positions.detach().reshape(-1, 3).cpu().numpy(), apply_constraint=False
        )
        try:
            props = self.model.compute(trial)
        except (UsageError, EvaluationError):
            raise
        except (RuntimeError, ValueError, ArithmeticError) as exc:
            raise EvaluationError(f"model evaluation failed: {exc}") from exc

        energy = props.get_energy()
        forces = props.get_forces()
        self.atoms.set_positions(trial.get_positions(), apply_constraint=False)
        logger.debug("evaluate PES: energy=%s", energy)
        return energy, forces.to(DTYPE).reshape(-1), props
