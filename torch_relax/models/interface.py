"""Core interfaces for energy and force models.

This module defines the abstract base class that models used by TorchRelax must
implement. A model is a ``torch.nn.Module`` whose ``forward`` maps Cartesian
positions to energy and forces; :meth:`ModelInterface.compute` wraps it into the
structure-level call the optimizer uses, taking an ``ase.Atoms`` snapshot and
returning a :class:`ModelProperties` record.

Example::

    # Creating a custom model that implements the interface
    class HarmonicModel(ModelInterface):
        def __init__(self, k=1.0, device=None, dtype=torch.float64):
            super().__init__()
            self.k = k
            self._device = device or torch.device("cpu")
            self._dtype = dtype
            self._compute_forces = True

        def forward(self, positions, atomic_numbers, **kwargs):
            energy = 0.5 * self.k * (positions**2).sum()
            return {"energy": energy, "forces": -self.k * positions}

Notes:
    Models that cannot provide forces must say so through ``compute_forces``;
    the optimizer treats a result without forces as a usage error.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypedDict

import torch

from torch_relax.errors import UsageError


if TYPE_CHECKING:
    from ase import Atoms


class ModelOutput(TypedDict, total=False):
    """The expected output of a model forward pass implementation."""

    energy: torch.Tensor
    forces: torch.Tensor
    stress: torch.Tensor


@dataclass
class ModelProperties:
    """Properties computed by a model for one structure.

    Attributes:
        energy: Potential energy, None if the model did not compute it
        forces: Forces with shape [n_atoms, 3], None if not computed
        stress: Stress tensor with shape [3, 3], None if not computed
        extra: Any further model-specific results
    """

    energy: float | None = None
    forces: torch.Tensor | None = None
    stress: torch.Tensor | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def get_energy(self) -> float:
        """Energy, raising UsageError("no energy") if it is missing."""
        if self.energy is None:
            raise UsageError("no energy")
        return self.energy

    def get_forces(self) -> torch.Tensor:
        """Forces, raising UsageError("no forces") if they are missing."""
        if self.forces is None:
            raise UsageError("no forces")
        return self.forces


class ModelInterface(torch.nn.Module, ABC):
    """Abstract base class for all energy and force models.

    Attributes:
        device (torch.device): Device where the model runs computations.
        dtype (torch.dtype): Data type used for tensor calculations.
        compute_forces (bool): Whether the model calculates atomic forces.
    """

    _device: torch.device
    _dtype: torch.dtype
    _compute_forces: bool

    @property
    def device(self) -> torch.device:
        """The device of the model."""
        return self._device

    @device.setter
    def device(self, device: torch.device) -> None:
        raise NotImplementedError(
            "No device setter has been defined for this model"
            " so the device cannot be changed after initialization."
        )

    @property
    def dtype(self) -> torch.dtype:
        """The data type of the model."""
        return self._dtype

    @dtype.setter
    def dtype(self, dtype: torch.dtype) -> None:
        raise NotImplementedError(
            "No dtype setter has been defined for this model"
            " so the dtype cannot be changed after initialization."
        )

    @property
    def compute_forces(self) -> bool:
        """Whether the model computes forces."""
        return self._compute_forces

    @compute_forces.setter
    def compute_forces(self, compute_forces: bool) -> None:
        raise NotImplementedError(
            "No compute_forces setter has been defined for this model"
            " so compute_forces cannot be set after initialization."
        )

    @abstractmethod
    def forward(
        self, positions: torch.Tensor, atomic_numbers: torch.Tensor, **kwargs
    ) -> ModelOutput:
        """Calculate energy and forces of a single structure.

        Args:
            positions: Cartesian positions with shape [n_atoms, 3]
            atomic_numbers: Atomic numbers with shape [n_atoms]
            **kwargs: Additional model-specific parameters.

        Returns:
            ModelOutput: "energy" as a scalar tensor and, if ``compute_forces``,
                "forces" with shape [n_atoms, 3].
        """

    def compute(self, atoms: "Atoms") -> ModelProperties:
        """Evaluate the model on a structure.

        Args:
            atoms: Structure to evaluate. It is not modified.

        Returns:
            ModelProperties with the tensors moved to the CPU as float64.
        """
        positions = torch.as_tensor(
            atoms.get_positions(), device=self.device, dtype=self.dtype
        )
        atomic_numbers = torch.as_tensor(atoms.get_atomic_numbers(), device=self.device)
        output = self(positions, atomic_numbers)

        energy = output.get("energy")
        forces = output.get("forces")
        stress = output.get("stress")
        return ModelProperties(
            energy=None if energy is None else float(energy.detach()),
            forces=None if forces is None else forces.detach().to("cpu", torch.float64),
            stress=None if stress is None else stress.detach().to("cpu", torch.float64),
            extra={
                key: value for key, value in output.items()
                if key not in ("energy", "forces", "stress")
            },
        )


def validate_model_outputs(model: ModelInterface, atoms: "Atoms") -> None:
    """Validate a model implementation against the interface requirements.

    Checks that the model leaves its input untouched and returns a scalar
    energy and, if it claims to compute them, forces of shape [n_atoms, 3].

    Raises:
        ValueError: If the model doesn't conform to the interface.
    """
    for attr in ("dtype", "device", "compute_forces"):
        if not hasattr(model, attr):
            raise ValueError(f"model.{attr} is not set")

    og_positions = atoms.get_positions().copy()
    props = model.compute(atoms)

    if not (atoms.get_positions() == og_positions).all():
        raise ValueError("model mutated the input positions")
    if props.energy is None:
        raise ValueError("model did not return an energy")
    if model.compute_forces:
        if props.forces is None:
            raise ValueError("model did not return forces")
        if tuple(props.forces.shape) != (len(atoms), 3):
            raise ValueError(f"forces have shape {tuple(props.forces.shape)}")
