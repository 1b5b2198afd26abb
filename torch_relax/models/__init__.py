"""Energy and force models."""

from torch_relax.models.interface import (
    ModelInterface,
    ModelOutput,
    ModelProperties,
    validate_model_outputs,
)
from torch_relax.models.lennard_jones import LennardJonesModel


__all__ = [
    "LennardJonesModel",
    "ModelInterface",
    "ModelOutput",
    "ModelProperties",
    "validate_model_outputs",
]
