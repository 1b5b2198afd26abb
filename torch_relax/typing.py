"""Types used across TorchRelax."""

from collections.abc import Callable
from enum import StrEnum
from typing import Any, Literal

import torch


FmaxMode = Literal["atom", "component"]

EvaluatorOutput = tuple[float, torch.Tensor] | tuple[float, torch.Tensor, Any]
Evaluator = Callable[[torch.Tensor], EvaluatorOutput]
"""Potential evaluator: positions [N] -> (energy, forces [N]) or
(energy, forces [N], extra)."""


class Algorithm(StrEnum):
    """Enumeration of the step algorithms available to the optimization driver."""

    fire = "fire"
    lbfgs = "lbfgs"
