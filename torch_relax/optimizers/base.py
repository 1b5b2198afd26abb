"""Ask/tell interface shared by the step algorithms.

The optimization driver pulls trial points from a step algorithm with
:meth:`StepAlgorithm.ask`, evaluates them, and reports the energy and forces
back with :meth:`StepAlgorithm.tell`. Each tell corresponds to exactly one
evaluation. Algorithms that need a gradient negate the forces themselves, so
callers always pass forces (force = -gradient).
"""

from abc import ABC, abstractmethod

import torch

from torch_relax.config import OptimConfig
from torch_relax.errors import UsageError
from torch_relax.optimizers.state import OptimState
from torch_relax.potential import as_vector


class StepAlgorithm(ABC):
    """Base class of the step algorithms.

    Args:
        positions: Initial point in the reduced coordinate space, shape [n]
        config: Driver configuration; ``max_step_size`` and
            ``max_evaluations`` apply to every algorithm.
    """

    state: OptimState

    def __init__(
        self, positions: torch.Tensor, config: OptimConfig | None = None
    ) -> None:
        self.config = config or OptimConfig()
        self.state = self._init_state(as_vector(positions))

    @abstractmethod
    def _init_state(self, positions: torch.Tensor) -> OptimState:
        """Create the initial state, with ``trial`` set to the first point."""

    @abstractmethod
    def _update(self, energy: float, forces: torch.Tensor) -> None:
        """Consume the evaluation of ``state.trial`` and set the next trial."""

    @property
    def exhausted(self) -> bool:
        """Whether the evaluation budget ``max_evaluations`` is used up."""
        max_evals = self.config.max_evaluations
        return max_evals > 0 and self.state.n_evals >= max_evals

    def ask(self) -> torch.Tensor | None:
        """Next point to evaluate, or None once the evaluation budget is spent.

        Repeated calls without an intervening :meth:`tell` return the same point.
        """
        if self.exhausted:
            return None
        return self.state.trial.clone()

    def tell(self, energy: float, forces: torch.Tensor) -> None:
        """Report energy and forces evaluated at the last asked point."""
        forces = as_vector(forces)
        if forces.numel() != self.state.trial.numel():
            raise UsageError(
                f"Expected {self.state.trial.numel()} force components, "
                f"got {forces.numel()}"
            )
        self.state.n_evals += 1
        self._update(float(energy), forces)

    def cap_step(self, step: torch.Tensor) -> torch.Tensor:
        """Scale ``step`` down so no component exceeds ``max_step_size``."""
        if step.numel() == 0:
            return step
        largest = step.abs().max().item()
        max_step = self.config.max_step_size
        if largest > max_step:
            step = step * (max_step / largest)
        return step
