"""Step algorithm state classes."""

from dataclasses import dataclass, field

import torch


@dataclass(kw_only=True)
class OptimState:
    """State shared by all step algorithms.

    All vectors live in the reduced (masked) coordinate space.

    Attributes:
        positions: Last evaluated point, shape [n]
        trial: Point the algorithm wants evaluated next, shape [n]
        energy: Energy at ``positions``, None before the first evaluation
        forces: Forces at ``positions``, None before the first evaluation
        n_evals: Number of evaluations reported to the algorithm
    """

    positions: torch.Tensor
    trial: torch.Tensor
    energy: float | None = None
    forces: torch.Tensor | None = None
    n_evals: int = 0


@dataclass(kw_only=True)
class FireState(OptimState):
    """State for FIRE optimization.

    Extends OptimState with the velocity and the adaptive time step, mixing
    factor and counter of consecutive downhill steps.
    """

    velocities: torch.Tensor | None = None
    dt: float
    alpha: float
    n_pos: int = 0


@dataclass(kw_only=True)
class LBFGSState(OptimState):
    """State for L-BFGS optimization.

    ``positions``/``energy``/``forces`` hold the last accepted point, i.e. the
    start of the current line search, while ``trial`` lies along
    ``direction`` at ``step_length``.

    Attributes:
        direction: Search direction d = -H g at the accepted point, shape [n]
        step_length: Scale of ``direction`` for the pending trial
        ls_trials: Trial points evaluated in the current line search
        s_history: Accepted position differences, newest last
        y_history: Matching (damped) gradient differences
        gamma: Current scaling of the initial inverse Hessian
    """

    direction: torch.Tensor | None = None
    step_length: float = 1.0
    ls_trials: int = 0
    s_history: list[torch.Tensor] = field(default_factory=list)
    y_history: list[torch.Tensor] = field(default_factory=list)
    gamma: float
