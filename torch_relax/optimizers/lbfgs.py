r"""L-BFGS (Limited-memory BFGS) step algorithm.

The search direction $d = -H g$ comes from the two-loop recursion over the
last ``max_history`` position and gradient differences. Trial points along
$d$ are accepted by a gradient-only line search: energies are never compared,
a trial is accepted once the directional derivative has dropped to
$|g \cdot d| \le g_{tol} |g_0 \cdot d|$ or ``max_linesearch`` trials were
spent. With the near-exact tolerance $g_{tol} = 0.999$ and the default of a
single trial, nearly every evaluation is accepted, which makes each step cost
exactly one evaluation.

Curvature pairs are Powell-damped so that $s \cdot y > 0$ always holds and the
inverse Hessian estimate stays positive definite on non-convex surfaces.

References:
    - Nocedal & Wright, Numerical Optimization (L-BFGS two-loop recursion).
    - Powell, Math. Program. 14, 224 (1978) (damped BFGS update).
"""

import logging

import torch

from torch_relax.config import OptimConfig
from torch_relax.optimizers.base import StepAlgorithm
from torch_relax.optimizers.state import LBFGSState


logger = logging.getLogger(__name__)

LINESEARCH_GTOL = 0.999


class LBFGS(StepAlgorithm):
    """L-BFGS optimizer with gradient-only line search and damping.

    Args:
        positions: Initial point in the reduced coordinate space, shape [n]
        config: Driver configuration. ``initial_step_size`` seeds the initial
            inverse Hessian ``H0 = initial_step_size * I``; ``max_step_size``
            caps every trial displacement; ``max_linesearch`` bounds the line
            search.
        max_history: Number of (s, y) pairs kept for the two-loop recursion.
        damping: Apply Powell damping to new curvature pairs.
        gtol: Curvature tolerance of the line search.
    """

    def __init__(
        self,
        positions: torch.Tensor,
        config: OptimConfig | None = None,
        *,
        max_history: int = 5,
        damping: bool = True,
        gtol: float = LINESEARCH_GTOL,
    ) -> None:
        self.max_history = max_history
        self.damping = damping
        self.gtol = gtol
        super().__init__(positions, config)

    def _init_state(self, positions: torch.Tensor) -> LBFGSState:
        return LBFGSState(
            positions=positions,
            trial=positions.clone(),
            gamma=self.config.initial_step_size,
        )

    @property
    def gradient(self) -> torch.Tensor | None:
        """Gradient at the accepted point."""
        return None if self.state.forces is None else -self.state.forces

    def _update(self, energy: float, forces: torch.Tensor) -> None:
        state = self.state
        gradient = -forces

        if state.direction is None:
            self._accept(energy, forces)
            return

        dg0 = torch.dot(self.gradient, state.direction).item()
        dg = torch.dot(gradient, state.direction).item()
        curvature_met = abs(dg) <= self.gtol * abs(dg0)
        if curvature_met or state.ls_trials >= self.config.max_linesearch:
            self._push_history(state.trial - state.positions, gradient - self.gradient)
            self._accept(energy, forces)
            return

        # Secant step on the directional derivative, bracketed to [0.1, 4] times
        # the current step length.
        state.ls_trials += 1
        denom = dg0 - dg
        ratio = dg0 / denom if denom != 0.0 else 4.0
        ratio = 4.0 if ratio <= 0.0 else min(max(ratio, 0.1), 4.0)
        logger.debug("Line search trial %d, step ratio %.3f", state.ls_trials, ratio)
        self._set_trial(state.step_length * ratio)

    def _accept(self, energy: float, forces: torch.Tensor) -> None:
        state = self.state
        state.positions = state.trial
        state.energy = energy
        state.forces = forces

        direction = self._two_loop(self.gradient)
        if torch.dot(direction, self.gradient).item() >= 0.0:
            # Not a descent direction: restart from steepest descent.
            state.s_history.clear()
            state.y_history.clear()
            state.gamma = self.config.initial_step_size
            direction = -state.gamma * self.gradient
        state.direction = direction
        state.ls_trials = 1
        self._set_trial(1.0)

    def _set_trial(self, step_length: float) -> None:
        state = self.state
        step = self.cap_step(step_length * state.direction)
        largest = state.direction.abs().max().item() if state.direction.numel() else 0.0
        if largest > 0.0:
            step_length = min(step_length, self.config.max_step_size / largest)
        state.step_length = step_length
        state.trial = state.positions + step

    def _push_history(self, s: torch.Tensor, y: torch.Tensor) -> None:
        state = self.state
        sy = torch.dot(s, y).item()
        if self.damping:
            s_bs = torch.dot(s, s).item() / state.gamma
            if sy < 0.2 * s_bs:
                theta = 0.8 * s_bs / (s_bs - sy)
                y = theta * y + (1.0 - theta) * s / state.gamma
                sy = torch.dot(s, y).item()
        if sy <= 1e-16:
            return
        state.s_history.append(s)
        state.y_history.append(y)
        if len(state.s_history) > self.max_history:
            del state.s_history[0]
            del state.y_history[0]
        state.gamma = sy / torch.dot(y, y).item()

    def _two_loop(self, gradient: torch.Tensor) -> torch.Tensor:
        state = self.state
        q = gradient.clone()
        rhos = [
            1.0 / torch.dot(y, s).item()
            for s, y in zip(state.s_history, state.y_history)
        ]
        alphas = []
        for s, y, rho in reversed(list(zip(state.s_history, state.y_history, rhos))):
            alpha = rho * torch.dot(s, q).item()
            alphas.append(alpha)
            q = q - alpha * y
        z = state.gamma * q
        for (s, y, rho), alpha in zip(
            zip(state.s_history, state.y_history, rhos), reversed(alphas)
        ):
            beta = rho * torch.dot(y, z).item()
            z = z + (alpha - beta) * s
        return -z
