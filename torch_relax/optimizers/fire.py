"""FIRE (Fast Inertial Relaxation Engine) step algorithm.

FIRE propagates damped velocity-Verlet dynamics on the potential energy
surface, mixing the velocity towards the force direction and adapting the time
step: while the power P = F·v stays positive the time step grows, otherwise the
velocity is zeroed and the time step shrinks. It only needs forces and copes
well with noisy or unreliable curvature information.

References:
    Bitzek et al., Phys. Rev. Lett. 97, 170201 (2006)
"""

import torch

from torch_relax.config import OptimConfig
from torch_relax.optimizers.base import StepAlgorithm
from torch_relax.optimizers.state import FireState


class Fire(StepAlgorithm):
    """FIRE optimizer following the ASE flavor of the algorithm.

    Args:
        positions: Initial point in the reduced coordinate space, shape [n]
        config: Driver configuration (``max_step_size``, ``max_evaluations``)
        dt_start: Initial time step
        dt_max: Maximum time step
        n_min: Number of downhill steps before the time step may grow
        f_inc: Time step growth factor
        f_dec: Time step shrink factor after an uphill step
        alpha_start: Initial velocity mixing factor
        f_alpha: Mixing factor decay
    """

    def __init__(
        self,
        positions: torch.Tensor,
        config: OptimConfig | None = None,
        *,
        dt_start: float = 0.1,
        dt_max: float = 1.0,
        n_min: int = 5,
        f_inc: float = 1.1,
        f_dec: float = 0.5,
        alpha_start: float = 0.1,
        f_alpha: float = 0.99,
    ) -> None:
        self.dt_start = dt_start
        self.dt_max = dt_max
        self.n_min = n_min
        self.f_inc = f_inc
        self.f_dec = f_dec
        self.alpha_start = alpha_start
        self.f_alpha = f_alpha
        super().__init__(positions, config)

    def _init_state(self, positions: torch.Tensor) -> FireState:
        return FireState(
            positions=positions,
            trial=positions.clone(),
            dt=self.dt_start,
            alpha=self.alpha_start,
        )

    def _update(self, energy: float, forces: torch.Tensor) -> None:
        state = self.state
        state.positions = state.trial
        state.energy = energy
        state.forces = forces

        if state.velocities is None:
            state.velocities = torch.zeros_like(forces)
        else:
            power = torch.dot(forces, state.velocities).item()
            if power > 0.0:
                f_norm = torch.linalg.vector_norm(forces)
                v_norm = torch.linalg.vector_norm(state.velocities)
                state.velocities = (1.0 - state.alpha) * state.velocities + (
                    state.alpha * forces / (f_norm + 1e-300) * v_norm
                )
                if state.n_pos > self.n_min:
                    state.dt = min(state.dt * self.f_inc, self.dt_max)
                    state.alpha *= self.f_alpha
                state.n_pos += 1
            else:
                state.velocities = torch.zeros_like(forces)
                state.alpha = self.alpha_start
                state.dt *= self.f_dec
                state.n_pos = 0

        state.velocities = state.velocities + state.dt * forces
        step = self.cap_step(state.dt * state.velocities)
        state.trial = state.positions + step
