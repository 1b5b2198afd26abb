"""Velocity Verlet propagation on top of the potential evaluation cache."""

import torch

from torch_relax.errors import UsageError
from torch_relax.potential import DTYPE, Dynamics, as_vector


class MoleculeDynamics:
    """Newtonian trajectory of the coordinates cached by a Dynamics.

    Forces are read through the cache, so the force at the end of one step is
    reused at the start of the next without another evaluation.

    Args:
        dynamics: Evaluation cache holding the positions
        masses: Masses per coordinate, shape [N], or per atom, shape [N / 3]
        velocities: Initial velocities, shape [N]. Defaults to zero.
    """

    def __init__(
        self,
        dynamics: Dynamics,
        masses: torch.Tensor,
        velocities: torch.Tensor | None = None,
    ) -> None:
        n_dim = dynamics.n_dim
        masses = as_vector(masses)
        if masses.numel() * 3 == n_dim:
            masses = masses.repeat_interleave(3)
        if masses.numel() != n_dim:
            raise UsageError(f"Got {masses.numel()} masses for {n_dim} coordinates")
        if velocities is None:
            velocities = torch.zeros(n_dim, dtype=DTYPE)
        velocities = as_vector(velocities)
        if velocities.numel() != n_dim:
            raise UsageError(
                f"Got {velocities.numel()} velocities for {n_dim} coordinates"
            )

        self.dynamics = dynamics
        self.masses = masses
        self.velocities = velocities

    def propagate(self, timestep: float) -> None:
        """Advance positions and velocities by one velocity Verlet step.

        A displacement the cache ignores as below ``epsilon`` leaves the
        positions in place; the velocities then only receive the force kick.
        """
        dt = timestep
        forces = self.dynamics.get_force()
        dr = self.velocities * dt + 0.5 * forces / self.masses * dt**2
        if not self.dynamics.step_toward(dr):
            self.velocities = self.velocities + forces / self.masses * dt
            return

        new_forces = self.dynamics.get_force()
        self.velocities = dr / dt + 0.5 * new_forces / self.masses * dt

    def kinetic_energy(self) -> float:
        """Kinetic energy ½ Σ m v²."""
        return 0.5 * torch.sum(self.masses * self.velocities**2).item()

    def total_energy(self) -> float:
        """Potential plus kinetic energy."""
        return self.dynamics.get_energy() + self.kinetic_energy()
