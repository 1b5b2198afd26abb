"""Lennard-Jones pair potential for finite clusters.

Energies are summed over all unique atom pairs with open boundary conditions;
forces are obtained by automatic differentiation. The model is mostly useful
as a cheap reference potential for tests and examples, e.g. relaxing rare gas
clusters.
"""

import torch

from torch_relax.models.interface import ModelInterface, ModelOutput


def lennard_jones_pair(
    dr: torch.Tensor, sigma: float = 1.0, epsilon: float = 1.0
) -> torch.Tensor:
    """Lennard-Jones pair energy 4ε[(σ/r)^12 - (σ/r)^6] at distances ``dr``."""
    idr6 = (sigma / dr) ** 6
    return 4 * epsilon * (idr6**2 - idr6)


class LennardJonesModel(ModelInterface):
    """Lennard-Jones model for a single non-periodic structure.

    Args:
        sigma: Distance at which the pair energy is zero
        epsilon: Depth of the pair potential well
        cutoff: Pairs farther apart than this do not interact. None for no cutoff.
        device: Device to run on
        dtype: Data type of the computation
        compute_forces: Whether to compute forces
    """

    def __init__(
        self,
        sigma: float = 1.0,
        epsilon: float = 1.0,
        cutoff: float | None = None,
        device: torch.device | None = None,
        dtype: torch.dtype = torch.float64,
        *,
        compute_forces: bool = True,
    ) -> None:
        super().__init__()
        self.sigma = sigma
        self.epsilon = epsilon
        self.cutoff = cutoff
        self._device = device or torch.device("cpu")
        self._dtype = dtype
        self._compute_forces = compute_forces

    def forward(
        self, positions: torch.Tensor, atomic_numbers: torch.Tensor, **kwargs
    ) -> ModelOutput:
        """Compute energy and forces of the cluster at ``positions``."""
        positions = positions.detach().to(self.device, self.dtype)
        positions.requires_grad_(self.compute_forces)

        n_atoms = positions.shape[0]
        i, j = torch.triu_indices(n_atoms, n_atoms, offset=1, device=self.device)
        dr = torch.linalg.vector_norm(positions[i] - positions[j], dim=-1)
        pair_energy = lennard_jones_pair(dr, self.sigma, self.epsilon)
        if self.cutoff is not None:
            pair_energy = torch.where(dr < self.cutoff, pair_energy, 0.0)
        energy = pair_energy.sum()

        results: ModelOutput = {"energy": energy.detach()}
        if self.compute_forces:
            (grad,) = torch.autograd.grad(energy, positions)
            results["forces"] = -grad
        return results
