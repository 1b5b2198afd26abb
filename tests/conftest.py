from collections.abc import Callable

import pytest
import torch
from ase import Atoms
from ase.cluster import Icosahedron

from torch_relax.models.lennard_jones import LennardJonesModel


DEVICE = torch.device("cpu")
DTYPE = torch.float64

# Nearest neighbour distance of the Lennard-Jones minimum in reduced units.
LJ_R_MIN = 2 ** (1 / 6)


class CountingQuadratic:
    """Evaluator for f(x) = Σ c_i x_i² that counts its calls."""

    def __init__(self, curvature: torch.Tensor | None = None) -> None:
        self.curvature = curvature
        self.calls = 0
        self.positions: list[torch.Tensor] = []

    def __call__(self, x: torch.Tensor) -> tuple[float, torch.Tensor]:
        self.calls += 1
        self.positions.append(x.clone())
        c = torch.ones_like(x) if self.curvature is None else self.curvature
        return (c * x**2).sum().item(), -2.0 * c * x


@pytest.fixture
def quadratic() -> CountingQuadratic:
    """Isotropic quadratic evaluator f(x) = Σ x_i², force = -2x."""
    return CountingQuadratic()


@pytest.fixture
def make_quadratic() -> Callable[..., CountingQuadratic]:
    """Factory for quadratic evaluators with per-coordinate curvature."""
    return CountingQuadratic


@pytest.fixture
def lj_model() -> LennardJonesModel:
    """Lennard-Jones model in reduced units."""
    return LennardJonesModel(sigma=1.0, epsilon=1.0, device=DEVICE, dtype=DTYPE)


@pytest.fixture
def lj13_atoms() -> Atoms:
    """Rattled 13-atom icosahedral cluster near the LJ13 minimum."""
    atoms = Icosahedron("Ar", noshells=2, latticeconstant=LJ_R_MIN * 2**0.5)
    atoms.center()
    atoms.rattle(stdev=0.05, seed=42)
    return atoms


@pytest.fixture
def lj_dimer() -> Atoms:
    """Two atoms stretched away from the pair minimum."""
    return Atoms("Ar2", positions=[[0.0, 0.0, 0.0], [0.0, 0.0, 1.4]])
