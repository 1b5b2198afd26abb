import itertools
import logging
import math

import pytest
import torch
from ase import Atoms
from ase.constraints import FixAtoms

from tests.conftest import DTYPE, CountingQuadratic
from torch_relax.config import OptimConfig
from torch_relax.errors import UsageError
from torch_relax.mask import CoordinateMask
from torch_relax.models.interface import ModelProperties
from torch_relax.models.lennard_jones import LennardJonesModel
from torch_relax.optimization import (
    OptimProgress,
    compute_fmax,
    optimize_geometry_iter,
    optimize_iter,
)
from torch_relax.potential import Dynamics
from torch_relax.typing import Algorithm


# Global minimum of the 13 atom Lennard-Jones cluster in reduced units.
LJ13_ENERGY = -44.326801


@pytest.mark.parametrize(
    ("forces", "mode", "expected"),
    [
        ([3.0, 4.0, 0.0, 0.0, 0.0, -1.0], "atom", 5.0),
        ([3.0, 4.0, 0.0, 0.0, 0.0, -1.0], "component", 4.0),
        ([1.0, -2.0, 0.5, 0.0], "atom", 2.0),
        ([], "atom", 0.0),
    ],
)
def test_compute_fmax(forces: list[float], mode: str, expected: float) -> None:
    fmax = compute_fmax(torch.tensor(forces, dtype=DTYPE), mode)
    assert fmax == pytest.approx(expected)


def test_compute_fmax_nan() -> None:
    assert math.isnan(compute_fmax(torch.tensor([0.0, math.nan, 1.0], dtype=DTYPE)))


@pytest.mark.parametrize("algorithm", list(Algorithm))
def test_one_evaluation_per_record(
    quadratic: CountingQuadratic, algorithm: Algorithm
) -> None:
    """Each pulled record costs exactly one evaluation, nothing runs ahead."""
    dynamics = Dynamics(torch.tensor([1.0, 2.0, 3.0], dtype=DTYPE), quadratic)
    steps = optimize_iter(dynamics, config=OptimConfig(algorithm=algorithm))
    assert quadratic.calls == 0

    for n, progress in enumerate(itertools.islice(steps, 6), start=1):
        assert isinstance(progress, OptimProgress)
        assert progress.ncalls == n
        assert quadratic.calls == n
        assert progress.energy == pytest.approx(dynamics.get_energy())
    assert dynamics.ncalls == 6


def test_first_record_is_starting_point(quadratic: CountingQuadratic) -> None:
    x0 = torch.tensor([1.0, -1.0, 0.5], dtype=DTYPE)
    steps = optimize_iter(Dynamics(x0, quadratic))
    first = next(steps)
    assert first.energy == pytest.approx(2.25)
    assert torch.equal(quadratic.positions[0], x0)
    # the starting point has a single atom with force (-2, 2, -1)
    assert first.fmax == pytest.approx(3.0)


@pytest.mark.parametrize("algorithm", list(Algorithm))
def test_frozen_coordinates_stay_fixed(
    quadratic: CountingQuadratic, algorithm: Algorithm
) -> None:
    """Frozen components never move and never enter fmax."""
    x0 = torch.tensor([5.0, 0.1, -0.1, 0.05, -5.0, 0.1], dtype=DTYPE)
    mask = CoordinateMask.from_frozen_indices(6, [0, 4])
    config = OptimConfig(algorithm=algorithm, fmax_mode="component")
    steps = optimize_iter(Dynamics(x0, quadratic), mask, config)

    records = list(itertools.islice(steps, 30))
    assert len(records) == 30
    for position in quadratic.positions:
        assert position[0] == 5.0
        assert position[4] == -5.0
    # frozen components carry forces of magnitude 10
    assert all(progress.fmax < 1.0 for progress in records)


def test_max_evaluations_ends_sequence(quadratic: CountingQuadratic) -> None:
    config = OptimConfig(max_evaluations=3)
    steps = optimize_iter(Dynamics(torch.ones(3, dtype=DTYPE), quadratic), config=config)
    assert len(list(steps)) == 3
    assert quadratic.calls == 3
    with pytest.raises(StopIteration):
        next(steps)


def test_algorithm_is_resolved_eagerly(
    quadratic: CountingQuadratic, caplog: pytest.LogCaptureFixture
) -> None:
    """The algorithm is picked when the sequence is created, not when pulled."""
    with caplog.at_level(logging.INFO, logger="torch_relax"):
        optimize_iter(
            Dynamics(torch.ones(3, dtype=DTYPE), quadratic),
            config=OptimConfig(algorithm="fire"),
        )
    assert "Optimizing using Fire algorithm" in caplog.text
    assert quadratic.calls == 0


def test_mask_length_mismatch(quadratic: CountingQuadratic) -> None:
    dynamics = Dynamics(torch.ones(3, dtype=DTYPE), quadratic)
    with pytest.raises(UsageError, match="Mask covers 6"):
        optimize_iter(dynamics, CoordinateMask.all_free(6))


@pytest.mark.parametrize("algorithm", list(Algorithm))
def test_lj13_relaxes_to_icosahedron(
    lj13_atoms: Atoms, lj_model: LennardJonesModel, algorithm: Algorithm
) -> None:
    steps = optimize_geometry_iter(lj13_atoms, lj_model, OptimConfig(algorithm=algorithm))
    for progress in itertools.islice(steps, 1000):
        if progress.fmax < 1e-2:
            break
    steps.close()

    assert progress.fmax < 1e-2
    assert progress.energy == pytest.approx(LJ13_ENERGY, abs=1e-3)
    assert isinstance(progress.extra, ModelProperties)
    assert progress.extra.energy == progress.energy
    # atoms hold the last evaluated geometry
    relaxed = lj_model.compute(lj13_atoms)
    assert relaxed.energy == pytest.approx(progress.energy)


def test_fixed_atom_does_not_move(lj_model: LennardJonesModel) -> None:
    atoms = Atoms(
        "Ar3", positions=[[0.0, 0.0, 0.0], [1.3, 0.0, 0.0], [0.0, 1.3, 0.0]]
    )
    atoms.set_constraint(FixAtoms(indices=[0]))
    start = atoms.get_positions().copy()

    steps = optimize_geometry_iter(atoms, lj_model)
    records = list(itertools.islice(steps, 20))

    assert records[-1].energy < records[0].energy
    assert (atoms.get_positions()[0] == start[0]).all()
    assert not (atoms.get_positions()[1:] == start[1:]).all()
