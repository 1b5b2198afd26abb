import typing
from typing import Final

import pytest
import torch
from ase import Atoms
from ase.build import molecule

from tests.conftest import LJ_R_MIN


if typing.TYPE_CHECKING:
    from ase.calculators.calculator import Calculator

    from torch_relax.models.interface import ModelInterface


consistency_test_atoms_fixtures: Final[tuple[str, ...]] = (
    "lj_dimer",
    "lj13_atoms",
    "ar_chain_atoms",
    "benzene_atoms",
)


@pytest.fixture
def ar_chain_atoms() -> Atoms:
    """Slightly compressed linear chain of four atoms."""
    spacing = 0.95 * LJ_R_MIN
    return Atoms("Ar4", positions=[[spacing * i, 0.0, 0.0] for i in range(4)])


@pytest.fixture
def benzene_atoms() -> Atoms:
    """Benzene molecule with all pair distances above the repulsive wall."""
    atoms = molecule("C6H6")
    atoms.set_positions(atoms.get_positions() * 1.2)
    return atoms


def make_model_calculator_consistency_test(
    test_name: str,
    model_fixture_name: str,
    calculator_fixture_name: str,
    atoms_names: tuple[str, ...],
    energy_rtol: float = 1e-5,
    energy_atol: float = 1e-5,
    force_rtol: float = 1e-5,
    force_atol: float = 1e-5,
):
    """Factory function to create model-calculator consistency tests.

    Args:
        test_name: Name of the test (used in the function name and messages)
        model_fixture_name: Name of the model fixture
        calculator_fixture_name: Name of the calculator fixture
        atoms_names: Atoms fixture names to test
        energy_rtol: Relative tolerance for energy comparisons
        energy_atol: Absolute tolerance for energy comparisons
        force_rtol: Relative tolerance for force comparisons
        force_atol: Absolute tolerance for force comparisons
    """

    @pytest.mark.parametrize("atoms_name", atoms_names)
    def test_model_calculator_consistency(
        atoms_name: str, request: pytest.FixtureRequest
    ) -> None:
        """Test consistency between model and calculator implementations."""
        model: ModelInterface = request.getfixturevalue(model_fixture_name)
        calculator: Calculator = request.getfixturevalue(calculator_fixture_name)
        atoms: Atoms = request.getfixturevalue(atoms_name).copy()
        atoms.calc = calculator

        props = model.compute(atoms)
        calc_forces = torch.tensor(atoms.get_forces(), dtype=props.forces.dtype)

        torch.testing.assert_close(
            props.energy,
            float(atoms.get_potential_energy()),
            rtol=energy_rtol,
            atol=energy_atol,
        )
        torch.testing.assert_close(
            props.forces,
            calc_forces,
            rtol=force_rtol,
            atol=force_atol,
        )

    test_model_calculator_consistency.__name__ = f"test_{test_name}_consistency"
    return test_model_calculator_consistency


def make_validate_model_outputs_test(model_fixture_name: str):
    """Factory function to create model output validation tests.

    Args:
        model_fixture_name: Name of the model fixture to validate
    """
    from torch_relax.models.interface import validate_model_outputs

    @pytest.mark.parametrize("atoms_name", consistency_test_atoms_fixtures)
    def test_model_output_validation(
        atoms_name: str, request: pytest.FixtureRequest
    ) -> None:
        """Test that a model implementation follows the ModelInterface contract."""
        model: ModelInterface = request.getfixturevalue(model_fixture_name)
        validate_model_outputs(model, request.getfixturevalue(atoms_name))

    test_model_output_validation.__name__ = f"test_{model_fixture_name}_output_validation"
    return test_model_output_validation
