import logging

import pytest
from pydantic import ValidationError

from torch_relax.config import OptimConfig
from torch_relax.errors import ConfigurationError
from torch_relax.typing import Algorithm


def test_defaults() -> None:
    config = OptimConfig()
    assert config.max_step_size == 0.1
    assert config.initial_step_size == pytest.approx(1 / 75)
    assert config.max_linesearch == 1
    assert config.max_evaluations == 0
    assert config.algorithm is Algorithm.lbfgs
    assert config.epsilon == 1e-8
    assert config.fmax_mode == "atom"


def test_algorithm_from_string() -> None:
    assert OptimConfig(algorithm="fire").algorithm is Algorithm.fire


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_step_size": 0.0},
        {"initial_step_size": -1.0},
        {"max_linesearch": 0},
        {"max_evaluations": -1},
        {"epsilon": 0.0},
        {"fmax_mode": "norm"},
        {"algorithm": "bfgs"},
        {"max_step_size": float("nan")},
    ],
)
def test_invalid_values(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError):
        OptimConfig(**kwargs)


def test_from_mapping() -> None:
    config = OptimConfig.from_mapping(
        {
            "max_step_size": "0.2",
            "initial_step_size": "0.02",
            "max_linesearch": " 3 ",
            "algorithm": "FIRE",
            "fmax_mode": "component",
            "unrelated": "ignored",
        }
    )
    assert config.max_step_size == 0.2
    assert config.initial_step_size == 0.02
    assert config.max_linesearch == 3
    assert config.algorithm is Algorithm.fire
    assert config.fmax_mode == "component"


@pytest.mark.parametrize(
    "values",
    [{"max_linesearch": "two"}, {"initial_step_size": "1/75"}, {"algorithm": "newton"}],
)
def test_from_mapping_invalid(values: dict[str, str]) -> None:
    with pytest.raises(ConfigurationError):
        OptimConfig.from_mapping(values)


def test_from_env() -> None:
    environ = {
        "TORCH_RELAX_MAX_EVALUATIONS": "50",
        "TORCH_RELAX_EPSILON": "1e-6",
        "HOME": "/",
    }
    config = OptimConfig.from_env(environ=environ)
    assert config.max_evaluations == 50
    assert config.epsilon == 1e-6


def test_from_env_custom_prefix() -> None:
    config = OptimConfig.from_env(prefix="RELAX_", environ={"RELAX_ALGORITHM": "fire"})
    assert config.algorithm is Algorithm.fire


def test_from_env_empty() -> None:
    assert OptimConfig.from_env(environ={}) == OptimConfig()


def test_from_env_malformed_falls_back(caplog: pytest.LogCaptureFixture) -> None:
    """A malformed environment logs a warning and uses the defaults."""
    environ = {"TORCH_RELAX_MAX_STEP_SIZE": "-0.5", "TORCH_RELAX_ALGORITHM": "fire"}
    with caplog.at_level(logging.WARNING):
        config = OptimConfig.from_env(environ=environ)
    assert config == OptimConfig()
    assert "Ignoring TORCH_RELAX_* environment variables" in caplog.text


def test_frozen() -> None:
    config = OptimConfig()
    with pytest.raises(ValidationError):
        config.max_step_size = 1.0  # type: ignore[misc]


def test_unknown_option() -> None:
    with pytest.raises(ConfigurationError, match="max_steps"):
        OptimConfig(max_steps=10)  # type: ignore[call-arg]
