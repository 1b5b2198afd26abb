"""Configuration of the optimization driver.

Options are collected in a single frozen :class:`OptimConfig` model that is
passed explicitly to the optimizer. :meth:`OptimConfig.from_env` can build one
from environment variables, e.g.::

    export TORCH_RELAX_ALGORITHM=fire
    export TORCH_RELAX_MAX_STEP_SIZE=0.2

A malformed environment never aborts a run: a warning is logged and the
defaults are used instead.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from torch_relax.errors import ConfigurationError
from torch_relax.typing import Algorithm, FmaxMode


if TYPE_CHECKING:
    from collections.abc import Mapping


logger = logging.getLogger(__name__)

ENV_PREFIX = "TORCH_RELAX_"


class OptimConfig(BaseModel):
    """Options for the optimization driver and its step algorithms.

    Attributes:
        max_step_size: Largest allowed displacement of any single coordinate
            in one step.
        initial_step_size: Seed of the L-BFGS inverse Hessian diagonal.
        max_linesearch: Maximum number of trial points per L-BFGS line search.
        max_evaluations: Maximum number of potential evaluations the step
            algorithm may request. 0 means unbounded.
        algorithm: Step algorithm used by the driver.
        epsilon: Displacement norm below which a position update is ignored.
        fmax_mode: "atom" reports the largest per-atom force norm, "component"
            the largest absolute force component.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    max_step_size: float = Field(default=0.1, gt=0)
    initial_step_size: float = Field(default=1.0 / 75.0, gt=0)
    max_linesearch: int = Field(default=1, ge=1)
    max_evaluations: int = Field(default=0, ge=0)
    algorithm: Algorithm = Algorithm.lbfgs
    epsilon: float = Field(default=1e-8, gt=0)
    fmax_mode: FmaxMode = "atom"

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    @field_validator("algorithm", "fmax_mode", mode="before")
    @classmethod
    def lower_case_names(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> Self:
        """Parse string values keyed by field name. Unknown keys are ignored.

        Raises:
            ConfigurationError: If a value cannot be converted or is invalid.
        """
        try:
            return cls.model_validate(_field_values(cls, values))
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    @classmethod
    def from_env(
        cls, prefix: str = ENV_PREFIX, environ: Mapping[str, str] | None = None
    ) -> Self:
        """Build a config from ``<prefix><FIELD>`` environment variables.

        Falls back to the defaults, with a warning, if any variable is malformed.
        """
        environ = os.environ if environ is None else environ
        values = {
            name: environ[prefix + name.upper()]
            for name in cls.model_fields
            if prefix + name.upper() in environ
        }
        if not values:
            logger.debug("No %s* environment variables found, using defaults.", prefix)
            return cls()
        try:
            config = cls.model_validate(_field_values(cls, values))
        except ValidationError as exc:
            logger.warning("Ignoring %s* environment variables: %s", prefix, exc)
            return cls()
        logger.debug("Read optimizer configuration from environment: %s", config)
        return config


def _field_values(cls: type[OptimConfig], values: Mapping[str, str]) -> dict[str, str]:
    return {
        name: value.strip() for name, value in values.items() if name in cls.model_fields
    }
