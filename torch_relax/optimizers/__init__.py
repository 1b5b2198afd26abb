"""Step algorithms for geometry relaxations.

Each algorithm is an ask/tell object working on the reduced (masked)
coordinate vector. The optimization driver picks one from
:data:`OPTIM_REGISTRY` according to :class:`~torch_relax.typing.Algorithm`.
"""

from typing import Final

from torch_relax.errors import ConfigurationError
from torch_relax.optimizers.base import StepAlgorithm
from torch_relax.optimizers.fire import Fire
from torch_relax.optimizers.lbfgs import LBFGS, LINESEARCH_GTOL
from torch_relax.optimizers.state import FireState, LBFGSState, OptimState
from torch_relax.typing import Algorithm


OPTIM_REGISTRY: Final[dict[Algorithm, type[StepAlgorithm]]] = {
    Algorithm.fire: Fire,
    Algorithm.lbfgs: LBFGS,
}


def get_step_algorithm(algorithm: Algorithm | str) -> type[StepAlgorithm]:
    """Look up the step algorithm class for ``algorithm``.

    Raises:
        ConfigurationError: If ``algorithm`` names no registered algorithm.
    """
    try:
        return OPTIM_REGISTRY[Algorithm(algorithm)]
    except ValueError as exc:
        raise ConfigurationError(
            f"Unknown algorithm {algorithm!r}, "
            f"expected one of {[a.value for a in Algorithm]}"
        ) from exc


__all__ = [
    "LBFGS",
    "LINESEARCH_GTOL",
    "OPTIM_REGISTRY",
    "Fire",
    "FireState",
    "LBFGSState",
    "OptimState",
    "StepAlgorithm",
    "get_step_algorithm",
]
