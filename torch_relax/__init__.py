"""TorchRelax: cached geometry optimization of molecular structures.

Typical use::

    import torch_relax as tr

    optimized = tr.optimize(atoms, tr.LennardJonesModel(), fmax=0.05)
"""

from torch_relax import errors, optimizers
from torch_relax.checkpoint import CheckpointStore, TrajectoryCheckpoint
from torch_relax.config import OptimConfig
from torch_relax.dynamics import MoleculeDynamics
from torch_relax.errors import (
    ConfigurationError,
    EvaluationError,
    OptimError,
    RestoreError,
    UsageError,
)
from torch_relax.evaluator import MoleculeEvaluator
from torch_relax.mask import CoordinateMask
from torch_relax.models import LennardJonesModel, ModelInterface, ModelProperties
from torch_relax.optimization import (
    OptimProgress,
    compute_fmax,
    optimize_geometry_iter,
    optimize_iter,
)
from torch_relax.optimizers import OPTIM_REGISTRY, get_step_algorithm
from torch_relax.potential import Dynamics, State
from torch_relax.runners import Optimized, Optimizer, optimize
from torch_relax.typing import Algorithm


__version__ = "0.1.0"
