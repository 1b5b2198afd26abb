"""Potential evaluation cache.

:class:`Dynamics` owns the current coordinates of an optimization problem and
memoizes the energy and forces computed there, so an expensive potential is
evaluated at most once per distinct position. Position updates smaller than
``epsilon`` are ignored, and every accepted update snapshots the previous
state, which gives callers a one-step undo through :meth:`Dynamics.revert`.

Example::

    def evaluate(x):
        return (x**2).sum().item(), -2 * x

    pot = Dynamics(torch.zeros(2, dtype=torch.float64), evaluate)
    pot.get_energy()  # evaluates, pot.ncalls == 1
    pot.step_toward(torch.tensor([1.0, 2.0], dtype=torch.float64))
    pot.get_energy()  # 5.0, pot.ncalls == 2
    pot.revert()  # back at the origin, cached values restored
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import torch

from torch_relax.errors import UsageError


if TYPE_CHECKING:
    from torch_relax.typing import Evaluator


logger = logging.getLogger(__name__)

DTYPE = torch.float64


@dataclass
class State:
    """Coordinates together with the values evaluated there.

    ``energy``, ``force`` and ``extra`` are filled by a single evaluation and
    are either all set or all unset (``extra`` may legitimately be None).

    Attributes:
        position: Flat coordinate vector, shape [N]
        energy: Potential energy at ``position``
        force: Flat force vector at ``position``, shape [N]
        extra: Opaque payload returned by the evaluator
    """

    position: torch.Tensor
    energy: float | None = None
    force: torch.Tensor | None = None
    extra: Any = None

    @property
    def evaluated(self) -> bool:
        """Whether energy and force are cached."""
        return self.energy is not None


def as_vector(values: Any) -> torch.Tensor:
    """Copy ``values`` into a flat float64 tensor."""
    return torch.as_tensor(values, dtype=DTYPE).detach().clone().reshape(-1)


class Dynamics:
    """Cache around a potential evaluator for one optimization run.

    Args:
        position: Initial coordinates, flattened to shape [N]
        evaluator: Callable mapping positions [N] to ``(energy, forces)`` or
            ``(energy, forces, extra)``. It is owned by the cache for the
            duration of the run.
        epsilon: Displacement norm at or below which position updates are
            treated as numerical noise and ignored.
    """

    def __init__(
        self, position: torch.Tensor, evaluator: Evaluator, *, epsilon: float = 1e-8
    ) -> None:
        if not epsilon > 0:
            raise UsageError(f"epsilon must be positive, got {epsilon}")
        self._evaluator = evaluator
        self._state = State(position=as_vector(position))
        self._last: State | None = None
        self.epsilon = epsilon
        self._ncalls = 0

    @property
    def ncalls(self) -> int:
        """Number of evaluator calls since construction or the last recount."""
        return self._ncalls

    def recount(self) -> None:
        """Reset the evaluation counter, keeping cached values."""
        self._ncalls = 0

    @property
    def position(self) -> torch.Tensor:
        """Copy of the current position. Never triggers an evaluation."""
        return self._state.position.clone()

    @property
    def n_dim(self) -> int:
        """Length N of the coordinate vector."""
        return self._state.position.numel()

    def _evaluate(self) -> State:
        state = self._state
        if state.evaluated:
            return state

        output = self._evaluator(state.position.clone())
        energy, force, *rest = output
        force = as_vector(force)
        if force.numel() != state.position.numel():
            raise UsageError(
                f"Evaluator returned {force.numel()} force components "
                f"for {state.position.numel()} coordinates"
            )
        self._state = replace(
            state, energy=float(energy), force=force, extra=rest[0] if rest else None
        )
        self._ncalls += 1
        logger.debug("Evaluated potential (call %d): energy=%s", self._ncalls, energy)
        return self._state

    def get_energy(self) -> float:
        """Energy at the current position, evaluated if not cached."""
        return self._evaluate().energy

    def get_force(self) -> torch.Tensor:
        """Copy of the forces at the current position, evaluated if not cached."""
        return self._evaluate().force.clone()

    def get_extra(self) -> Any:
        """Evaluator payload at the current position, evaluated if not cached."""
        return self._evaluate().extra

    def get_last_energy(self) -> float | None:
        """Energy of the snapshot taken before the last position update."""
        return None if self._last is None else self._last.energy

    def get_last_force(self) -> torch.Tensor | None:
        """Forces of the snapshot taken before the last position update."""
        if self._last is None or self._last.force is None:
            return None
        return self._last.force.clone()

    @property
    def last_position(self) -> torch.Tensor | None:
        """Position of the snapshot taken before the last position update."""
        return None if self._last is None else self._last.position.clone()

    def _check_length(self, vector: torch.Tensor, what: str) -> None:
        if vector.numel() != self.n_dim:
            raise UsageError(f"{what} has length {vector.numel()}, expected {self.n_dim}")

    def _move_to(self, new_position: torch.Tensor, displacement_norm: float) -> bool:
        if not displacement_norm > self.epsilon:
            return False
        self._last = self._state
        self._state = State(position=new_position)
        return True

    def step_toward(self, displacement: torch.Tensor) -> bool:
        """Move by ``displacement`` (x += d).

        Returns:
            True if the position changed, False if the displacement norm did not
            exceed ``epsilon`` and the update was ignored.
        """
        displacement = as_vector(displacement)
        self._check_length(displacement, "displacement")
        norm = torch.linalg.vector_norm(displacement).item()
        return self._move_to(self._state.position + displacement, norm)

    def set_position(self, new_position: torch.Tensor) -> bool:
        """Move to ``new_position``.

        Returns:
            True if the position changed, False if it is within ``epsilon`` of
            the current one and the update was ignored.

        Raises:
            UsageError: If the length of ``new_position`` differs from the
                current position.
        """
        new_position = as_vector(new_position)
        self._check_length(new_position, "new position")
        norm = torch.linalg.vector_norm(new_position - self._state.position).item()
        return self._move_to(new_position, norm)

    def revert(self) -> None:
        """Go back to the state before the last position update.

        Only one level of undo is kept. Without a snapshot this is a no-op.
        """
        if self._last is not None:
            self._state = self._last
