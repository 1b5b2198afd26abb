"""Cluster Relaxation Examples - L-BFGS and FIRE on Lennard-Jones clusters.

This script demonstrates geometry optimization with:
- The high level optimize() function and a trajectory checkpoint
- Manual iteration over the lazy optimization sequence
- Frozen atoms through ASE FixAtoms constraints
- Velocity Verlet dynamics on the cached potential
"""

import itertools
import os
import tempfile
from pathlib import Path

import torch
from ase.cluster import Icosahedron
from ase.constraints import FixAtoms

import torch_relax as tr


# Number of steps to run
SMOKE_TEST = os.getenv("CI") is not None
N_steps = 10 if SMOKE_TEST else 500

# Nearest neighbour distance of the pair minimum in reduced units
r_min = 2 ** (1 / 6)

model = tr.LennardJonesModel(sigma=1.0, epsilon=1.0)


def rattled_cluster(seed: int):
    atoms = Icosahedron("Ar", noshells=2, latticeconstant=r_min * 2**0.5)
    atoms.center()
    atoms.rattle(stdev=0.1, seed=seed)
    return atoms


# ============================================================================
# SECTION 1: High level optimization with checkpointing
# ============================================================================
print("\n" + "=" * 70)
print("SECTION 1: High level optimization with checkpointing")
print("=" * 70)

for algorithm in tr.Algorithm:
    atoms = rattled_cluster(seed=42)
    with tempfile.TemporaryDirectory() as tmp_dir:
        checkpoint = tr.TrajectoryCheckpoint(Path(tmp_dir) / "lj13.extxyz")
        optimized = tr.optimize(
            atoms,
            model,
            nmax=N_steps,
            fmax=1e-3,
            config=tr.OptimConfig(algorithm=algorithm),
            checkpoint=checkpoint,
        )
    print(
        f"{algorithm.value:>6}: {optimized.niter} steps, "
        f"E = {optimized.computed.energy:.6f}, fmax = {optimized.fmax:.2e}, "
        f"converged = {optimized.converged}"
    )


# ============================================================================
# SECTION 2: Manual iteration with frozen atoms
# ============================================================================
print("\n" + "=" * 70)
print("SECTION 2: Manual iteration with frozen atoms")
print("=" * 70)

atoms = rattled_cluster(seed=7)
atoms.set_constraint(FixAtoms(indices=[0]))
center = atoms.positions[0].copy()

steps = tr.optimize_geometry_iter(atoms, model, tr.OptimConfig(max_step_size=0.05))
for progress in itertools.islice(steps, N_steps):
    if progress.ncalls % 10 == 0:
        print(
            f"call {progress.ncalls:4d}: E = {progress.energy:.6f}, "
            f"fmax = {progress.fmax:.2e}"
        )
    if progress.fmax < 1e-3:
        break
steps.close()
print(f"Central atom moved by {abs(atoms.positions[0] - center).max():.1e}")


# ============================================================================
# SECTION 3: Dynamics on the cached potential
# ============================================================================
print("\n" + "=" * 70)
print("SECTION 3: Dynamics on the cached potential")
print("=" * 70)

atoms = rattled_cluster(seed=3)
evaluator = tr.MoleculeEvaluator(atoms, model)
dynamics = tr.Dynamics(evaluator.positions, evaluator)
md = tr.MoleculeDynamics(dynamics, torch.ones(len(atoms), dtype=torch.float64))

e_start = md.total_energy()
for _ in range(N_steps):
    md.propagate(0.002)
print(
    f"Total energy drift after {N_steps} steps: {md.total_energy() - e_start:.2e} "
    f"({dynamics.ncalls} evaluations)"
)
