"""
The Enzyme Field: Headless Run
==============================
Genome factory, spawn throttling and the fixed-step run loop.

Usage:
  python field_run.py                    # Config defaults
  python field_run.py -n 500 --size 32   # short run on a small grid
  python field_run.py --seed 7 --out output_seed7
"""

import argparse
import json
import os
import time

from field_cells import Genome
from field_enzymes import ENZYME_CLASSES, make_enzyme
from field_world import Config, World


# ─────────────────────────────────────────────────────
# Genome factory
# ─────────────────────────────────────────────────────

STARTER_KINDS = ("catabolase", "transportase", "anabolase", "hydrolase")


def random_genome(rng):
    """A fresh random genome: 1-3 enzymes, optima near the middle of the range."""
    optimal_temp = float(rng.uniform(0.3, 0.7))
    n_enzymes = int(rng.integers(1, 4))
    enzymes = []
    for i in range(n_enzymes):
        # first enzyme is always one that can earn energy
        kind = "catabolase" if i == 0 else STARTER_KINDS[int(rng.integers(len(STARTER_KINDS)))]
        picks = rng.choice(4, int(rng.integers(1, 3)), replace=False)
        affinity = {"ABCD"[p]: float(rng.random()) for p in picks}
        enzymes.append(make_enzyme(
            kind, affinity=affinity,
            t_opt=optimal_temp,
            ph_opt=float(rng.uniform(0.3, 0.7)),
            secretion_prob=float(rng.random()),
        ))
    return Genome(
        enzymes=enzymes,
        repro_threshold=float(rng.uniform(6.0, 12.0)),
        initial_energy=float(rng.uniform(3.0, 6.0)),
        decay_time=float(rng.uniform(1000.0, 3000.0)),
        default_secretion_prob=0.15,
        mutation_rate=0.05,
        post_divide_mortality=0.0,
        desired_element_reserve=2,
        temp_stress_factor=0.02,
        optimal_temp=optimal_temp,
    )


def spawn_chance(cfg, pop):
    """Spawn probability throttled linearly to zero at the carrying capacity."""
    if cfg.carrying_capacity <= 0:
        return 0.0
    return cfg.spawn_probability * max(0.0, 1.0 - pop / cfg.carrying_capacity)


# ─────────────────────────────────────────────────────
# Run
# ─────────────────────────────────────────────────────

def run_simulation(cfg=None, genome_factory=random_genome):
    cfg = cfg or Config()
    world = World(cfg=cfg)
    sim_time = 0.0

    for _ in range(cfg.initial_population):
        world.spawn_random_cell(genome_factory, sim_time)

    print(f"The Enzyme Field")
    print(f"Grid: {world.width}x{world.height}  |  Pop: {cfg.initial_population}  |  "
          f"dt: {cfg.dt:g} ms  |  Enzyme classes: {', '.join(ENZYME_CLASSES)}")
    print(f"{'─' * 110}")

    start = time.time()
    for _ in range(cfg.total_timesteps):
        if world.rng.random() < spawn_chance(cfg, world.pop):
            world.spawn_random_cell(genome_factory, sim_time)
        world.step(sim_time)
        sim_time += cfg.dt / 1000.0

        if world.timestep % cfg.snapshot_interval == 0:
            world.save_snapshot(cfg.output_dir, sim_time)
            s = world.stats_history[-1]
            el = time.time() - start
            print(
                f"  t={s['t']:5d}  |  pop={s['pop']:4d}  lin={s['lineages']:4d}  |  "
                f"e={s['avg_energy']:6.2f}  enz={s['avg_enzymes']:.2f}  |  "
                f"mol={s['molecules']:6d}  |  T={s['temp_mean']:.3f}/{s['temp_max']:.2f}  "
                f"sol={s['solute_mean']:.3f}  |  born={s['births']:5d} died={s['deaths']:5d}  |  {el:.1f}s"
            )

        if world.pop == 0 and cfg.spawn_probability <= 0:
            print(f"\n  *** EXTINCTION at t={world.timestep} ***")
            break

    el = time.time() - start
    print(f"{'─' * 110}")
    print(f"Done in {el:.1f}s  |  Pop: {world.pop}  |  Births: {world.births}  Deaths: {world.deaths}  "
          f"Spawned: {world.spawned}")

    os.makedirs(cfg.output_dir, exist_ok=True)
    path = os.path.join(cfg.output_dir, "run_summary.json")
    with open(path, 'w') as f:
        json.dump({"config": config_dict(cfg), "stats_history": world.stats_history}, f, indent=2)
    print(f"Summary: {path}")
    return world


def config_dict(cfg):
    names = [k for k in dir(cfg) if not k.startswith('_')]
    return {k: getattr(cfg, k) for k in names if not callable(getattr(cfg, k))}


def seed_arg(text):
    """argparse type for --seed: an integer, or "none" for an unseeded run."""
    if text.lower() == "none":
        return None
    return int(text)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run The Enzyme Field headless")
    parser.add_argument("-n", "--steps", type=int, default=Config.total_timesteps,
                        help="ticks to run")
    parser.add_argument("--size", type=int, default=Config.width,
                        help="grid width and height")
    parser.add_argument("--seed", type=seed_arg, default=Config.random_seed,
                        help="random seed, or \"none\" for an unseeded run")
    parser.add_argument("--out", type=str, default=Config.output_dir,
                        help="output directory for snapshots and the run summary")
    args = parser.parse_args(argv)

    cfg = Config()
    cfg.total_timesteps = args.steps
    cfg.width = cfg.height = args.size
    cfg.random_seed = args.seed
    cfg.output_dir = args.out
    run_simulation(cfg)


if __name__ == "__main__":
    main()
