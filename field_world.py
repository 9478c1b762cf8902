"""
The Enzyme Field: World
=======================
Toroidal tile grid, diffusion of molecules and scalar fields, and the
per-tick schedule of every resident cell.

Tick order:
  1. molecule hopping (draws for every molecule, relocations applied after the scan)
  2. temperature / solute blend with the Moore-9 mean (toroidal), clamped
  3. cells, tile by tile in x-major order, each against a snapshot of its
     occupant list; dead cells pruned as each tile finishes

Temperature and solute are held as (width, height) numpy arrays; a Tile is a
view onto its own entry plus its molecule pool and occupant list.
"""

import json
import os

import numpy as np
from scipy.ndimage import uniform_filter

from field_cells import ACTIVE, DEAD, Cell, Genome
from field_chemistry import create_molecule
from field_enzymes import Environment


# ─────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────

class Config:
    width = 64
    height = 64
    dt = 10.0                         # ms per tick

    # Scalar fields
    temperature_range = (0.0, 5.0)
    solute_range = (0.0, 1.0)
    temperature_initial = 0.5
    solute_initial = 0.5
    field_initial_jitter = 0.1        # +/- half of this around the initial value
    field_diffusion_alpha = 0.1

    # Molecule hopping: min(cap, base + polarity / (size + 1) * scale)
    hop_base = 0.0
    hop_scale = 1.0
    hop_cap = 0.2

    # Secretion and heat
    heat_neighbor_fraction = 0.18
    solute_nudge = 0.01
    product_clones_min = 1
    product_clones_max = 3

    # Tile seeding
    seed_molecules = ({"A": 2}, {"B": 1}, {"A": 1, "B": 1})
    seed_strained = {"A": 2, "D": 1}
    seed_strained_bond = 1.3
    seed_strained_prob = 0.1

    # Cells
    maintenance_cost_per_sec = 0.05
    division_search_radius = 2

    # Population (used by field_run)
    initial_population = 40
    spawn_probability = 0.05
    carrying_capacity = 600

    # Simulation
    total_timesteps = 2000
    snapshot_interval = 100
    output_dir = "output_field"
    random_seed = 42


def hop_probability(molecule, base, scale, cap):
    return min(cap, base + (1.0 / (molecule.size + 1)) * molecule.polarity * scale)


# ─────────────────────────────────────────────────────
# Tile
# ─────────────────────────────────────────────────────

class Tile:
    __slots__ = ("world", "x", "y", "molecules", "cells")

    def __init__(self, world, x, y):
        self.world = world
        self.x = x
        self.y = y
        self.molecules = []
        self.cells = []

    @property
    def temperature(self):
        return float(self.world.temperature[self.x, self.y])

    @temperature.setter
    def temperature(self, value):
        lo, hi = self.world.cfg.temperature_range
        self.world.temperature[self.x, self.y] = min(hi, max(lo, value))

    @property
    def solute(self):
        return float(self.world.solute[self.x, self.y])

    @solute.setter
    def solute(self, value):
        lo, hi = self.world.cfg.solute_range
        self.world.solute[self.x, self.y] = min(hi, max(lo, value))

    def topmost(self):
        return self.cells[-1] if self.cells else None

    def environment(self, dt, sim_time):
        return Environment(temperature=self.temperature, ph=self.solute, dt=dt, sim_time=sim_time)


# ─────────────────────────────────────────────────────
# World
# ─────────────────────────────────────────────────────

AXIAL = ((1, 0), (-1, 0), (0, 1), (0, -1))


class World:
    def __init__(self, width=None, height=None, cfg=None):
        self.cfg = cfg or Config()
        c = self.cfg
        self.width = int(width or c.width)
        self.height = int(height or c.height)
        self.dt = c.dt
        self.rng = np.random.default_rng(c.random_seed)
        self.timestep = 0
        self.births = 0
        self.deaths = 0
        self.spawned = 0
        W, H = self.width, self.height

        # ── Scalar fields ──
        j = c.field_initial_jitter
        self.temperature = c.temperature_initial + (self.rng.random((W, H)) - 0.5) * j
        self.solute = c.solute_initial + (self.rng.random((W, H)) - 0.5) * j
        np.clip(self.temperature, *c.temperature_range, out=self.temperature)
        np.clip(self.solute, *c.solute_range, out=self.solute)

        # ── Tiles ──
        self.grid = [[Tile(self, x, y) for y in range(H)] for x in range(W)]
        for tile in self.tiles():
            tile.molecules = self._seed_molecules()

        self.stats_history = []

    def _seed_molecules(self):
        c = self.cfg
        pool = [create_molecule(comp) for comp in c.seed_molecules]
        if self.rng.random() < c.seed_strained_prob:
            pool.append(create_molecule(c.seed_strained, c.seed_strained_bond))
        return [m for m in pool if m.size > 0]

    # ── Coordinates ──

    def wrap(self, x, y):
        return int(x) % self.width, int(y) % self.height

    def tile(self, x, y):
        x, y = self.wrap(x, y)
        return self.grid[x][y]

    def tiles(self):
        for column in self.grid:
            yield from column

    def moore_neighbors(self, x, y, include_center=False):
        out = []
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                if dx == 0 and dy == 0 and not include_center:
                    continue
                out.append(self.wrap(x + dx, y + dy))
        return out

    def random_neighbor(self, x, y):
        dx, dy = AXIAL[int(self.rng.integers(4))]
        return self.wrap(x + dx, y + dy)

    def find_free_tile(self, x, y, radius):
        """Nearest unoccupied tile in expanding rings around (x, y), or None."""
        for r in range(1, int(radius) + 1):
            ring = [(dx, dy) for dx in range(-r, r + 1) for dy in range(-r, r + 1)
                    if max(abs(dx), abs(dy)) == r]
            for i in self.rng.permutation(len(ring)):
                px, py = self.wrap(x + ring[i][0], y + ring[i][1])
                if not self.grid[px][py].cells:
                    return px, py
        return None

    # ── Population ──

    def cells(self):
        for tile in self.tiles():
            yield from tile.cells

    @property
    def pop(self):
        return sum(len(tile.cells) for tile in self.tiles())

    def spawn_random_cell(self, genome_factory, sim_time=0.0):
        genome = genome_factory(self.rng)
        if not isinstance(genome, Genome):
            raise TypeError(f"genome factory returned {type(genome).__name__}, expected Genome")
        x = int(self.rng.integers(self.width))
        y = int(self.rng.integers(self.height))
        cell = Cell(genome, rng=self.rng, sim_time=sim_time)
        self.grid[x][y].cells.append(cell)
        self.spawned += 1
        return cell

    # ── Environment writes from cells ──

    def add_product_around(self, x, y, product):
        """Scatter 1-3 copies of ``product`` over the Moore neighbourhood, centre included."""
        c = self.cfg
        if product.size == 0:
            return
        spots = self.moore_neighbors(x, y, include_center=True)
        n = int(self.rng.integers(c.product_clones_min, c.product_clones_max + 1))
        for _ in range(n):
            px, py = spots[int(self.rng.integers(len(spots)))]
            tile = self.grid[px][py]
            tile.molecules.append(product.copy())
            tile.solute = tile.solute + c.solute_nudge

    def apply_heat(self, x, y, heat):
        x, y = self.wrap(x, y)
        self.grid[x][y].temperature = self.temperature[x, y] + heat
        spill = heat * self.cfg.heat_neighbor_fraction
        for nx, ny in self.moore_neighbors(x, y):
            self.grid[nx][ny].temperature = self.temperature[nx, ny] + spill

    # ── Diffusion ──

    def _diffuse_molecules(self):
        c = self.cfg
        flat = [(tile, m) for tile in self.tiles() for m in tile.molecules]
        if not flat:
            return
        rates = np.fromiter((hop_probability(m, c.hop_base, c.hop_scale, c.hop_cap)
                             for _, m in flat), dtype=np.float64, count=len(flat))
        hops = self.rng.random(len(flat)) < rates
        dirs = self.rng.integers(0, 4, len(flat))

        staying = {}
        arrivals = {}
        for (tile, m), hop, d in zip(flat, hops, dirs):
            key = (tile.x, tile.y)
            if hop:
                dx, dy = AXIAL[d]
                arrivals.setdefault(self.wrap(tile.x + dx, tile.y + dy), []).append(m)
            else:
                staying.setdefault(key, []).append(m)

        for tile in self.tiles():
            key = (tile.x, tile.y)
            tile.molecules = staying.get(key, []) + arrivals.get(key, [])

    def _diffuse_fields(self):
        c = self.cfg
        a = c.field_diffusion_alpha
        for name, (lo, hi) in (("temperature", c.temperature_range),
                               ("solute", c.solute_range)):
            f = getattr(self, name)
            mean9 = uniform_filter(f, size=3, mode="wrap")
            setattr(self, name, np.clip((1.0 - a) * f + a * mean9, lo, hi))

    # ── Main loop ──

    def step(self, sim_time=0.0):
        self._diffuse_molecules()
        self._diffuse_fields()

        for x in range(self.width):
            for y in range(self.height):
                tile = self.grid[x][y]
                if not tile.cells:
                    continue
                env = tile.environment(self.dt, sim_time)
                for cell in list(tile.cells):
                    if cell.born_tick == self.timestep:
                        continue
                    cell.step(env, tile, self.rng)
                alive = [cell for cell in tile.cells if cell.state != DEAD]
                self.deaths += len(tile.cells) - len(alive)
                tile.cells = alive

        self.timestep += 1
        self._record_stats(sim_time)

    # ── Stats ──

    def _record_stats(self, sim_time):
        cells = [cell for cell in self.cells() if cell.state == ACTIVE]
        n_mol = sum(len(tile.molecules) for tile in self.tiles())
        row = {
            "t": self.timestep,
            "sim_time": round(sim_time, 4),
            "pop": len(cells),
            "lineages": len({cell.lineage_id for cell in cells}),
            "avg_energy": round(float(np.mean([cell.energy for cell in cells])), 3) if cells else 0,
            "avg_enzymes": round(float(np.mean([len(cell.genome.enzymes) for cell in cells])), 2) if cells else 0,
            "molecules": n_mol,
            "temp_mean": round(float(self.temperature.mean()), 4),
            "temp_max": round(float(self.temperature.max()), 4),
            "solute_mean": round(float(self.solute.mean()), 4),
            "births": self.births,
            "deaths": self.deaths,
            "spawned": self.spawned,
        }
        self.stats_history.append(row)
        return row

    def snapshot(self, sim_time=0.0, max_cells=500):
        cells = list(self.cells())
        if len(cells) > max_cells:
            idx = self.rng.choice(len(cells), max_cells, replace=False)
        else:
            idx = np.arange(len(cells))
        sampled = [cells[i] for i in idx]
        s = self.stats_history[-1] if self.stats_history else {}
        return {
            "timestep": self.timestep,
            "sim_time": round(sim_time, 4),
            "population": len(cells),
            "sampled": len(sampled),
            "cells": [cell.to_dict(sim_time, log_entries=5) for cell in sampled],
            "stats": s,
        }

    def save_snapshot(self, output_dir, sim_time=0.0):
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, f"snapshot_{self.timestep:06d}.json")
        with open(path, 'w') as f:
            json.dump(self.snapshot(sim_time), f)
        return path
