"""
The Enzyme Field: Cells
=======================
Genome, per-tick metabolism, death and division.

Per-tick order inside Cell.step:
  1. every enzyme in genome order gets one reaction attempt against the tile
     pool plus the cell's own pool
  2. products kept or secreted, byproducts scattered, heat applied
  3. opportunistic uptake of one tile molecule when the internal pool is thin
  4. energy credit / starvation clock / maintenance
  5. thermal stress onto the starvation clock
  6. division once energy reaches the threshold
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np

from field_chemistry import (
    ELEMENT_SYMBOLS, N_ELEMENTS, element_index, total_counts,
)
from field_enzymes import ENZYME_CLASSES, attempt_reaction, change_kind, make_enzyme


ACTIVE = "active"
DEAD = "dead"

REACTION_LOG_MAX = 40
MAX_ENZYMES = 6
STRESS_EXPONENT = 1.6

REPRO_THRESHOLD_FLOOR = 0.01
DECAY_TIME_FLOOR = 50.0
TEMP_STRESS_FLOOR = 0.001


# ─────────────────────────────────────────────────────
# Genome
# ─────────────────────────────────────────────────────

@dataclass
class Genome:
    enzymes: list = field(default_factory=list)
    repro_threshold: float = 10.0
    initial_energy: float = 5.0
    decay_time: float = 1000.0
    default_secretion_prob: float = 0.15
    mutation_rate: float = 0.05
    post_divide_mortality: float = 0.0
    desired_element_reserve: int = 2
    temp_stress_factor: float = 0.02
    optimal_temp: Optional[float] = None
    lineage_id: Optional[int] = None

    def copy(self):
        return copy.deepcopy(self)

    def cell_optimal_temp(self):
        """optimal_temp, or the mean enzyme optimum when it is unset."""
        if self.optimal_temp is not None:
            return self.optimal_temp
        if self.enzymes:
            return float(np.mean([en.t_opt for en in self.enzymes]))
        return 0.5


def _clamp01(v):
    return min(1.0, max(0.0, v))


def _jitter(rng, spread):
    return (rng.random() - 0.5) * spread


def mutate_genome(genome, rng):
    """Deep copy of ``genome`` with heritable noise applied. The parent is untouched."""
    g = genome.copy()
    mut = g.mutation_rate
    g.optimal_temp = g.cell_optimal_temp()

    if rng.random() < mut:
        g.repro_threshold = g.repro_threshold * (1.0 + _jitter(rng, 0.2))
    if rng.random() < mut:
        g.decay_time = float(round(g.decay_time * (1.0 + _jitter(rng, 0.2))))
    if rng.random() < mut:
        g.default_secretion_prob = _clamp01(g.default_secretion_prob + _jitter(rng, 0.2))
    if rng.random() < mut * 0.5:
        g.temp_stress_factor = max(TEMP_STRESS_FLOOR,
                                   g.temp_stress_factor * (1.0 + _jitter(rng, 0.3)))
    if rng.random() < mut:
        g.optimal_temp = _clamp01(g.optimal_temp + _jitter(rng, 0.2))

    kinds = list(ENZYME_CLASSES)
    enzymes = []
    for en in g.enzymes:
        if rng.random() < mut:
            aff = en.affinity.copy()
            aff[int(rng.integers(N_ELEMENTS))] += rng.random()
            en = replace(en, affinity=aff)
            if rng.random() < 0.2:
                en = change_kind(en, kinds[int(rng.integers(len(kinds)))])
            if rng.random() < 0.5:
                en = replace(en, ph_opt=_clamp01(en.ph_opt + _jitter(rng, 0.2)))
            if rng.random() < 0.5:
                base = en.secretion_prob if en.secretion_prob is not None else 0.5
                en = replace(en, secretion_prob=_clamp01(base + _jitter(rng, 0.2)))
        enzymes.append(en)

    if enzymes and rng.random() < mut * 0.3:
        enzymes.pop(int(rng.integers(len(enzymes))))
    elif len(enzymes) < MAX_ENZYMES and rng.random() < mut * 0.3:
        affinity = {s: rng.random() for s in ELEMENT_SYMBOLS[:4]}
        enzymes.append(make_enzyme(kinds[int(rng.integers(len(kinds)))], affinity=affinity,
                                   ph_opt=rng.random(), secretion_prob=rng.random()))

    g.enzymes = [replace(en, t_opt=g.optimal_temp) for en in enzymes]
    g.repro_threshold = max(REPRO_THRESHOLD_FLOOR, g.repro_threshold)
    g.decay_time = max(DECAY_TIME_FLOOR, g.decay_time)
    return g


# ─────────────────────────────────────────────────────
# Cell
# ─────────────────────────────────────────────────────

class Cell:
    def __init__(self, genome, rng=None, sim_time=0.0):
        self.genome = genome
        self.energy = max(0.0, float(genome.initial_energy))
        self.molecules = []
        self.time_without_food = 0.0
        self.state = ACTIVE
        if genome.lineage_id is not None:
            self.lineage_id = genome.lineage_id
        elif rng is not None:
            self.lineage_id = int(rng.integers(1_000_000_000))
        else:
            self.lineage_id = 0
        self.birth_sim_time = sim_time
        self.death_sim_time = None
        self.born_tick = None
        self.reaction_log = []

    @property
    def alive(self):
        return self.state == ACTIVE

    # ── Inspection ──

    def total_internal_atoms(self):
        return sum(m.size for m in self.molecules)

    def internal_counts(self):
        return total_counts(self.molecules)

    def count_internal_element(self, element):
        return int(self.internal_counts()[element_index(element)])

    def dominant_element(self):
        counts = self.internal_counts()
        if not counts.any():
            return None
        return ELEMENT_SYMBOLS[int(np.argmax(counts))]

    def age(self, sim_time):
        end = self.death_sim_time if self.death_sim_time is not None else sim_time
        return end - self.birth_sim_time

    # ── Metabolism ──

    def step(self, env, tile, rng):
        if self.state != ACTIVE:
            return
        world = tile.world
        cfg = world.cfg

        gained = 0.0
        for enzyme in self.genome.enzymes:
            pool = tile.molecules + self.molecules
            outcome = attempt_reaction(enzyme, pool, env, self, tile, rng)
            if outcome is None:
                continue
            gained += outcome.energy_delta
            t_before = tile.temperature

            self.consume_substrates(outcome.consumed, tile)

            product = outcome.produced
            if product is not None and product.size > 0:
                if outcome.retain_product or not self.should_secrete(product, enzyme, rng):
                    self.molecules.append(product)
                else:
                    world.add_product_around(tile.x, tile.y, product)
            for bp in outcome.byproducts:
                if bp.size > 0:
                    world.add_product_around(tile.x, tile.y, bp)

            if abs(outcome.heat_delta) > 1e-12:
                world.apply_heat(tile.x, tile.y, outcome.heat_delta)

            self._push_log(enzyme, outcome, tile.temperature - t_before, env.sim_time)

        if self.total_internal_atoms() < 2 * self.genome.desired_element_reserve and tile.molecules:
            taken = tile.molecules.pop(int(rng.integers(len(tile.molecules))))
            self.molecules.append(taken)

        if gained > 0:
            self.energy += gained
            self.time_without_food = 0.0
        else:
            self.time_without_food += env.dt

        maint = cfg.maintenance_cost_per_sec * env.dt / 1000.0
        if maint > 0:
            self.energy -= maint
        if self.energy <= 0:
            self.energy = 0.0
            self.die(tile, env.sim_time)
            return

        n_enzymes = len(self.genome.enzymes)
        dist = abs(tile.temperature - self.genome.cell_optimal_temp())
        self.time_without_food += dist ** STRESS_EXPONENT * self.genome.temp_stress_factor * n_enzymes
        if self.time_without_food > self.genome.decay_time:
            self.die(tile, env.sim_time)
            return

        if self.energy >= self.genome.repro_threshold:
            self.divide(tile, rng, env.sim_time)

    def should_secrete(self, product, enzyme, rng):
        """Secrete only once the cell holds its reserve of every element in the product."""
        reserve = self.genome.desired_element_reserve
        have = self.internal_counts()
        present = product.counts > 0
        if np.any(have[present] < reserve):
            return False
        prob = enzyme.secretion_prob
        if prob is None:
            prob = self.genome.default_secretion_prob
        return rng.random() < prob

    def consume_substrates(self, substrates, tile):
        for sub in substrates:
            if not _remove_identity(tile.molecules, sub):
                _remove_identity(self.molecules, sub)

    def _push_log(self, enzyme, outcome, delta_t, sim_time):
        entry = {
            "time_sim": round(sim_time, 4),
            "age_at_event": round(sim_time - self.birth_sim_time, 4),
            "enzyme_type": enzyme.kind,
            "delta_t": round(delta_t, 6),
        }
        entry.update(outcome.summary())
        self.reaction_log.insert(0, entry)
        del self.reaction_log[REACTION_LOG_MAX:]

    # ── Lifecycle ──

    def die(self, tile, sim_time):
        if self.state == DEAD:
            return
        tile.molecules.extend(self.molecules)
        self.molecules = []
        self.death_sim_time = sim_time
        self.state = DEAD

    def divide(self, tile, rng, sim_time):
        """Split into parent + child. Returns the child, or None when there is no room."""
        world = tile.world
        child_genome = mutate_genome(self.genome, rng)

        child_energy = self.energy * (0.5 + _jitter(rng, 0.1))
        self.energy -= child_energy

        to_child = rng.random(len(self.molecules)) < 0.5
        child_molecules = [m for m, k in zip(self.molecules, to_child) if k]
        self.molecules = [m for m, k in zip(self.molecules, to_child) if not k]

        spot = world.find_free_tile(tile.x, tile.y, world.cfg.division_search_radius)
        if spot is None:
            self.energy += child_energy
            self.molecules.extend(child_molecules)
            return None

        child_genome.lineage_id = self.lineage_id
        child = Cell(child_genome, sim_time=sim_time)
        child.energy = child_energy
        child.molecules = child_molecules
        child.born_tick = world.timestep
        world.tile(*spot).cells.append(child)
        world.births += 1

        if rng.random() < self.genome.post_divide_mortality:
            self.die(tile, sim_time)
        return child

    def to_dict(self, sim_time=0.0, log_entries=REACTION_LOG_MAX):
        return {
            "lineage": int(self.lineage_id),
            "state": self.state,
            "energy": round(float(self.energy), 3),
            "age": round(float(self.age(sim_time)), 3),
            "enzymes": [en.kind for en in self.genome.enzymes],
            "dominant_element": self.dominant_element(),
            "internal_atoms": self.total_internal_atoms(),
            "reaction_log": self.reaction_log[:log_entries],
        }


def _remove_identity(items, target):
    for i, m in enumerate(items):
        if m is target:
            del items[i]
            return True
    return False
