"""
The Enzyme Field: Reaction Engine
=================================
Enzyme catalysis on top of field_chemistry.

Enzyme kinds:
  - ANABOLASE:    joins 2 substrates, locks energy into bonds (bond_multiplier > 1).
                  The cell pays the stored energy plus the enzyme cost up front.
  - CATABOLASE:   breaks one substrate, releases stored bond energy, may transmute
                  a hot atom into inert X, fragments what is left.
  - TRANSPORTASE: pulls nutrient atoms out of the tile pool into the cell.
  - anything else in the class table (ligase, hydrolase, isomerase) runs the
    generic routine: random majority/minority split of the combined atoms.

Energy settlement is the same for every kind:
    raw = substrate_energy - product_energy - enzyme_cost
    raw >= 0  ->  cell gets harvest * raw, tile gets the rest as heat
    raw <  0  ->  cell pays -raw up front, tile gives up the stored bond energy
"""

import math
from collections import namedtuple
from dataclasses import dataclass, field, fields

import numpy as np

from field_chemistry import (
    HOT_ELEMENTS, INERT_ELEMENT, N_ELEMENTS, NUTRIENT_ELEMENTS,
    Molecule, composition_to_string, element_index, element_mask,
    split_atoms, take_atoms, total_counts, total_energy,
)


# ─────────────────────────────────────────────────────
# Class table
# ─────────────────────────────────────────────────────

EnzymeClass = namedtuple("EnzymeClass", ["max_inputs", "base_rate", "energy_cost"])

ENZYME_CLASSES = {
    "anabolase":    EnzymeClass(max_inputs=2, base_rate=0.6,  energy_cost=0.2),
    "catabolase":   EnzymeClass(max_inputs=1, base_rate=0.85, energy_cost=0.05),
    "transportase": EnzymeClass(max_inputs=1, base_rate=0.7,  energy_cost=0.02),
    "ligase":       EnzymeClass(max_inputs=3, base_rate=0.6,  energy_cost=1.0),
    "hydrolase":    EnzymeClass(max_inputs=1, base_rate=0.8,  energy_cost=0.2),
    "isomerase":    EnzymeClass(max_inputs=1, base_rate=0.9,  energy_cost=0.1),
}

RATE_BOOST = 1.2
DEFAULT_T_SIGMA = 0.18
DEFAULT_HARVEST = 0.85
NOISE_THRESHOLD = 0.01  # |raw| below this with unchanged atoms is a relabel, not a reaction


# ─────────────────────────────────────────────────────
# Enzyme variants
# ─────────────────────────────────────────────────────

def _zero_affinity():
    return np.zeros(N_ELEMENTS)


@dataclass(frozen=True, eq=False)
class Enzyme:
    affinity: np.ndarray = field(default_factory=_zero_affinity)
    t_opt: float = 0.5
    ph_opt: float = 0.5
    t_sigma: float = DEFAULT_T_SIGMA
    secretion_prob: float = None

    KIND = ""

    @property
    def kind(self):
        return self.KIND

    def accepts(self, molecule):
        if molecule.size == 0:
            return False
        if not np.any(self.affinity > 0):
            return True
        return molecule.has_any(self.affinity > 0)

    def is_well_formed(self):
        aff = np.asarray(self.affinity, dtype=np.float64)
        if aff.shape != (N_ELEMENTS,) or not np.all(np.isfinite(aff)):
            return False
        for f in fields(self):
            if f.name == "affinity":
                continue
            value = getattr(self, f.name)
            if f.name == "secretion_prob" and value is None:
                continue
            if isinstance(value, str):
                continue
            if not isinstance(value, (int, float, np.floating, np.integer)) or not math.isfinite(value):
                return False
        return True


@dataclass(frozen=True, eq=False)
class Anabolase(Enzyme):
    bond_multiplier: float = 1.3

    KIND = "anabolase"


@dataclass(frozen=True, eq=False)
class Catabolase(Enzyme):
    transmute_prob: float = 0.1
    harvest_fraction: float = DEFAULT_HARVEST

    KIND = "catabolase"

    def accepts(self, molecule):
        # strained molecules are always worth breaking
        if molecule.size > 1 and molecule.bond_multiplier > 1.0:
            return True
        return super().accepts(molecule)


@dataclass(frozen=True, eq=False)
class Transportase(Enzyme):
    transport_rate: int = 4
    active_cost_per_atom: float = 0.01

    KIND = "transportase"

    def nutrient_mask(self):
        if np.any(self.affinity > 0):
            return self.affinity > 0
        return element_mask(NUTRIENT_ELEMENTS)


@dataclass(frozen=True, eq=False)
class GenericEnzyme(Enzyme):
    type_name: str = "ligase"
    transmute_prob: float = 0.05
    harvest_fraction: float = DEFAULT_HARVEST
    majority_share: float = 0.7

    @property
    def kind(self):
        return self.type_name


SPECIALISED = {cls.KIND: cls for cls in (Anabolase, Catabolase, Transportase)}


def affinity_vector(affinity):
    if affinity is None:
        return _zero_affinity()
    if hasattr(affinity, "items"):
        vec = _zero_affinity()
        for key, w in affinity.items():
            vec[element_index(key)] += float(w)
        return vec
    return np.asarray(affinity, dtype=np.float64).copy()


def make_enzyme(kind, affinity=None, **params):
    """Build the variant for ``kind``; unknown kinds become a GenericEnzyme."""
    aff = affinity_vector(affinity)
    cls = SPECIALISED.get(kind)
    if cls is None:
        params["type_name"] = kind
        cls = GenericEnzyme
    allowed = {f.name for f in fields(cls)}
    return cls(affinity=aff, **{k: v for k, v in params.items() if k in allowed})


def change_kind(enzyme, kind):
    """Same enzyme (affinity, optima, secretion) re-expressed as another kind."""
    shared = dict(t_opt=enzyme.t_opt, ph_opt=enzyme.ph_opt,
                  t_sigma=enzyme.t_sigma, secretion_prob=enzyme.secretion_prob)
    return make_enzyme(kind, affinity=enzyme.affinity.copy(), **shared)


# ─────────────────────────────────────────────────────
# Reaction records
# ─────────────────────────────────────────────────────

@dataclass
class Environment:
    temperature: float = 0.5
    ph: float = 0.5
    dt: float = 10.0
    sim_time: float = 0.0


@dataclass
class ReactionOutcome:
    consumed: list
    produced: Molecule = None
    byproducts: list = field(default_factory=list)
    energy_delta: float = 0.0
    heat_delta: float = 0.0
    cost_paid: float = 0.0
    substrate_atom_energy: float = 0.0
    product_atom_energy: float = 0.0
    raw_delta: float = 0.0
    retain_product: bool = False
    transmuted: bool = False
    tile_edits: list = field(default_factory=list)

    def outputs(self):
        out = list(self.byproducts)
        if self.produced is not None:
            out.insert(0, self.produced)
        return out

    def summary(self):
        """Composition strings and rounded energy diagnostics, as logged by cells."""
        return {
            "substrates": [composition_to_string(m) for m in self.consumed],
            "product": composition_to_string(self.produced) if self.produced is not None else "-",
            "byproducts": [composition_to_string(m) for m in self.byproducts],
            "delta_e": round(self.energy_delta, 6),
            "heat_delta": round(self.heat_delta, 6),
            "substrate_atom_energy": round(self.substrate_atom_energy, 6),
            "product_atom_energy": round(self.product_atom_energy, 6),
            "raw_delta": round(self.raw_delta, 6),
        }


def _settle(outcome, enzyme_cost, harvest):
    """Fill raw/usable/heat/cost from the substrate and product energies."""
    gap = outcome.substrate_atom_energy - outcome.product_atom_energy
    raw = gap - enzyme_cost
    outcome.raw_delta = raw
    if raw >= 0:
        outcome.energy_delta = harvest * raw
        outcome.heat_delta = raw - outcome.energy_delta
        outcome.cost_paid = 0.0
    else:
        outcome.energy_delta = 0.0
        outcome.heat_delta = min(0.0, gap)
        outcome.cost_paid = -raw
    return outcome


# ─────────────────────────────────────────────────────
# Kinetics
# ─────────────────────────────────────────────────────

def temperature_factor(T, t_opt, sigma=DEFAULT_T_SIGMA):
    sigma = max(sigma, 1e-6)
    return math.exp(-((T - t_opt) ** 2) / (2.0 * sigma * sigma))


def ph_factor(ph, ph_opt):
    return math.exp(-abs(ph - ph_opt))


def catalytic_rate(enzyme, cls, env):
    return (min(1.0, cls.base_rate * RATE_BOOST)
            * temperature_factor(env.temperature, enzyme.t_opt, enzyme.t_sigma)
            * ph_factor(env.ph, enzyme.ph_opt))


# ─────────────────────────────────────────────────────
# Transformations
# ─────────────────────────────────────────────────────

def _transmute(counts, prob, rng):
    counts = counts.copy()
    hot = [e for e in HOT_ELEMENTS if counts[e] > 0]
    if not hot or rng.random() >= prob:
        return counts, False
    e = hot[int(rng.integers(len(hot)))]
    counts[e] -= 1
    counts[INERT_ELEMENT] += 1
    return counts, True


def _anabolize(enzyme, substrates, cls, tile, rng):
    if len(substrates) < 2:
        return None
    combined = total_counts(substrates)
    product = Molecule(combined, enzyme.bond_multiplier)
    outcome = ReactionOutcome(
        consumed=list(substrates), produced=product,
        substrate_atom_energy=total_energy(substrates),
        product_atom_energy=product.energy,
    )
    return _settle(outcome, cls.energy_cost, 0.0)


def _catabolize(enzyme, substrates, cls, tile, rng):
    sub = substrates[0]
    counts, transmuted = _transmute(sub.counts, enzyme.transmute_prob, rng)
    n_parts = int(rng.integers(1, 3))
    fragments = [Molecule(c) for c in split_atoms(counts, n_parts, rng)]
    outcome = ReactionOutcome(
        consumed=[sub], byproducts=fragments, transmuted=transmuted,
        substrate_atom_energy=sub.energy,
        product_atom_energy=total_energy(fragments),
    )
    return _settle(outcome, cls.energy_cost, enzyme.harvest_fraction)


def _transport(enzyme, substrates, cls, tile, rng):
    if tile is None or not tile.molecules:
        return None
    mask = enzyme.nutrient_mask()
    budget = int(enzyme.transport_rate)
    moved = np.zeros(N_ELEMENTS, dtype=np.int64)
    edits = []
    for i in rng.permutation(len(tile.molecules)):
        if moved.sum() >= budget:
            break
        src = tile.molecules[i]
        take = take_atoms(src.counts, mask, budget - int(moved.sum()), rng)
        if not take.any():
            continue
        rest = src.counts - take
        edits.append((src, Molecule(rest, src.bond_multiplier) if rest.any() else None))
        moved += take
    n_moved = int(moved.sum())
    if n_moved == 0:
        return None
    product = Molecule(moved)
    outcome = ReactionOutcome(
        consumed=[], produced=product, retain_product=True, tile_edits=edits,
        substrate_atom_energy=product.energy, product_atom_energy=product.energy,
    )
    return _settle(outcome, cls.energy_cost + enzyme.active_cost_per_atom * n_moved, 0.0)


def _generic(enzyme, substrates, cls, tile, rng):
    counts, transmuted = _transmute(total_counts(substrates), enzyme.transmute_prob, rng)
    atoms = np.repeat(np.arange(N_ELEMENTS), counts)
    major = rng.random(len(atoms)) < enzyme.majority_share
    primary = np.bincount(atoms[major], minlength=N_ELEMENTS).astype(np.int64)
    minor = np.bincount(atoms[~major], minlength=N_ELEMENTS).astype(np.int64)
    if not primary.any():
        primary, minor = minor, primary
    product = Molecule(primary)
    byproducts = [Molecule(c) for c in split_atoms(minor, int(rng.integers(1, 3)), rng)]
    outcome = ReactionOutcome(
        consumed=list(substrates), produced=product, byproducts=byproducts,
        transmuted=transmuted,
        substrate_atom_energy=total_energy(substrates),
        product_atom_energy=product.energy + total_energy(byproducts),
    )
    return _settle(outcome, cls.energy_cost, enzyme.harvest_fraction)


TRANSFORMS = {
    "anabolase": _anabolize,
    "catabolase": _catabolize,
    "transportase": _transport,
}


def is_noop(outcome):
    """Same atoms in and out with a negligible energy change."""
    before = total_counts(outcome.consumed)
    after = total_counts(outcome.outputs())
    return np.array_equal(before, after) and abs(outcome.raw_delta) < NOISE_THRESHOLD


# ─────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────

def attempt_reaction(enzyme, available, env, cell, tile, rng):
    """Try one catalytic event. Returns a ReactionOutcome or None.

    Nothing is mutated unless the outcome is accepted. On acceptance the
    cell pays ``cost_paid`` and any tile edits (transport) are applied; the
    caller is responsible for removing ``consumed`` from the pools.
    """
    cls = ENZYME_CLASSES.get(enzyme.kind)
    if cls is None or not enzyme.is_well_formed():
        return None

    if isinstance(enzyme, Transportase):
        substrates = []
    else:
        candidates = [m for m in available if enzyme.accepts(m)]
        if not candidates:
            return None
        order = rng.permutation(len(candidates))[:cls.max_inputs]
        substrates = [candidates[i] for i in order]

    if rng.random() > catalytic_rate(enzyme, cls, env):
        return None

    transform = TRANSFORMS.get(enzyme.kind, _generic)
    outcome = transform(enzyme, substrates, cls, tile, rng)
    if outcome is None or is_noop(outcome):
        return None
    if isinstance(enzyme, Catabolase) and outcome.energy_delta <= 0:
        return None
    if outcome.cost_paid > 0:
        if cell is None or cell.energy < outcome.cost_paid:
            return None
        cell.energy -= outcome.cost_paid

    for src, rest in outcome.tile_edits:
        for i, m in enumerate(tile.molecules):
            if m is src:
                if rest is None:
                    del tile.molecules[i]
                else:
                    tile.molecules[i] = rest
                break
    return outcome
