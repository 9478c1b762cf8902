"""
The Enzyme Field: Chemistry
===========================
Elements and the molecules built from them.

A molecule is a vector of element counts. Everything else about it (size,
polarity, raw elemental energy) is derived from that vector, plus one stored
quantity: the bond multiplier, which amplifies elemental energy when a
synthesis reaction locks energy into bonds.
"""

from dataclasses import dataclass

import numpy as np


# ─────────────────────────────────────────────────────
# Elements
# ─────────────────────────────────────────────────────

E_A = 0
E_B = 1
E_C = 2
E_D = 3
E_E = 4
E_X = 5

N_ELEMENTS = 6

ELEMENT_SYMBOLS = ("A", "B", "C", "D", "E", "X")
SYMBOL_INDEX = {s: i for i, s in enumerate(ELEMENT_SYMBOLS)}


@dataclass(frozen=True)
class Element:
    symbol: str
    mass: float
    polarity: float
    energy: float


ELEMENTS = (
    Element("A", 1.0, 0.9, 0.5),
    Element("B", 1.2, 0.4, 0.9),
    Element("C", 1.4, 0.2, 0.85),
    Element("D", 1.8, 0.1, 3.0),
    Element("E", 0.8, 1.0, 2.2),
    Element("X", 1.0, 0.6, -0.2),
)

ELEMENT_MASS     = np.array([e.mass for e in ELEMENTS])
ELEMENT_POLARITY = np.array([e.polarity for e in ELEMENTS])
ELEMENT_ENERGY   = np.array([e.energy for e in ELEMENTS])

INERT_ELEMENT = E_X
HOT_ELEMENT_ENERGY = 2.0
HOT_ELEMENTS = tuple(int(i) for i in np.flatnonzero(ELEMENT_ENERGY >= HOT_ELEMENT_ENERGY))  # D, E
NUTRIENT_ELEMENTS = (E_A, E_B, E_C)


def element_index(key):
    """Symbol or index -> element index."""
    if isinstance(key, str):
        return SYMBOL_INDEX[key]
    idx = int(key)
    if not 0 <= idx < N_ELEMENTS:
        raise KeyError(key)
    return idx


def as_counts(composition):
    """Normalise a composition (mapping or sequence) to a count vector.

    Negative entries are clipped to zero so a count vector never holds
    anything but absent or present elements.
    """
    counts = np.zeros(N_ELEMENTS, dtype=np.int64)
    if composition is None:
        return counts
    if hasattr(composition, "items"):
        for key, n in composition.items():
            counts[element_index(key)] += int(n)
    else:
        arr = np.asarray(composition, dtype=np.int64)
        counts[:len(arr)] = arr[:N_ELEMENTS]
    np.maximum(counts, 0, out=counts)
    return counts


# ─────────────────────────────────────────────────────
# Molecules
# ─────────────────────────────────────────────────────

class Molecule:
    __slots__ = ("counts", "size", "polarity", "elemental_energy_sum",
                 "bond_multiplier", "energy")

    def __init__(self, counts, bond_multiplier=1.0):
        self.counts = counts
        self.size = int(counts.sum())
        self.polarity = float(counts @ ELEMENT_POLARITY) / self.size if self.size > 0 else 0.0
        self.elemental_energy_sum = float(counts @ ELEMENT_ENERGY)
        self.bond_multiplier = max(0.0, float(bond_multiplier))
        self.energy = self.elemental_energy_sum * self.bond_multiplier

    @property
    def composition(self):
        return {ELEMENT_SYMBOLS[i]: int(self.counts[i])
                for i in range(N_ELEMENTS) if self.counts[i] > 0}

    @property
    def mass(self):
        return float(self.counts @ ELEMENT_MASS)

    def count(self, element):
        return int(self.counts[element_index(element)])

    def has_any(self, mask):
        return bool(np.any((self.counts > 0) & mask))

    def copy(self):
        return Molecule(self.counts.copy(), self.bond_multiplier)

    def __repr__(self):
        return f"Molecule({composition_to_string(self)}, bond={self.bond_multiplier:.2f})"


def create_molecule(composition, bond_multiplier=1.0):
    """Build a molecule from a composition.

    Never fails: an empty composition gives a zero-size molecule with zero
    polarity and zero energy. Pools must not hold such molecules, so callers
    check ``size`` before inserting.
    """
    return Molecule(as_counts(composition), bond_multiplier)


def total_counts(molecules):
    total = np.zeros(N_ELEMENTS, dtype=np.int64)
    for m in molecules:
        total += m.counts
    return total


def total_energy(molecules):
    return sum(m.energy for m in molecules)


def composition_to_string(item):
    counts = item.counts if isinstance(item, Molecule) else as_counts(item)
    text = "".join(f"{ELEMENT_SYMBOLS[i]}{int(counts[i])}"
                   for i in range(N_ELEMENTS) if counts[i] > 0)
    return text or "-"


def split_atoms(counts, n_parts, rng):
    """Randomly partition the atoms of ``counts`` into up to ``n_parts`` non-empty parts.

    Every atom lands in exactly one part. Fewer parts come back when there are
    fewer atoms than requested parts.
    """
    size = int(counts.sum())
    if size == 0:
        return []
    n_parts = max(1, min(int(n_parts), size))
    if n_parts == 1:
        return [counts.copy()]
    atoms = np.repeat(np.arange(N_ELEMENTS), counts)
    rng.shuffle(atoms)
    cuts = np.sort(rng.choice(np.arange(1, size), n_parts - 1, replace=False))
    return [np.bincount(chunk, minlength=N_ELEMENTS).astype(np.int64)
            for chunk in np.split(atoms, cuts)]


def take_atoms(counts, mask, limit, rng):
    """Pick up to ``limit`` random atoms of the masked elements out of ``counts``."""
    eligible = np.where(mask, counts, 0)
    n = int(eligible.sum())
    if n == 0 or limit <= 0:
        return np.zeros(N_ELEMENTS, dtype=np.int64)
    atoms = np.repeat(np.arange(N_ELEMENTS), eligible)
    picked = rng.choice(atoms, min(n, int(limit)), replace=False)
    return np.bincount(picked, minlength=N_ELEMENTS).astype(np.int64)


def element_mask(elements):
    mask = np.zeros(N_ELEMENTS, dtype=bool)
    for e in elements:
        mask[element_index(e)] = True
    return mask
