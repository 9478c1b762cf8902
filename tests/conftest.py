"""
Pytest configuration for The Enzyme Field tests.
"""
import numpy as np
import pytest

from field_world import Config, World


class FakeCell:
    """Just enough of a Cell for the reaction engine: an energy balance."""

    def __init__(self, energy):
        self.energy = energy


class FakeTile:
    def __init__(self, molecules=None):
        self.molecules = list(molecules or [])


def bare_config(**overrides):
    """Small grid, no seeded molecules, fixed seed."""
    cfg = Config()
    cfg.width = 5
    cfg.height = 5
    cfg.seed_molecules = ()
    cfg.seed_strained_prob = 0.0
    cfg.random_seed = 123
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


@pytest.fixture
def rng():
    return np.random.default_rng(7)


@pytest.fixture
def make_world():
    """Factory: make_world(width=5, height=5, **config_overrides) -> empty World."""
    def _make(width=5, height=5, **overrides):
        cfg = bare_config(width=width, height=height, **overrides)
        return World(cfg=cfg)
    return _make


@pytest.fixture
def fake_cell():
    return FakeCell


@pytest.fixture
def fake_tile():
    return FakeTile
