"""
tests/test_cells.py - metabolism, starvation, secretion, division and mutation.
"""

import numpy as np
import pytest

from field_cells import (
    ACTIVE, DEAD, DECAY_TIME_FLOOR, MAX_ENZYMES, REACTION_LOG_MAX,
    REPRO_THRESHOLD_FLOOR, TEMP_STRESS_FLOOR, Cell, Genome, mutate_genome,
)
from field_chemistry import create_molecule, total_energy
from field_enzymes import (
    ENZYME_CLASSES, Anabolase, Catabolase, EnzymeClass, Environment, ReactionOutcome, make_enzyme,
)


def place(world, genome, x=2, y=2, energy=None):
    cell = Cell(genome, rng=world.rng)
    if energy is not None:
        cell.energy = energy
    tile = world.tile(x, y)
    tile.cells.append(cell)
    return cell, tile


def quiet_genome(**kwargs):
    """No enzymes, no uptake, no division."""
    params = dict(enzymes=[], repro_threshold=1e9, desired_element_reserve=0,
                  temp_stress_factor=0.0, optimal_temp=0.5)
    params.update(kwargs)
    return Genome(**params)


class TestStarvation:

    def test_decay_time_is_inclusive(self, make_world):
        world = make_world()
        cell, tile = place(world, quiet_genome(decay_time=100.0))
        cell.molecules = [create_molecule({"C": 1})]
        env = Environment(temperature=0.5, dt=1.0)
        for _ in range(100):
            cell.step(env, tile, world.rng)
        assert cell.alive
        assert cell.time_without_food == pytest.approx(100.0)

        cell.step(env, tile, world.rng)
        assert cell.state == DEAD
        assert cell.molecules == []
        assert [m.composition for m in tile.molecules] == [{"C": 1}]

    def test_dead_cells_do_nothing(self, make_world):
        world = make_world()
        cell, tile = place(world, quiet_genome(decay_time=1.0))
        env = Environment(dt=10.0)
        cell.step(env, tile, world.rng)
        assert cell.state == DEAD
        energy, clock = cell.energy, cell.time_without_food
        cell.step(env, tile, world.rng)
        assert (cell.energy, cell.time_without_food) == (energy, clock)

    def test_maintenance_death_clamps_energy(self, make_world):
        world = make_world(maintenance_cost_per_sec=1000.0)
        cell, tile = place(world, quiet_genome(), energy=3.0)
        cell.step(Environment(dt=10.0, sim_time=2.5), tile, world.rng)
        assert cell.state == DEAD
        assert cell.energy == 0.0
        assert cell.death_sim_time == 2.5

    def test_spending_down_to_zero_is_fatal_without_maintenance(self, make_world):
        world = make_world(maintenance_cost_per_sec=0.0)
        a, b = create_molecule({"A": 1}), create_molecule({"A": 1})
        cost = -(total_energy([a, b]) - create_molecule({"A": 2}, 1.2).energy
                 - ENZYME_CLASSES["anabolase"].energy_cost)
        genome = quiet_genome(enzymes=[make_enzyme("anabolase", affinity={"A": 1.0}, bond_multiplier=1.2)])
        cell, tile = place(world, genome, energy=cost)
        tile.molecules = [a, b]
        env = Environment(temperature=0.5, ph=0.5, dt=10.0)
        for _ in range(50):
            cell.step(env, tile, world.rng)
            if cell.reaction_log:
                break
        assert len(cell.reaction_log) == 1
        assert cell.state == DEAD
        assert cell.energy == 0.0

    def test_no_maintenance_keeps_energy(self, make_world):
        world = make_world(maintenance_cost_per_sec=0.0)
        cell, tile = place(world, quiet_genome(), energy=3.0)
        for _ in range(5):
            cell.step(Environment(dt=10.0), tile, world.rng)
        assert cell.alive
        assert cell.energy == 3.0

    def test_thermal_stress_adds_to_clock(self, make_world):
        world = make_world()
        genome = quiet_genome(enzymes=[Anabolase(), Anabolase()], temp_stress_factor=0.02)
        cell, tile = place(world, genome)
        tile.temperature = 1.5
        cell.step(Environment(temperature=1.5, dt=10.0), tile, world.rng)
        assert cell.time_without_food == pytest.approx(10.0 + 0.04)


class TestMetabolism:

    def test_catabolase_consumes_tile_substrate(self, make_world):
        world = make_world()
        genome = quiet_genome(enzymes=[Catabolase(transmute_prob=0.0)])
        cell, tile = place(world, genome)
        mol = create_molecule({"A": 4}, 1.3)
        tile.molecules = [mol]
        cell.step(Environment(temperature=0.5, dt=10.0), tile, world.rng)

        pools = [m for t in world.tiles() for m in t.molecules] + cell.molecules
        assert all(m is not mol for m in pools)
        assert cell.energy == pytest.approx(5.0 + 0.85 * 0.55 - 0.0005)
        assert len(cell.reaction_log) == 1
        entry = cell.reaction_log[0]
        assert entry["enzyme_type"] == "catabolase"
        assert entry["substrates"] == ["A4"]
        assert entry["delta_t"] > 0

    def test_rejected_relabel_leaves_cell_and_tile_alone(self, make_world, monkeypatch):
        monkeypatch.setitem(ENZYME_CLASSES, "isomerase", EnzymeClass(1, 1.0, 0.0))
        world = make_world()
        genome = quiet_genome(enzymes=[make_enzyme("isomerase", transmute_prob=0.0, majority_share=1.0)])
        cell, tile = place(world, genome)
        outside, inside = create_molecule({"A": 1, "B": 1}), create_molecule({"B": 2})
        tile.molecules = [outside]
        cell.molecules = [inside]
        temperature = world.temperature.copy()
        env = Environment(temperature=0.5, ph=0.5, dt=10.0)
        for _ in range(20):
            cell.step(env, tile, world.rng)
        assert cell.reaction_log == []
        assert tile.molecules == [outside] and cell.molecules == [inside]
        assert cell.energy == pytest.approx(5.0 - 20 * 0.0005)
        assert np.array_equal(world.temperature, temperature)

    def test_uptake_when_reserve_is_thin(self, make_world):
        world = make_world()
        cell, tile = place(world, quiet_genome(desired_element_reserve=2))
        mol = create_molecule({"B": 1})
        tile.molecules = [mol]
        cell.step(Environment(dt=10.0), tile, world.rng)
        assert tile.molecules == []
        assert cell.molecules == [mol]

    def test_secretion_needs_full_reserve(self, rng):
        enzyme = make_enzyme("anabolase", secretion_prob=1.0)
        cell = Cell(Genome(desired_element_reserve=2))
        product = create_molecule({"A": 2})
        assert not cell.should_secrete(product, enzyme, rng)
        cell.molecules = [create_molecule({"A": 2})]
        assert cell.should_secrete(product, enzyme, rng)
        assert not cell.should_secrete(create_molecule({"A": 1, "B": 1}), enzyme, rng)

    def test_secretion_falls_back_to_genome_default(self, rng):
        cell = Cell(Genome(desired_element_reserve=0, default_secretion_prob=0.0))
        assert not cell.should_secrete(create_molecule({"A": 1}), Anabolase(), rng)

    def test_reaction_log_is_newest_first_and_capped(self):
        cell = Cell(Genome())
        outcome = ReactionOutcome(consumed=[create_molecule({"A": 1})])
        for i in range(REACTION_LOG_MAX + 5):
            cell._push_log(Anabolase(), outcome, 0.0, float(i))
        assert len(cell.reaction_log) == REACTION_LOG_MAX
        assert cell.reaction_log[0]["time_sim"] == REACTION_LOG_MAX + 4


class TestDivision:

    def test_energy_and_molecules_conserved(self, make_world):
        world = make_world()
        cell, tile = place(world, Genome(mutation_rate=0.0), energy=20.0)
        cell.molecules = [create_molecule({"A": i + 1}) for i in range(6)]
        before = list(cell.molecules)

        child = cell.divide(tile, world.rng, 1.0)
        assert child is not None
        assert cell.energy + child.energy == pytest.approx(20.0)
        assert 0.45 * 20.0 <= child.energy <= 0.55 * 20.0
        assert sorted(map(id, cell.molecules + child.molecules)) == sorted(map(id, before))
        assert child.lineage_id == cell.lineage_id
        assert child.born_tick == world.timestep
        assert child.birth_sim_time == 1.0
        assert world.births == 1

        home = [t for t in world.tiles() if child in t.cells][0]
        dx = min(abs(home.x - 2), world.width - abs(home.x - 2))
        dy = min(abs(home.y - 2), world.height - abs(home.y - 2))
        assert 1 <= max(dx, dy) <= world.cfg.division_search_radius

    def test_no_room_refunds_parent(self, make_world):
        world = make_world(width=1, height=1)
        cell, tile = place(world, Genome(), x=0, y=0, energy=20.0)
        cell.molecules = [create_molecule({"A": 1}), create_molecule({"B": 1})]
        assert cell.divide(tile, world.rng, 0.0) is None
        assert cell.energy == pytest.approx(20.0)
        assert len(cell.molecules) == 2
        assert world.births == 0
        assert tile.cells == [cell]

    def test_post_divide_mortality(self, make_world):
        world = make_world()
        cell, tile = place(world, Genome(post_divide_mortality=1.0), energy=20.0)
        child = cell.divide(tile, world.rng, 0.0)
        assert child is not None and child.alive
        assert cell.state == DEAD

    def test_step_divides_at_threshold(self, make_world):
        world = make_world()
        cell, tile = place(world, quiet_genome(repro_threshold=4.0), energy=5.0)
        cell.step(Environment(dt=10.0), tile, world.rng)
        assert world.births == 1
        assert world.pop == 2


class TestMutation:

    def test_parent_untouched(self, rng):
        parent = Genome(enzymes=[make_enzyme("catabolase", affinity={"A": 1.0})], mutation_rate=1.0)
        affinity = parent.enzymes[0].affinity.copy()
        child = mutate_genome(parent, rng)
        assert child is not parent
        assert parent.repro_threshold == 10.0
        assert parent.optimal_temp is None
        assert np.array_equal(parent.enzymes[0].affinity, affinity)

    def test_bounds_hold_over_generations(self, rng):
        g = Genome(enzymes=[Catabolase(), Anabolase()], mutation_rate=1.0,
                   repro_threshold=0.02, decay_time=60.0)
        for _ in range(200):
            g = mutate_genome(g, rng)
            assert g.repro_threshold >= REPRO_THRESHOLD_FLOOR
            assert g.decay_time >= DECAY_TIME_FLOOR
            assert g.temp_stress_factor >= TEMP_STRESS_FLOOR
            assert 0.0 <= g.default_secretion_prob <= 1.0
            assert 0.0 <= g.optimal_temp <= 1.0
            assert len(g.enzymes) <= MAX_ENZYMES
            for en in g.enzymes:
                assert en.t_opt == g.optimal_temp
                assert 0.0 <= en.ph_opt <= 1.0
                assert en.is_well_formed()

    def test_zero_rate_only_syncs_enzyme_optimum(self, rng):
        g = Genome(enzymes=[Catabolase(t_opt=0.2), Anabolase(t_opt=0.4)], mutation_rate=0.0)
        child = mutate_genome(g, rng)
        assert child.optimal_temp == pytest.approx(0.3)
        assert [en.t_opt for en in child.enzymes] == [pytest.approx(0.3)] * 2
        assert [en.kind for en in child.enzymes] == ["catabolase", "anabolase"]


class TestInspection:

    def test_dominant_element(self):
        cell = Cell(Genome())
        assert cell.dominant_element() is None
        cell.molecules = [create_molecule({"A": 1, "C": 2}), create_molecule({"C": 1})]
        assert cell.dominant_element() == "C"
        assert cell.count_internal_element("C") == 3
        assert cell.total_internal_atoms() == 4

    def test_age_stops_at_death(self, make_world):
        world = make_world()
        cell, tile = place(world, Genome())
        cell.birth_sim_time = 1.0
        assert cell.age(3.0) == pytest.approx(2.0)
        cell.die(tile, 4.0)
        cell.die(tile, 9.0)
        assert cell.death_sim_time == 4.0
        assert cell.age(10.0) == pytest.approx(3.0)

    def test_lineage_inherited_from_genome(self, rng):
        assert Cell(Genome(lineage_id=17), rng=rng).lineage_id == 17
        assert Cell(Genome(), rng=rng).state == ACTIVE
