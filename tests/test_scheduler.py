"""Tests for the dependency grouper."""

import random

import pytest

from berth.errors import CycleError, DuplicateBeadError, UnknownDependencyError
from berth.scheduler import compute_groups, dependents_of


def group_ids(groups):
    return [list(g.bead_ids) for g in groups]


class TestComputeGroups:
    def test_empty_plan_has_no_groups(self):
        assert compute_groups([]) == []

    def test_fan_out_scenario(self, make_bead):
        beads = [make_bead("bt-1"), make_bead("bt-2", "bt-1"), make_bead("bt-3", "bt-1")]
        groups = compute_groups(beads)

        assert group_ids(groups) == [["bt-1"], ["bt-2", "bt-3"]]
        assert groups[0].parallel is False
        assert groups[1].parallel is True
        assert [g.index for g in groups] == [0, 1]

    def test_independent_beads_share_group_zero(self, make_bead):
        groups = compute_groups([make_bead("bt-1"), make_bead("bt-2")])

        assert len(groups) == 1
        assert groups[0].index == 0
        assert list(groups[0].bead_ids) == ["bt-1", "bt-2"]
        assert groups[0].parallel is True

    def test_depth_is_longest_path(self, make_bead):
        # bt-4 depends on bt-1 (depth 0) and bt-3 (depth 2): it must land at depth 3
        beads = [
            make_bead("bt-1"),
            make_bead("bt-2", "bt-1"),
            make_bead("bt-3", "bt-2"),
            make_bead("bt-4", "bt-1", "bt-3"),
        ]
        assert group_ids(compute_groups(beads)) == [["bt-1"], ["bt-2"], ["bt-3"], ["bt-4"]]

    def test_plan_order_kept_within_group(self, make_bead):
        beads = [
            make_bead("bt-9"),
            make_bead("bt-1"),
            make_bead("bt-5", "bt-1"),
            make_bead("bt-2", "bt-9"),
        ]
        assert group_ids(compute_groups(beads)) == [["bt-9", "bt-1"], ["bt-5", "bt-2"]]

    def test_duplicate_dependency_entries_are_harmless(self, make_bead):
        beads = [make_bead("bt-1"), make_bead("bt-2", "bt-1", "bt-1")]
        assert group_ids(compute_groups(beads)) == [["bt-1"], ["bt-2"]]

    def test_deterministic(self, make_bead):
        beads = [
            make_bead("a"), make_bead("b"), make_bead("c", "a"),
            make_bead("d", "a", "b"), make_bead("e", "c", "d"),
        ]
        assert compute_groups(beads) == compute_groups(beads)


class TestGroupInvariants:
    def random_dag(self, make_bead, seed, size=30):
        rng = random.Random(seed)
        beads = []
        for i in range(size):
            earlier = [b.id for b in beads]
            deps = rng.sample(earlier, k=min(len(earlier), rng.randint(0, 3)))
            beads.append(make_bead(f"bt-{i}", *deps))
        rng.shuffle(beads)
        return beads

    @pytest.mark.parametrize("seed", range(5))
    def test_dependencies_in_strictly_earlier_groups(self, make_bead, seed):
        beads = self.random_dag(make_bead, seed)
        groups = compute_groups(beads)
        index_of = {bid: g.index for g in groups for bid in g.bead_ids}

        for b in beads:
            for dep in b.depends_on:
                assert index_of[dep] < index_of[b.id]

    @pytest.mark.parametrize("seed", range(5))
    def test_every_bead_exactly_once(self, make_bead, seed):
        beads = self.random_dag(make_bead, seed)
        placed = [bid for g in compute_groups(beads) for bid in g.bead_ids]

        assert sorted(placed) == sorted(b.id for b in beads)
        assert len(placed) == len(set(placed))

    @pytest.mark.parametrize("seed", range(5))
    def test_parallel_flag_matches_size(self, make_bead, seed):
        for g in compute_groups(self.random_dag(make_bead, seed)):
            assert g.bead_ids
            assert g.parallel == (len(g.bead_ids) > 1)


class TestScheduleErrors:
    def test_two_bead_cycle_names_both(self, make_bead):
        with pytest.raises(CycleError) as exc_info:
            compute_groups([make_bead("bt-1", "bt-2"), make_bead("bt-2", "bt-1")])

        assert set(exc_info.value.bead_ids) == {"bt-1", "bt-2"}
        assert "bt-1" in str(exc_info.value)
        assert "bt-2" in str(exc_info.value)

    def test_self_dependency_is_a_cycle(self, make_bead):
        with pytest.raises(CycleError) as exc_info:
            compute_groups([make_bead("bt-1", "bt-1")])
        assert exc_info.value.bead_ids == ["bt-1"]

    def test_cycle_downstream_beads_reported(self, make_bead):
        beads = [
            make_bead("bt-1"),
            make_bead("bt-2", "bt-3"),
            make_bead("bt-3", "bt-2"),
            make_bead("bt-4", "bt-3"),
        ]
        with pytest.raises(CycleError) as exc_info:
            compute_groups(beads)
        assert exc_info.value.bead_ids == ["bt-2", "bt-3", "bt-4"]

    def test_unknown_dependency(self, make_bead):
        with pytest.raises(UnknownDependencyError) as exc_info:
            compute_groups([make_bead("bt-1"), make_bead("bt-2", "bt-7")])

        assert exc_info.value.bead_id == "bt-2"
        assert exc_info.value.missing == ["bt-7"]

    def test_duplicate_ids_rejected(self, make_bead):
        with pytest.raises(DuplicateBeadError):
            compute_groups([make_bead("bt-1"), make_bead("bt-1")])


class TestDependentsOf:
    def test_transitive_dependents_in_plan_order(self, make_bead):
        beads = [
            make_bead("bt-1"),
            make_bead("bt-2", "bt-1"),
            make_bead("bt-3"),
            make_bead("bt-4", "bt-2"),
        ]
        assert dependents_of(beads, "bt-1") == ["bt-2", "bt-4"]
        assert dependents_of(beads, "bt-3") == []
