"""
Tests for merging locally owned particles into ordered frame records.
"""

import numpy as np
import pytest
from MDAnalysis.exceptions import NoDataError
from numpy.testing import assert_equal

from h5mdtraj import (
    FrameAssembler,
    LocalParticles,
    TrajectoryLogicError,
    merge_contributions,
)
from .utils import ThreadWorld, make_particles, split_particles

FIELDS = ["positions", "velocities", "forces", "species"]
N = 20


@pytest.fixture()
def particles():
    return make_particles(N, seed=3, images=True, masses=True)


def ground_truth(particles, fields):
    return merge_contributions(
        [particles.contribution(fields)], fields, len(particles.ids)
    )


class TestLocalParticles(object):
    def test_wrong_length(self):
        with pytest.raises(ValueError, match="positions"):
            LocalParticles(ids=[0, 1], positions=np.zeros((3, 3)))

    def test_wrong_components(self):
        with pytest.raises(ValueError, match="velocities"):
            LocalParticles(ids=[0, 1], velocities=np.zeros((2, 2)))

    def test_float_ids(self):
        with pytest.raises(ValueError, match="integer"):
            LocalParticles(ids=[0.5, 1.5])

    def test_empty(self):
        local = LocalParticles(ids=[], positions=[], species=[])
        assert local.ids.dtype == np.int64
        assert local.positions.shape == (0, 3)
        assert local.species.shape == (0,)

    def test_missing_field(self):
        local = LocalParticles(ids=[0, 1], positions=np.zeros((2, 3)))
        with pytest.raises(NoDataError, match="velocities"):
            local.contribution(["positions", "velocities"])


class TestMergeContributions(object):
    def test_orders_by_id(self):
        local = LocalParticles(
            ids=[2, 0, 1], positions=np.arange(9.0).reshape(3, 3)
        )
        record = merge_contributions(
            [local.contribution(["positions"])], ["positions"], 3
        )
        assert_equal(record["ids"], [0, 1, 2])
        assert_equal(record["positions"][0], [3.0, 4.0, 5.0])
        assert_equal(record["positions"][2], [0.0, 1.0, 2.0])

    @pytest.mark.parametrize("n_ranks", [2, 3, 7])
    @pytest.mark.parametrize("seed", [0, 1])
    def test_partition_independent(self, particles, n_ranks, seed):
        owner = np.random.default_rng(seed).integers(0, n_ranks, size=N)
        owner[:n_ranks] = np.arange(n_ranks)
        parts = split_particles(particles, owner)
        record = merge_contributions(
            [part.contribution(FIELDS) for part in parts], FIELDS, N
        )
        expected = ground_truth(particles, FIELDS)
        for key in ["ids"] + FIELDS:
            assert_equal(record[key], expected[key])

    def test_empty_rank(self, particles):
        empty = LocalParticles(
            ids=[], positions=[], velocities=[], forces=[], species=[]
        )
        record = merge_contributions(
            [empty.contribution(FIELDS), particles.contribution(FIELDS)],
            FIELDS,
            N,
        )
        assert_equal(record["positions"], particles.positions)

    def test_duplicates(self, particles):
        owner = np.zeros(N, dtype=int)
        owner[N // 2 :] = 1
        first, second = split_particles(particles, owner)
        with pytest.raises(TrajectoryLogicError, match="more than one"):
            merge_contributions(
                [
                    first.contribution(FIELDS),
                    second.contribution(FIELDS),
                    first.contribution(FIELDS),
                ],
                FIELDS,
                N,
            )

    def test_omission(self, particles):
        owner = np.zeros(N, dtype=int)
        owner[N // 2 :] = 1
        first, _ = split_particles(particles, owner)
        with pytest.raises(TrajectoryLogicError, match="expected 20"):
            merge_contributions([first.contribution(FIELDS)], FIELDS, N)

    def test_missing_field_on_a_rank(self, particles):
        partial = {"ids": particles.ids, "positions": particles.positions}
        with pytest.raises(TrajectoryLogicError, match="Rank 1"):
            merge_contributions(
                [{"ids": np.empty(0, dtype=int), "positions": np.empty((0, 3)),
                  "forces": np.empty((0, 3))},
                 partial],
                ["positions", "forces"],
                N,
            )


class TestFrameAssembler(object):
    def test_single_process(self, particles):
        assembler = FrameAssembler(N)
        assert assembler.is_root
        record = assembler.assemble(particles, ["positions"])
        assert_equal(record["positions"], particles.positions)

    def test_particle_set_change(self, particles):
        assembler = FrameAssembler(N)
        assembler.assemble(particles, ["positions"])
        renumbered = LocalParticles(
            ids=particles.ids + 1, positions=particles.positions
        )
        with pytest.raises(TrajectoryLogicError, match="changed"):
            assembler.assemble(renumbered, ["positions"])

    def test_particle_count_change(self, particles):
        assembler = FrameAssembler(N)
        assembler.assemble(particles, ["positions"])
        fewer = LocalParticles(
            ids=particles.ids[:-1], positions=particles.positions[:-1]
        )
        with pytest.raises(TrajectoryLogicError, match="expected 20"):
            assembler.assemble(fewer, ["positions"])

    def test_two_ranks(self, particles):
        owner = (particles.positions[:, 0] > 5).astype(int)
        owner[0], owner[1] = 0, 1
        parts = split_particles(particles, owner)

        def assemble(comm):
            assembler = FrameAssembler(N, comm=comm)
            return assembler.assemble(parts[comm.Get_rank()], FIELDS)

        results, errors = ThreadWorld(2).run(assemble)
        assert errors == [None, None]
        assert results[1] is None
        expected = ground_truth(particles, FIELDS)
        for key in ["ids"] + FIELDS:
            assert_equal(results[0][key], expected[key])

    def test_violation_raised_on_every_rank(self, particles):
        def assemble(comm):
            # both ranks claim every particle
            assembler = FrameAssembler(N, comm=comm)
            return assembler.assemble(particles, ["positions"])

        results, errors = ThreadWorld(2).run(assemble)
        assert all(isinstance(err, TrajectoryLogicError) for err in errors)
        assert "more than one" in str(errors[1])

    def test_missing_data_raised_on_every_rank(self, particles):
        owner = np.zeros(N, dtype=int)
        owner[N // 2 :] = 1
        first, second = split_particles(particles, owner)
        # rank 1 tracks no velocities
        second = LocalParticles(ids=second.ids, positions=second.positions)

        def assemble(comm):
            assembler = FrameAssembler(N, comm=comm)
            local = first if comm.Get_rank() == 0 else second
            return assembler.assemble(local, ["positions", "velocities"])

        _, errors = ThreadWorld(2, timeout=5).run(assemble)
        assert all(isinstance(err, NoDataError) for err in errors)
        assert "Rank 1" in str(errors[0])

    def test_empty_rank_may_leave_fields_unset(self, particles):
        def assemble(comm):
            assembler = FrameAssembler(N, comm=comm)
            if comm.Get_rank() == 0:
                local = particles
            else:
                local = LocalParticles(ids=[])
            return assembler.assemble(
                local, ["positions"], optional=["images", "masses"]
            )

        results, errors = ThreadWorld(2, timeout=5).run(assemble)
        assert errors == [None, None]
        assert_equal(results[0]["images"], particles.images)
        assert_equal(results[0]["masses"], particles.masses)


class TestOptionalFields(object):
    def test_merged_when_carried(self, particles):
        owner = np.zeros(N, dtype=int)
        owner[N // 2 :] = 1
        parts = split_particles(particles, owner)
        record = merge_contributions(
            [p.contribution(["positions"], ["images"]) for p in parts],
            ["positions"],
            N,
            optional=["images"],
        )
        assert_equal(record["images"], particles.images)

    def test_skipped_when_nobody_carries_them(self):
        local = make_particles(N)
        record = merge_contributions(
            [local.contribution(["positions"], ["images", "masses"])],
            ["positions"],
            N,
            optional=["images", "masses"],
        )
        assert "images" not in record
        assert "masses" not in record

    def test_owning_rank_without_field(self, particles):
        owner = np.zeros(N, dtype=int)
        owner[N // 2 :] = 1
        first, second = split_particles(particles, owner)
        second = LocalParticles(ids=second.ids, positions=second.positions)
        with pytest.raises(TrajectoryLogicError, match="Rank 1"):
            merge_contributions(
                [
                    first.contribution(["positions"], ["images"]),
                    second.contribution(["positions"], ["images"]),
                ],
                ["positions"],
                N,
                optional=["images"],
            )

    def test_empty_rank_contribution(self):
        empty = LocalParticles(ids=[])
        assert empty.contribution(["positions"], ["images"]).keys() == {"ids"}
