"""Tests for the row-partitioned distributed solver on simulated ranks."""

import logging

import numpy as np
import pytest
from HeatDiffusion import (
    CommunicationError,
    ConfigurationError,
    DistributedSolver,
    GridState,
    SequentialSolver,
    SimulatedWorld,
    WorkerState,
)


def run_distributed(grid, size, threshold=0.25, max_iterations=100000, **kwargs):
    """Run the solver on ``size`` simulated ranks; returns [(solver, result), ...]."""

    def target(comm):
        solver = DistributedSolver(comm, **kwargs)
        result = solver.run(grid if comm.rank == 0 else None, threshold, max_iterations)
        return solver, result

    return SimulatedWorld(size, timeout=30).run(target)


def grid_with_source(width, height, x, y):
    temps = np.zeros((height, width))
    fixed = np.zeros((height, width), dtype=bool)
    temps[y, x] = 100.0
    fixed[y, x] = True
    return GridState(temps, fixed, heat_points=1)


class TestDistributedSolver:
    """Distributed results must match the sequential baseline."""

    @pytest.mark.parametrize("size", [1, 2, 3, 5])
    def test_matches_sequential(self, size):
        grid = GridState.initialize(21, 17, heat_points=6, seed=89211208)
        expected, n_expected = SequentialSolver().run(grid, threshold=0.25)

        results = run_distributed(grid, size)
        root_solver, root_result = results[0]

        assert root_result.iterations == n_expected
        assert root_result.converged
        np.testing.assert_array_equal(root_solver.global_grid.temperatures, expected.temperatures)

    def test_local_partitions_match_global(self):
        grid = GridState.initialize(12, 10, heat_points=4, seed=3)
        results = run_distributed(grid, 3)
        full = results[0][0].global_grid.temperatures

        for solver, result in results:
            p = result.partition
            np.testing.assert_array_equal(result.temperatures, full[p.start_row : p.end_row])
            np.testing.assert_array_equal(result.fixed, grid.fixed[p.start_row : p.end_row])

    def test_only_root_holds_global_grid(self):
        grid = GridState.initialize(8, 8, heat_points=2, seed=1)
        results = run_distributed(grid, 2)
        assert results[0][0].global_grid is not None
        assert results[1][0].global_grid is None

    def test_all_ranks_agree_on_iterations(self):
        grid = GridState.initialize(16, 12, heat_points=5, seed=6)
        results = run_distributed(grid, 4)
        iterations = {result.iterations for _, result in results}
        assert len(iterations) == 1

    def test_fixed_cells_unchanged(self):
        grid = GridState.initialize(15, 15, heat_points=8, seed=12)
        results = run_distributed(grid, 3)
        final = results[0][0].global_grid
        np.testing.assert_array_equal(final.temperatures[grid.fixed], 100.0)

    def test_workers_end_terminated(self):
        grid = GridState.initialize(8, 8, heat_points=2, seed=1)
        for solver, _ in run_distributed(grid, 2):
            assert solver.state is WorkerState.TERMINATED

    def test_with_numba(self):
        grid = GridState.initialize(14, 10, heat_points=3, seed=2)
        expected, n_expected = SequentialSolver().run(grid, threshold=0.25)
        results = run_distributed(grid, 2, use_numba=True)

        assert results[0][1].iterations == n_expected
        np.testing.assert_allclose(
            results[0][0].global_grid.temperatures, expected.temperatures, atol=1e-10
        )


class TestGlobalTermination:
    """No worker may stop on its own stability flag alone."""

    def test_locally_stable_worker_keeps_iterating(self):
        # Source in rank 1's rows: rank 0 sees no change in the first sweep
        grid = grid_with_source(4, 4, x=1, y=3)
        results = run_distributed(grid, 2)

        (solver0, result0), (solver1, result1) = results
        assert solver0.timeseries.local_stable_history[0] is True
        assert solver1.timeseries.local_stable_history[0] is False
        assert result0.iterations > 1
        assert result0.iterations == result1.iterations

    def test_max_iterations_cap(self):
        grid = GridState.initialize(20, 20, heat_points=5, seed=4)
        results = run_distributed(grid, 2, threshold=1e-9, max_iterations=3)
        for solver, result in results:
            assert result.iterations == 3
            assert not result.converged
            assert not solver.metrics.converged

    def test_progress_logged_per_rank(self, caplog):
        grid = GridState.initialize(6, 6, heat_points=1, seed=0)
        with caplog.at_level(logging.INFO, logger="HeatDiffusion"):
            results = run_distributed(grid, 2)
        n = results[0][1].iterations
        for rank in (0, 1):
            for it in range(1, n + 1):
                assert f"Rank {rank} completed iteration {it}" in caplog.text

    def test_halo_times_recorded(self):
        grid = GridState.initialize(10, 10, heat_points=2, seed=1)
        for solver, result in run_distributed(grid, 2):
            assert len(solver.timeseries.halo_times) == result.iterations
            assert len(solver.timeseries.local_stable_history) == result.iterations


class TestDistributedErrors:
    """Run guard, argument validation and communication failures."""

    def test_claimed_grid_is_noop_on_all_ranks(self):
        grid = GridState.initialize(8, 8, heat_points=2, seed=1)
        grid.try_claim()
        try:
            results = run_distributed(grid, 3)
        finally:
            grid.release()
        assert [result for _, result in results] == [None, None, None]

    def test_grid_released_after_run(self):
        grid = GridState.initialize(8, 8, heat_points=2, seed=1)
        run_distributed(grid, 2)
        assert not grid.computation_running

    def test_root_without_grid(self):
        with pytest.raises(ConfigurationError):
            run_distributed(None, 2)

    def test_invalid_max_iterations(self):
        grid = GridState.initialize(8, 8, heat_points=2, seed=1)
        with pytest.raises(ConfigurationError):
            run_distributed(grid, 2, max_iterations=0)

    def test_missing_max_iterations(self):
        grid = GridState.initialize(8, 8, heat_points=2, seed=1)
        with pytest.raises(ConfigurationError):
            run_distributed(grid, 2, max_iterations=None)

    def test_more_workers_than_rows(self):
        grid = GridState.initialize(5, 3, heat_points=1, seed=1)
        with pytest.raises(ConfigurationError):
            run_distributed(grid, 4)

    def test_failed_reduction_aborts_all_ranks(self, caplog):
        grid = GridState.initialize(8, 8, heat_points=2, seed=1)

        def target(comm):
            if comm.rank == 1:
                comm.allreduce_and = lambda flag: comm._fail("allreduce", "injected")
            solver = DistributedSolver(comm)
            return solver.run(grid if comm.rank == 0 else None, 0.25, 1000)

        with caplog.at_level(logging.ERROR):
            with pytest.raises(CommunicationError) as exc:
                SimulatedWorld(2, timeout=10).run(target)
        assert exc.value.operation == "allreduce"
        assert exc.value.rank == 1
        assert "aborting distributed run" in caplog.text
        assert not grid.computation_running
