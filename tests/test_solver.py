"""Tests for the sequential relaxation solver."""

import logging
import threading

import numpy as np
import pytest
from HeatDiffusion import (
    GlobalParams,
    GridState,
    SequentialSolver,
    SharedMemoryParallelSolver,
    DistributedSolver,
    ConfigurationError,
    create_solver,
)


def corner_grid(width=4, height=4):
    temps = np.zeros((height, width))
    fixed = np.zeros((height, width), dtype=bool)
    temps[0, 0] = 100.0
    fixed[0, 0] = True
    return GridState(temps, fixed, heat_points=1)


class TestSequentialSolver:
    """Tests for single-threaded solver execution."""

    def test_one_iteration_matches_neighbour_mean(self):
        solver = SequentialSolver(max_iter=1)
        final, iterations = solver.run(corner_grid(), threshold=0.25)

        assert iterations == 1
        assert final.read(1, 0) == pytest.approx(33.333333, rel=1e-6)
        assert final.read(0, 1) == pytest.approx(33.333333, rel=1e-6)
        assert final.read(3, 3) == 0.0

    def test_terminates_on_small_grids(self):
        for width, height, seed in [(4, 4, 0), (10, 7, 1), (25, 25, 89211208)]:
            grid = GridState.initialize(width, height, heat_points=3, seed=seed)
            solver = SequentialSolver(max_iter=100000)
            final, iterations = solver.run(grid, threshold=0.25)

            assert solver.metrics.converged
            assert 0 < iterations < 100000

    def test_fixed_cells_never_change(self):
        grid = GridState.initialize(15, 12, heat_points=6, seed=3)
        solver = SequentialSolver()
        for snap in solver.iterate(grid, threshold=0.25):
            np.testing.assert_array_equal(snap.temperatures[grid.fixed], 100.0)

    def test_final_iteration_is_stable(self):
        grid = GridState.initialize(12, 12, heat_points=4, seed=8)
        solver = SequentialSolver()
        solver.run(grid, threshold=0.25)
        assert solver.metrics.final_max_change <= 0.25

    def test_input_grid_untouched(self):
        grid = GridState.initialize(8, 8, heat_points=2, seed=5)
        before = grid.temperatures.copy()
        final, _ = SequentialSolver().run(grid, threshold=0.25)
        np.testing.assert_array_equal(grid.temperatures, before)
        assert final is not grid

    def test_no_sources_stable_after_one_iteration(self):
        grid = GridState.initialize(6, 6, heat_points=0, seed=0)
        final, iterations = SequentialSolver().run(grid, threshold=0.25)
        assert iterations == 1
        assert np.all(final.temperatures == 0.0)

    def test_max_iter_caps_run(self):
        grid = GridState.initialize(30, 30, heat_points=5, seed=2)
        solver = SequentialSolver(max_iter=3)
        _, iterations = solver.run(grid, threshold=1e-9)
        assert iterations == 3
        assert not solver.metrics.converged

    def test_timing_recorded(self):
        solver = SequentialSolver(max_iter=5)
        solver.run(GridState.initialize(10, 10, 2, seed=1), threshold=1e-9)

        assert len(solver.timeseries.compute_times) == 5
        assert len(solver.timeseries.max_change_history) == 5
        assert all(t >= 0 for t in solver.timeseries.compute_times)
        assert solver.metrics.wall_time > 0

    def test_with_numba(self):
        grid = GridState.initialize(10, 10, heat_points=3, seed=4)
        expected, n_expected = SequentialSolver().run(grid, threshold=0.25)

        solver = SequentialSolver(use_numba=True)
        solver.warmup()
        final, iterations = solver.run(grid, threshold=0.25)

        assert iterations == n_expected
        np.testing.assert_allclose(final.temperatures, expected.temperatures, atol=1e-10)

    def test_progress_logged_every_iteration(self, caplog):
        grid = GridState.initialize(6, 6, heat_points=1, seed=0)
        with caplog.at_level(logging.INFO, logger="HeatDiffusion"):
            _, iterations = SequentialSolver().run(grid, threshold=0.25)

        lines = [r.getMessage() for r in caplog.records if "completed iteration" in r.getMessage()]
        assert lines == [f"Rank 0 completed iteration {it}" for it in range(1, iterations + 1)]

    def test_iterate_yields_every_iteration(self):
        grid = GridState.initialize(6, 6, heat_points=1, seed=0)
        snaps = list(SequentialSolver().iterate(grid, threshold=0.25))
        _, iterations = SequentialSolver().run(grid, threshold=0.25)

        assert [s.iteration for s in snaps] == list(range(1, iterations + 1))
        assert not grid.computation_running


class TestRunGuard:
    """A second run on a grid that is being computed is a no-op."""

    def test_run_while_claimed_returns_none(self, caplog):
        grid = GridState.initialize(5, 5, 1, seed=0)
        assert grid.try_claim()
        try:
            with caplog.at_level(logging.WARNING):
                assert SequentialSolver().run(grid, threshold=0.25) is None
            assert "already running" in caplog.text
        finally:
            grid.release()

    def test_iterate_while_claimed_yields_nothing(self):
        grid = GridState.initialize(5, 5, 1, seed=0)
        grid.try_claim()
        try:
            assert list(SequentialSolver().iterate(grid, threshold=0.25)) == []
        finally:
            grid.release()

    def test_guard_released_after_run(self):
        grid = GridState.initialize(5, 5, 1, seed=0)
        SequentialSolver().run(grid, threshold=0.25)
        assert not grid.computation_running
        assert SequentialSolver().run(grid, threshold=0.25) is not None

    def test_concurrent_runs_only_one_computes(self):
        grid = GridState.initialize(40, 40, 5, seed=1)
        started = threading.Event()
        gate = threading.Event()
        results = []

        def slow_run():
            solver = SequentialSolver()
            gen = solver.iterate(grid, threshold=0.25)
            first = next(gen, None)
            started.set()
            gate.wait(timeout=5)
            results.append(first)
            gen.close()

        t = threading.Thread(target=slow_run)
        t.start()
        assert started.wait(timeout=5)
        assert grid.computation_running
        second = SequentialSolver().run(grid, threshold=0.25)
        gate.set()
        t.join()

        assert second is None
        assert results[0] is not None


class TestSolverConfiguration:
    """Tests for the solver factory."""

    def test_default_is_sequential(self):
        solver = create_solver(GlobalParams(width=10, height=10))
        assert isinstance(solver, SequentialSolver)
        assert solver.max_iter == 100000

    def test_parallel(self):
        solver = create_solver(GlobalParams(width=10, height=10, solver="parallel", leaf_size=8))
        assert isinstance(solver, SharedMemoryParallelSolver)
        assert solver.leaf_size == 8

    def test_legacy_parallel_flag(self):
        solver = create_solver(GlobalParams(width=10, height=10, parallel=True))
        assert isinstance(solver, SharedMemoryParallelSolver)

    def test_distributed_requires_comm(self):
        with pytest.raises(ConfigurationError):
            create_solver(GlobalParams(width=10, height=10, solver="distributed"))

    def test_distributed(self):
        from HeatDiffusion import SimulatedWorld

        comm = SimulatedWorld(1).communicators()[0]
        solver = create_solver(GlobalParams(width=10, height=10, solver="distributed"), comm)
        assert isinstance(solver, DistributedSolver)

    def test_invalid_threshold(self):
        with pytest.raises(ConfigurationError):
            SequentialSolver().run(GridState.initialize(4, 4, 1, seed=0), threshold=0.0)
