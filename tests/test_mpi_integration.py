"""MPI integration tests - spawn actual MPI processes via run_solver."""

import shutil

import numpy as np
import pytest
from HeatDiffusion import GridState, SequentialSolver, run_solver

pytest.importorskip("mpi4py")
pytestmark = pytest.mark.skipif(shutil.which("mpiexec") is None, reason="mpiexec not available")

WIDTH, HEIGHT, HEAT_POINTS, SEED = 24, 18, 6, 89211208


# Run solver once per config, reuse results
@pytest.fixture(scope="module")
def mpi_results():
    """Run all MPI configurations once."""
    common = {"heat_points": HEAT_POINTS, "seed": SEED, "threshold": 0.25}
    return {
        n: run_solver(WIDTH, HEIGHT, n_ranks=n, print_grid=True, **common)
        for n in [1, 2, 4]
    }


@pytest.fixture(scope="module")
def sequential():
    grid = GridState.initialize(WIDTH, HEIGHT, HEAT_POINTS, SEED)
    return SequentialSolver().run(grid, threshold=0.25)


@pytest.mark.parametrize("n_ranks", [1, 2, 4])
def test_mpi_runs_and_converges(mpi_results, n_ranks):
    """MPI solver should run without errors and converge."""
    r = mpi_results[n_ranks]
    assert "error" not in r, f"Failed: {r.get('error')}"
    assert r["converged"]
    assert r["n_ranks"] == n_ranks


@pytest.mark.parametrize("n_ranks", [1, 2, 4])
def test_matches_sequential_iterations(mpi_results, sequential, n_ranks):
    _, iterations = sequential
    assert mpi_results[n_ranks]["iterations"] == iterations


def test_printed_grid_matches_sequential(mpi_results, sequential):
    final, _ = sequential
    stdout = mpi_results[2]["stdout"]
    rows = [line for line in stdout.splitlines() if line and line[0].isdigit()]
    assert len(rows) == HEIGHT
    printed = np.array([[float(v) for v in row.split()] for row in rows])
    np.testing.assert_allclose(printed, np.round(final.temperatures, 1), atol=0.051)


def test_result_path_reported(mpi_results):
    r = mpi_results[2]
    assert "RESULT:" in r["stdout"]
