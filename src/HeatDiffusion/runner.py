"""Launch the distributed solver under mpiexec and collect its results."""

import json
import subprocess
import sys
import tempfile
from pathlib import Path

import pandas as pd


def _worker_command(n_ranks: int, config: dict) -> list:
    return [
        "mpiexec", "-n", str(n_ranks),
        sys.executable, "-m", "HeatDiffusion.helpers.runner_helper", json.dumps(config),
    ]


def run_solver(width: int, height: int, n_ranks: int = 1, output: str = None, **kwargs) -> dict:
    """Relax a width x height grid on ``n_ranks`` MPI processes.

    Extra keyword arguments (heat_points, seed, threshold, max_iter,
    use_numba, print_grid) are forwarded to the worker.

    Returns the HDF5 results row as a dict plus the workers' ``stdout``,
    or ``{"error": ...}`` if the job failed. Without ``output`` the results
    go to a temporary file that is removed afterwards.
    """
    keep = output is not None
    if not keep:
        with tempfile.NamedTemporaryFile(suffix=".h5", delete=False) as tmp:
            output = tmp.name
    path = Path(output)

    try:
        config = {"width": width, "height": height, "output": str(path), **kwargs}
        proc = subprocess.run(_worker_command(n_ranks, config), capture_output=True, text=True)
        if proc.returncode != 0:
            return {"error": proc.stderr, "returncode": proc.returncode}
        if not path.exists() or path.stat().st_size == 0:
            return {"error": "No results written", "stderr": proc.stderr}

        result = pd.read_hdf(path, key="results").iloc[0].to_dict()
        result["stdout"] = proc.stdout
        return result
    finally:
        if not keep:
            path.unlink(missing_ok=True)
