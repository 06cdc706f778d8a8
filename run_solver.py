"""
Unified Solver Runner - runs sequential, parallel or distributed solvers.

Usage:
    python run_solver.py
    python run_solver.py solver=parallel width=200 height=150
    python run_solver.py solver=distributed n_ranks=4 mlflow.mode=local
"""

import logging
import os
import subprocess
import sys
from dataclasses import asdict

import hydra
from omegaconf import DictConfig, OmegaConf

log = logging.getLogger(__name__)

# Keys forwarded to the mpiexec subprocess as key=value overrides
_FORWARDED_KEYS = [
    "width", "height", "heat_points", "seed", "source_temperature", "solver",
    "threshold", "max_iter", "leaf_size", "n_ranks", "use_numba",
    "experiment_name", "print_grid",
]


def _params_from_cfg(cfg: DictConfig, **overrides):
    """Build validated GlobalParams from the hydra config."""
    from HeatDiffusion import GlobalParams

    raw = OmegaConf.to_container(cfg, resolve=True)
    fields = {k: raw[k] for k in GlobalParams.__dataclass_fields__ if k in raw and k != "environment"}
    fields.update(overrides)
    return GlobalParams(**fields)


def _log_results(cfg: DictConfig, solver, params):
    """Log solver results to MLflow."""
    from utils.mlflow.io import (
        start_mlflow_run_context,
        log_parameters,
        log_metrics_dict,
        log_timeseries_metrics,
    )

    run_name = f"{params.solver}_{params.width}x{params.height}_p{params.n_ranks}"
    with start_mlflow_run_context(
        experiment_name=params.experiment_name,
        parent_run_name=f"{params.width}x{params.height}",
        child_run_name=run_name,
    ):
        log_parameters(params.to_mlflow())
        log_metrics_dict(asdict(solver.metrics))
        log_timeseries_metrics(solver.timeseries)


def _report(cfg: DictConfig, solver, final_grid, iterations: int):
    from HeatDiffusion import report_final

    if cfg.get("print_grid", True):
        report_final(final_grid.temperatures, iterations, solver.metrics.wall_time)
    else:
        log.info(
            f"Done: {iterations} iter, converged={solver.metrics.converged}, "
            f"time={solver.metrics.wall_time:.3f}s"
        )


@hydra.main(config_path="Experiments/hydra-conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Entry point - runs in-process or spawns MPI based on n_ranks."""
    from HeatDiffusion import ConfigurationError, HeatDiffusionError

    try:
        params = _params_from_cfg(cfg)
    except ConfigurationError as e:
        log.error(f"Invalid configuration: {e}")
        sys.exit(2)

    log.info(f"{params.solver}, {params.width}x{params.height}, n_ranks={params.n_ranks}")

    if params.solver == "distributed" and params.n_ranks > 1:
        sys.exit(_spawn_mpi(cfg, params.n_ranks))
    try:
        _run_in_process(cfg, params)
    except HeatDiffusionError as e:
        log.error(f"Run aborted: {e}")
        sys.exit(1)


def _run_in_process(cfg: DictConfig, params):
    """Run a shared-memory solver, or the distributed one on a single simulated rank."""
    from HeatDiffusion import GridState, SimulatedWorld, create_solver
    from utils.mlflow.io import setup_mlflow_tracking

    tracking = setup_mlflow_tracking(mode=cfg.mlflow.mode)
    grid = GridState.from_params(params)

    if params.solver == "distributed":
        comm = SimulatedWorld(1).communicators()[0]
        solver = create_solver(params, comm)
        solver.warmup()
        result = solver.run(grid, params.threshold, params.max_iter)
        final_grid, iterations = solver.global_grid, result.iterations
    else:
        solver = create_solver(params)
        solver.warmup()
        final_grid, iterations = solver.run(grid, params.threshold)

    _report(cfg, solver, final_grid, iterations)
    if tracking:
        _log_results(cfg, solver, params)


def _run_mpi_solver(cfg: DictConfig):
    """Run distributed solver (called within mpiexec subprocess)."""
    from HeatDiffusion import DistributedSolver, GridState
    from HeatDiffusion.mpi.mpi_backend import MPICommunicator
    from utils.mlflow.io import setup_mlflow_tracking

    comm = MPICommunicator()
    params = _params_from_cfg(cfg, n_ranks=comm.size)
    tracking = False
    if comm.rank == 0:
        tracking = setup_mlflow_tracking(mode=cfg.mlflow.mode)

    grid = GridState.from_params(params) if comm.rank == 0 else None
    solver = DistributedSolver(comm, use_numba=params.use_numba, config=params)
    solver.warmup()
    try:
        result = solver.run(grid, params.threshold, params.max_iter)
    except Exception as e:
        log.error(f"Rank {comm.rank}: {e}; aborting MPI job")
        comm.comm.Abort(1)
        raise

    if comm.rank == 0:
        _report(cfg, solver, solver.global_grid, result.iterations)
        if tracking:
            _log_results(cfg, solver, params)


def _spawn_mpi(cfg: DictConfig, n_ranks: int) -> int:
    """Spawn MPI subprocess; returns its exit code."""
    env = os.environ.copy()
    env["MPI_SUBPROCESS"] = "1"

    cmd = ["mpiexec", "-n", str(n_ranks), sys.executable, os.path.abspath(__file__)]
    for key in _FORWARDED_KEYS:
        val = cfg.get(key)
        if val is not None:
            cmd.append(f"{key}={val}")
    cmd.append(f"mlflow.mode={cfg.mlflow.mode}")

    result = subprocess.run(cmd, capture_output=True, text=True, env=env)
    for line in (result.stdout or "").strip().split("\n"):
        if line:
            log.info(line)
    for line in (result.stderr or "").strip().split("\n"):
        if line:
            log.warning(line) if "error" in line.lower() else log.info(line)
    if result.returncode != 0:
        log.error(f"MPI run failed with exit code {result.returncode}")
    return result.returncode


if __name__ == "__main__":
    if os.environ.get("MPI_SUBPROCESS"):
        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

        # Parse key=value args on top of the base config
        base = OmegaConf.load(os.path.join(os.path.dirname(os.path.abspath(__file__)),
                                           "Experiments", "hydra-conf", "config.yaml"))
        base.pop("hydra", None)  # ${now:} resolver only exists under hydra.main
        overrides = OmegaConf.from_dotlist(
            [arg for arg in sys.argv[1:] if "=" in arg and not arg.startswith("-")]
        )
        _run_mpi_solver(OmegaConf.merge(base, overrides))
    else:
        main()
