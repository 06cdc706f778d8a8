"""MPI worker - invoked via: mpiexec -n X python -m HeatDiffusion.helpers.runner_helper '{config}'"""

import json
import logging
import sys

from HeatDiffusion import DistributedSolver, GlobalParams, GridState, format_grid

log = logging.getLogger(__name__)


def main(config: dict, comm=None):
    """Run one distributed worker; ``comm`` defaults to MPI COMM_WORLD."""
    if comm is None:
        from HeatDiffusion.mpi.mpi_backend import MPICommunicator

        comm = MPICommunicator()

    config = dict(config)
    output_path = config.pop("output", None)
    print_grid = config.pop("print_grid", False)

    params = GlobalParams(solver="distributed", n_ranks=comm.size, **config)
    grid = GridState.from_params(params) if comm.rank == 0 else None

    solver = DistributedSolver(comm, use_numba=params.use_numba, config=params)
    solver.warmup()
    try:
        solver.run(grid, params.threshold, params.max_iter)
    except Exception as e:
        # Peers blocked in a collective only return once the job is aborted
        log.error(f"Rank {comm.rank}: {e}; aborting MPI job")
        comm.comm.Abort(1)
        raise

    # Save results to HDF5
    if output_path:
        solver.save_hdf5(output_path)

    if comm.rank == 0:
        if print_grid:
            print(format_grid(solver.global_grid.temperatures))
        # Just print the path - runner.py will load the HDF5
        print(f"RESULT:{output_path}")
    return solver


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    main(json.loads(sys.argv[1]))
