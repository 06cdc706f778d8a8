"""Headless reporting: progress lines and final grid dumps."""

import logging

import numpy as np

log = logging.getLogger(__name__)


def progress_line(rank: int, iteration: int) -> str:
    return f"Rank {rank} completed iteration {iteration}"


def format_grid(temperatures: np.ndarray) -> str:
    """Row-major dump: one grid row per line, one decimal, space-separated."""
    return "\n".join(
        " ".join(f"{value:.1f}" for value in row) for row in np.asarray(temperatures)
    )


def report_final(temperatures: np.ndarray, iterations: int, wall_time: float = None) -> str:
    """Log the final summary and return the grid dump."""
    log.info(f"Computation finished in {iterations} iterations.")
    if wall_time is not None:
        log.info(f"Runtime: {wall_time * 1000:.0f}ms")
    dump = format_grid(temperatures)
    log.info("Final temperatures:\n" + dump)
    return dump
