"""
Base Bootstrap Class

This module provides a base class for bootstrap implementations: seed
generation for independent repetitions, parallel execution and progress
reporting.
"""

import multiprocessing
import numpy as np
from typing import Any, Callable, Iterator, List, Optional
from tqdm import tqdm
from joblib import Parallel, delayed

from ...settings import Config


# Called with (completed repetitions, total repetitions)
ProgressCallback = Callable[[int, int], None]


class BaseBootstrap:
    """Base class for bootstrap

    Provides common parallel execution, progress bar and progress callback logic.
    """

    def __init__(self, config: Optional[Config] = None):
        """Initialize BaseBootstrap

        Args:
            config: Config object (uses default Config() if None)
        """
        if config is None:
            config = Config()
        self.config = config

    def _generate_iteration_seeds(
        self,
        base_seed: Optional[int] = None,
        n_bootstrap: int = 100,
    ) -> np.ndarray:
        """Generate independent seeds for each iteration

        Args:
            base_seed: Base random seed (get from config if None)
            n_bootstrap: Number of bootstrap iterations

        Returns:
            Array of seeds for each iteration
        """
        if base_seed is None:
            base_seed = getattr(self.config, "random_seed", 42)
        rng_seed = np.random.default_rng(base_seed)
        return rng_seed.integers(0, 2**31, size=n_bootstrap)

    def _resolve_n_jobs(self, n_jobs: Optional[int]) -> int:
        """Number of parallel jobs (config value if None, half the cores if non-positive)"""
        if n_jobs is None:
            n_jobs = self.config.n_jobs
        if n_jobs is None or n_jobs < 1:
            n_jobs = max(1, multiprocessing.cpu_count() // 2)
        return n_jobs

    def _run_parallel_bootstrap(
        self,
        n_bootstrap: int,
        iteration_func: Callable,
        iteration_args: List[tuple],
        n_jobs: Optional[int] = None,
        progress_desc: str = "Running bootstrap",
        verbose: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Iterator[Any]:
        """Execute bootstrap iterations in parallel, yielding results in order

        Args:
            n_bootstrap: Number of bootstrap iterations
            iteration_func: Function to execute each iteration
            iteration_args: List of arguments to pass to each iteration
            n_jobs: Number of jobs for parallel execution
            progress_desc: Progress bar description
            verbose: Whether to display a progress bar (config value if None)
            progress_callback: Called every config.progress_interval completed iterations

        Yields:
            Result of each iteration
        """
        n_jobs = self._resolve_n_jobs(n_jobs)
        if verbose is None:
            verbose = self.config.verbose
        interval = max(1, int(self.config.progress_interval))

        # Threading backend: iterations share the read-only data without pickling
        results = Parallel(n_jobs=n_jobs, backend="threading", return_as="generator")(
            delayed(iteration_func)(*args) for args in iteration_args
        )

        pbar = tqdm(
            total=n_bootstrap,
            desc=progress_desc,
            unit="sample",
            ncols=80,
            colour="green",
            disable=not verbose,
        )
        try:
            for completed, result in enumerate(results, start=1):
                pbar.update(1)
                if progress_callback is not None and completed % interval == 0:
                    progress_callback(completed, n_bootstrap)
                yield result
        finally:
            pbar.close()
