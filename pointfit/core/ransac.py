#!/usr/bin/env python3
"""
Random Sample Consensus over a generic model estimator

The model is supplied as a `ModelEstimator`: anything exposing the number of
data points, a fit from a set of sample indices and per-point residuals for
fitted parameters. The estimator repeatedly fits minimal random samples and
keeps the fit supported by the most inliers.
"""

import time
from dataclasses import dataclass, fields, replace
from typing import Any, Generic, Optional, Protocol, TypeVar

import numpy as np

from ..utils.logging import get_logger

logger = get_logger(__name__)

P = TypeVar("P")


class ModelEstimator(Protocol[P]):
    """
    Capability a model must provide to be fitted by RandomSampleConsensus
    """

    def data_count(self) -> int:
        """Number of data points"""
        ...

    def estimate_parameters(self, sample_indices: np.ndarray) -> Optional[P]:
        """Fit parameters to the given data points; None for a degenerate sample"""
        ...

    def compute_residuals(self, params: P) -> np.ndarray:
        """One non-negative residual per data point, shape (N,)"""
        ...


@dataclass(frozen=True)
class RansacConfig:
    """Immutable RANSAC parameters"""

    sample_size: int = 3
    target_inlier_count: int = 100
    max_iterations: int = 100
    max_inlier_residual: float = 0.1
    re_estimate: bool = True
    seed: Optional[int] = None

    def __post_init__(self):
        if self.sample_size < 1:
            raise ValueError("sample_size must be at least 1")
        if self.target_inlier_count < 0:
            raise ValueError("target_inlier_count must be non-negative")
        if self.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")
        if self.max_inlier_residual < 0:
            raise ValueError("max_inlier_residual must be non-negative")

    @classmethod
    def from_dict(cls, params: dict) -> "RansacConfig":
        names = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in params.items() if key in names})

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class RansacResult(Generic[P]):
    parameters: Optional[P]     # best model found, None when no trial succeeded
    residuals: np.ndarray       # residual per data point under `parameters`
    inliers: np.ndarray         # indices with residual <= threshold, ascending
    iterations: int             # trials actually performed
    sample_size: int            # sample size after clamping to the data count
    target_inlier_count: int    # target after clamping to the data count

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)


def _config_property(name: str, doc: str):
    def getter(self):
        return getattr(self._config, name)

    def setter(self, value):
        self.configure(**{name: value})

    return property(getter, setter, doc=doc)


class RandomSampleConsensus(Generic[P]):
    """Robust model fitting by random minimal samples"""

    def __init__(self, model: ModelEstimator[P], sample_size: Optional[int] = None,
                 target_inlier_count: Optional[int] = None, max_iterations: Optional[int] = None,
                 max_inlier_residual: Optional[float] = None, re_estimate: Optional[bool] = None,
                 seed: Optional[int] = None, config: Optional[RansacConfig] = None):
        self.model = model
        overrides = {
            "sample_size": sample_size,
            "target_inlier_count": target_inlier_count,
            "max_iterations": max_iterations,
            "max_inlier_residual": max_inlier_residual,
            "re_estimate": re_estimate,
            "seed": seed,
        }
        self._config = replace(config or RansacConfig(),
                               **{key: value for key, value in overrides.items() if value is not None})
        self._result: Optional[RansacResult[P]] = None

    sample_size = _config_property("sample_size", "Points per minimal sample")
    target_inlier_count = _config_property("target_inlier_count", "Inlier count that stops the search early")
    max_iterations = _config_property("max_iterations", "Trial cap")
    max_inlier_residual = _config_property("max_inlier_residual", "Largest residual counted as inlier")
    re_estimate = _config_property("re_estimate", "Refit on the best inlier set after sampling")
    seed = _config_property("seed", "Random seed; None draws fresh entropy on every run")

    @property
    def config(self) -> RansacConfig:
        return self._config

    def configure(self, **changes) -> "RandomSampleConsensus[P]":
        names = {f.name for f in fields(RansacConfig)}
        unknown = set(changes) - names
        if unknown:
            raise TypeError(f"Unknown RANSAC parameters: {', '.join(sorted(unknown))}")
        new = replace(self._config, **changes)
        if new != self._config:
            self._config = new
            self._result = None
        return self

    def invalidate(self) -> None:
        """Force a new run on next access, e.g. after the model's data changed"""
        self._result = None

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def get_estimation_results(self) -> RansacResult[P]:
        if self._result is None:
            self._result = self._estimate_model()
        return self._result

    def get_model_parameters(self) -> Optional[P]:
        return self.get_estimation_results().parameters

    def get_model_residuals(self) -> np.ndarray:
        return self.get_estimation_results().residuals

    def get_model_inliers(self) -> np.ndarray:
        return self.get_estimation_results().inliers

    @property
    def number_of_inliers(self) -> int:
        return 0 if self._result is None else self._result.num_inliers

    @property
    def iteration_count(self) -> int:
        return 0 if self._result is None else self._result.iterations

    def target_inlier_count_achieved(self) -> bool:
        return self._result is not None and self._result.num_inliers >= self._result.target_inlier_count

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def _inliers_for(self, params: Any):
        residuals = np.asarray(self.model.compute_residuals(params), dtype=float)
        inliers = np.flatnonzero(residuals <= self._config.max_inlier_residual)
        return residuals, inliers

    def _estimate_model(self) -> RansacResult[P]:
        cfg = self._config
        num_points = int(self.model.data_count())
        sample_size = min(cfg.sample_size, num_points)
        target = min(cfg.target_inlier_count, num_points)
        if sample_size != cfg.sample_size or target != cfg.target_inlier_count:
            logger.debug("Clamped sample size to %d and target inlier count to %d (%d data points)",
                         sample_size, target, num_points)

        rng = np.random.default_rng(cfg.seed)
        start_time = time.time()

        best_params = None
        best_residuals = np.zeros(0)
        best_inliers = np.zeros(0, dtype=np.intp)

        perm = rng.permutation(num_points)
        sample_start = 0
        iteration = 0

        while iteration < cfg.max_iterations and sample_size > 0:
            if num_points - sample_start < sample_size:
                rng.shuffle(perm)
                sample_start = 0
            sample = perm[sample_start:sample_start + sample_size].copy()
            sample_start += sample_size
            iteration += 1

            params = self.model.estimate_parameters(sample)
            if params is None:
                continue
            residuals, inliers = self._inliers_for(params)
            if len(inliers) < sample_size:
                continue

            if len(inliers) > len(best_inliers):
                best_params, best_residuals, best_inliers = params, residuals, inliers
                logger.debug("  RANSAC iteration %d: %d inliers", iteration, len(inliers))

            if len(best_inliers) >= target:
                break

        if cfg.re_estimate and len(best_inliers) > 0:
            params = self.model.estimate_parameters(best_inliers)
            if params is not None:
                best_params = params
                best_residuals, best_inliers = self._inliers_for(params)
        elif len(best_inliers) == 0:
            logger.warning("RANSAC found no model supported by at least %d inliers in %d iterations",
                           sample_size, iteration)

        logger.info("RANSAC finished after %d iterations with %d/%d inliers in %.3f s",
                    iteration, len(best_inliers), num_points, time.time() - start_time)

        return RansacResult(
            parameters=best_params,
            residuals=best_residuals,
            inliers=best_inliers,
            iterations=iteration,
            sample_size=sample_size,
            target_inlier_count=target,
        )


def run_ransac(model: ModelEstimator[P], config: Optional[RansacConfig] = None,
               **kwargs) -> RansacResult[P]:
    """One-shot helper: configure, run and return the result"""
    return RandomSampleConsensus(model, config=config, **kwargs).get_estimation_results()
