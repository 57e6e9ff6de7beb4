"""
Bootstrap Inference for IPSW

Nonparametric (pairs) bootstrap: resample rows with replacement, refit
the propensity model and recompute the estimate on every resample, and
report the standard deviation of the replicate estimates as the standard
error.

Seeding: SeedSequence(seed).spawn(n_boot) gives each replicate its own
independent PCG64 stream, and replicate b draws its n row positions with
default_rng(child_b).integers(0, n, size=n). Results therefore depend
only on (data, seed, n_boot), not on n_jobs or execution order.

Failed replicates (DataError, FitError, EstimationError on the resample)
are skipped and counted; they are never re-drawn or replaced by a value.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs

from .errors import EstimationError, IVLateError, ReplicateFailure
from .ipsw import estimate_ipsw
from .utils import require_columns

logger = logging.getLogger(__name__)

B_DEFAULT = 500
DEFAULT_SEED = 52
MAX_FAILURE_RATE = 0.10


@dataclass
class BootstrapResult:
    """
    Point estimate and bootstrap summary.

    Unpacks as ``estimate, se = result``.

    Attributes
    ----------
    estimate : float
        Full-sample point estimate.
    se : float
        Standard deviation of the successful replicate estimates.
    ci_lower, ci_upper : float
        2.5th and 97.5th percentiles of the replicate estimates.
    boot_mean : float
        Mean of the replicate estimates.
    boot_estimates : ndarray
        Successful replicate estimates, in replicate order.
    n_boot : int
        Replicates requested.
    n_failed : int
        Replicates that raised and were skipped.
    reliable : bool
        False when the failure rate exceeds the configured threshold.
    stopped_early : bool
        True when should_stop ended the loop before n_boot replicates.
    seed : int or None
    ddof : int
        Delta degrees of freedom used for the standard deviation.
    failures : list of ReplicateFailure
    """
    estimate: float
    se: float
    ci_lower: float
    ci_upper: float
    boot_mean: float
    boot_estimates: np.ndarray
    n_boot: int
    n_failed: int
    reliable: bool
    stopped_early: bool = False
    seed: int = None
    ddof: int = 1
    failures: list = field(default_factory=list)

    @property
    def n_success(self):
        return len(self.boot_estimates)

    @property
    def n_completed(self):
        """Replicates run, successful or not."""
        return self.n_success + self.n_failed

    @property
    def failure_rate(self):
        if self.n_completed == 0:
            return 0.0
        return self.n_failed / self.n_completed

    def __iter__(self):
        return iter((self.estimate, self.se))

    def summary(self):
        lines = [
            f"estimate   {self.estimate: .6f}",
            f"boot SE    {self.se: .6f}",
            f"95% CI    [{self.ci_lower: .6f}, {self.ci_upper: .6f}]",
            f"replicates {self.n_success}/{self.n_completed} succeeded",
        ]
        if self.stopped_early:
            lines.append(f"stopped early after {self.n_completed} of {self.n_boot}")
        if not self.reliable:
            lines.append(
                f"UNRELIABLE: {self.failure_rate:.1%} of replicates failed"
            )
        return "\n".join(lines)


def replicate_indices(n, seed_seq):
    """Row positions for one resample of size n."""
    return np.random.default_rng(seed_seq).integers(0, n, size=n)


def _run_replicate(data, estimator, b, seed_seq):
    idx = replicate_indices(len(data), seed_seq)
    resample = data.iloc[idx].reset_index(drop=True)
    try:
        return b, float(estimator(resample)), None
    except IVLateError as exc:
        return b, None, ReplicateFailure(b, exc)


def bootstrap_statistic(data, estimator, n_boot=B_DEFAULT, seed=DEFAULT_SEED,
                        ddof=1, max_failure_rate=MAX_FAILURE_RATE, n_jobs=1,
                        should_stop=None):
    """
    Nonparametric bootstrap for an arbitrary estimator.

    Parameters
    ----------
    data : DataFrame
        Dataset; read only.
    estimator : callable
        Function (DataFrame) -> float.
    n_boot : int
        Number of bootstrap replications.
    seed : int or None
        Seed for SeedSequence; None draws fresh OS entropy.
    ddof : int
        1 for the sample standard deviation (as R's sd()), 0 for the
        population version.
    max_failure_rate : float
        Results with a larger share of failed replicates are flagged
        ``reliable=False``.
    n_jobs : int
        Parallel workers (joblib, thread backend). 1 runs sequentially.
    should_stop : callable or None
        Called with the number of completed replicates; returning True
        ends the loop and the partial result is returned. Checked after
        every replicate when sequential, after every batch of n_jobs
        replicates otherwise.

    Returns
    -------
    BootstrapResult

    Raises
    ------
    IVLateError
        From the full-sample estimate; this is fatal.
    EstimationError
        Fewer than two replicates succeeded.
    """
    if n_boot < 2:
        raise ValueError(f"n_boot must be at least 2, got {n_boot}")
    require_columns(data, [])

    estimate = float(estimator(data))

    children = np.random.SeedSequence(seed).spawn(n_boot)
    outcomes = []
    stopped = False

    if n_jobs == 1:
        for b, child in enumerate(children):
            outcomes.append(_run_replicate(data, estimator, b, child))
            if should_stop is not None and b + 1 < n_boot and should_stop(b + 1):
                stopped = True
                break
    else:
        workers = Parallel(n_jobs=n_jobs, prefer="threads")
        step = n_boot if should_stop is None else effective_n_jobs(n_jobs)
        for start in range(0, n_boot, step):
            batch = range(start, min(start + step, n_boot))
            outcomes.extend(workers(
                delayed(_run_replicate)(data, estimator, b, children[b])
                for b in batch
            ))
            done = len(outcomes)
            if should_stop is not None and done < n_boot and should_stop(done):
                stopped = True
                break

    outcomes.sort(key=lambda o: o[0])
    boots = np.array([est for _, est, _ in outcomes if est is not None])
    failures = [fail for _, _, fail in outcomes if fail is not None]
    for fail in failures:
        logger.debug("bootstrap %s", fail)

    if len(boots) < 2:
        raise EstimationError(
            f"only {len(boots)} of {len(outcomes)} bootstrap replicates "
            f"succeeded; the standard error is undefined"
        )

    failure_rate = len(failures) / len(outcomes)
    reliable = failure_rate <= max_failure_rate
    if not reliable:
        logger.warning(
            "%d of %d bootstrap replicates failed (%.1f%% > %.1f%%); "
            "the standard error is unreliable",
            len(failures), len(outcomes), 100 * failure_rate,
            100 * max_failure_rate,
        )
    elif failures:
        logger.info("%d of %d bootstrap replicates failed and were skipped",
                    len(failures), len(outcomes))

    ci = np.percentile(boots, [2.5, 97.5])
    return BootstrapResult(
        estimate=estimate,
        se=float(np.std(boots, ddof=ddof)),
        ci_lower=float(ci[0]),
        ci_upper=float(ci[1]),
        boot_mean=float(np.mean(boots)),
        boot_estimates=boots,
        n_boot=n_boot,
        n_failed=len(failures),
        reliable=reliable,
        stopped_early=stopped,
        seed=seed,
        ddof=ddof,
        failures=failures,
    )


def bootstrap_se(data, formula, n_boot=B_DEFAULT, seed=DEFAULT_SEED,
                 outcome="Y", treatment="D", ddof=1,
                 max_failure_rate=MAX_FAILURE_RATE, n_jobs=1,
                 should_stop=None, **fit_kw):
    """
    IPSW point estimate with bootstrap standard error.

    Parameters
    ----------
    data : DataFrame
        Dataset with outcome, treatment, instrument and covariates.
    formula : str
        ``"Z ~ covariates"`` for the instrument propensity score.
    n_boot : int
        Number of bootstrap replications.
    seed : int or None
        Random seed.
    outcome, treatment : str
        Field names.
    ddof, max_failure_rate, n_jobs, should_stop
        See bootstrap_statistic.
    **fit_kw
        Passed to fit_propensity.

    Returns
    -------
    BootstrapResult
        ``estimate, se = bootstrap_se(...)`` also works.
    """
    def _ipsw(df):
        return estimate_ipsw(df, formula, outcome, treatment, **fit_kw)

    return bootstrap_statistic(
        data, _ipsw, n_boot=n_boot, seed=seed, ddof=ddof,
        max_failure_rate=max_failure_rate, n_jobs=n_jobs,
        should_stop=should_stop,
    )
