"""GARCH(1,1) volatility estimation and forecasting."""
from __future__ import annotations

import logging
import warnings
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from arch import arch_model
from arch.utility.exceptions import ConvergenceWarning
from scipy.signal import lfilter

from cryptopredict.config import GARCHConfig
from cryptopredict.core.returns import compute_log_returns, horizon_to_steps
from cryptopredict.errors import InsufficientDataError

logger = logging.getLogger(__name__)

VARIANCE_FLOOR = 1e-8
OMEGA_INIT = 1e-4
ALPHA_INIT = 0.1
BETA_INIT = 0.85
ALPHA_MAX = 0.5
BETA_MAX = 0.95
PERSISTENCE_TARGET = 0.99
NUM_PARAMS = 4

IterationCallback = Callable[[int, "GARCHParameters"], None]


@dataclass(frozen=True)
class GARCHParameters:
    """Fitted GARCH(1,1) parameters in raw return units."""

    omega: float
    alpha: float
    beta: float
    mu: float
    log_likelihood: float = float("nan")
    aic: float = float("nan")
    bic: float = float("nan")
    gamma: Optional[float] = None

    @property
    def persistence(self) -> float:
        return self.alpha + self.beta

    def to_dict(self) -> Dict[str, Optional[float]]:
        return asdict(self)


@dataclass(frozen=True)
class VolatilityPrediction:
    """Per-request volatility forecast; recomputed on demand, never persisted."""

    symbol: str
    timestamp: datetime
    horizon: float
    predicted_volatility: List[float]
    confidence: float
    parameters: GARCHParameters
    r2: float
    mse: float
    model_type: str = "GARCH(1,1)"
    metadata: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "horizon": self.horizon,
            "predictedVolatility": list(self.predicted_volatility),
            "confidence": self.confidence,
            "modelType": self.model_type,
            "parameters": self.parameters.to_dict(),
            "r2": self.r2,
            "mse": self.mse,
            "metadata": dict(self.metadata),
        }


def conditional_variances(
    residuals: np.ndarray,
    omega: float,
    alpha: float,
    beta: float,
    initial_variance: float,
) -> np.ndarray:
    """
    Variance path ``h_t = omega + alpha * e_{t-1}^2 + beta * h_{t-1}`` with
    ``h_1 = initial_variance``.

    The recursion is a first-order IIR filter, so it is evaluated with
    ``lfilter`` instead of a Python loop.
    """
    variances = np.empty_like(residuals, dtype=np.float64)
    if variances.size == 0:
        return variances
    variances[0] = initial_variance
    if variances.size > 1:
        drive = omega + alpha * residuals[:-1] ** 2
        variances[1:], _ = lfilter([1.0], [1.0, -beta], drive, zi=[beta * initial_variance])
    return variances


def gaussian_log_likelihood(residuals: np.ndarray, variances: np.ndarray) -> float:
    return float(np.sum(-0.5 * (np.log(2.0 * np.pi * variances) + residuals**2 / variances)))


def _score(residuals: np.ndarray, variances: np.ndarray, alpha: float, beta: float) -> np.ndarray:
    """Mean per-observation gradient of the log-likelihood w.r.t. (omega, alpha, beta, mu)."""
    n = residuals.size
    dl_dh = 0.5 * (residuals**2 / variances**2 - 1.0 / variances)
    drives = np.vstack(
        [
            np.ones(n - 1),
            residuals[:-1] ** 2,
            variances[:-1],
            -2.0 * alpha * residuals[:-1],
        ]
    )
    dh = np.zeros((NUM_PARAMS, n))
    # dh_1/dtheta is zero: the first variance is the sample variance.
    dh[:, 1:] = lfilter([1.0], [1.0, -beta], drives, axis=1)
    grad = (dh * dl_dh).mean(axis=1)
    grad[3] += float(np.mean(residuals / variances))
    return np.nan_to_num(grad, nan=0.0, posinf=0.0, neginf=0.0)


def _constrain(omega: float, alpha: float, beta: float, omega_floor: float) -> Tuple[float, float, float]:
    """Apply parameter bounds and the stationarity rescue."""
    omega = max(float(omega), omega_floor)
    alpha = min(max(float(alpha), 0.0), ALPHA_MAX)
    beta = min(max(float(beta), 0.0), BETA_MAX)
    if alpha + beta >= 1.0:
        factor = PERSISTENCE_TARGET / (alpha + beta)
        alpha *= factor
        beta *= factor
    return omega, alpha, beta


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GARCHVolatilityEstimator:
    """
    GARCH(1,1) fitted by gradient-ascent maximum likelihood.

    Returns are standardised by their sample deviation before fitting so a
    single learning rate works across assets whose return scale differs by
    orders of magnitude; ``omega`` and ``mu`` are mapped back afterwards and
    every reported quantity is in raw return units. Fitting never fails on
    non-convergence: the best parameters seen within ``max_iterations`` are
    kept.
    """

    def __init__(
        self,
        config: Optional[GARCHConfig] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.config = config or GARCHConfig()
        self._clock = clock
        self._params: Optional[GARCHParameters] = None
        self._returns: Optional[np.ndarray] = None
        self._variances: Optional[np.ndarray] = None
        self.iterations_ = 0

    @property
    def parameters(self) -> Optional[GARCHParameters]:
        return self._params

    def conditional_variance(self) -> np.ndarray:
        self._require_fit()
        return self._variances.copy()

    def _prepare(self, returns: Sequence[float]) -> Tuple[np.ndarray, float]:
        data = np.asarray(returns, dtype=np.float64).ravel()
        data = data[np.isfinite(data)]
        if data.size < self.config.min_returns:
            raise InsufficientDataError(self.config.min_returns, int(data.size), "returns")
        scale = float(np.std(data))
        # Degenerate (constant or subnormal) series are fitted unscaled.
        if not np.isfinite(scale) or scale < 1e-12:
            scale = 1.0
        return data, scale

    def fit(self, returns: Sequence[float], callback: Optional[IterationCallback] = None) -> GARCHParameters:
        """
        Estimate ``(omega, alpha, beta, mu)`` from a return series.

        ``callback(iteration, params)`` runs after every update with the
        bounded, stationarity-corrected parameters; ``params.log_likelihood``
        is the value evaluated at the start of that iteration.
        """
        data, scale = self._prepare(returns)
        x = data / scale
        floor = VARIANCE_FLOOR / scale**2
        initial_variance = max(float(np.var(x)), floor)

        omega, alpha, beta = _constrain(OMEGA_INIT / scale**2, ALPHA_INIT, BETA_INIT, floor)
        mu = float(np.mean(x))
        best = (omega, alpha, beta, mu)
        best_ll = -np.inf
        iterations = 0

        for iteration in range(self.config.max_iterations):
            iterations = iteration + 1
            residuals = x - mu
            variances = conditional_variances(residuals, omega, alpha, beta, initial_variance)
            ll = gaussian_log_likelihood(residuals, variances)
            if ll > best_ll:
                improvement = ll - best_ll
                best_ll = ll
                best = (omega, alpha, beta, mu)
                if improvement < self.config.tolerance:
                    break

            grad = _score(residuals, variances, alpha, beta)
            rate = self.config.base_learning_rate / (1.0 + 0.1 * iteration)
            omega, alpha, beta = _constrain(
                omega + rate * grad[0],
                alpha + rate * grad[1],
                beta + rate * grad[2],
                floor,
            )
            mu = mu + rate * grad[3]
            if callback is not None:
                callback(
                    iteration,
                    GARCHParameters(
                        omega=omega * scale**2,
                        alpha=alpha,
                        beta=beta,
                        mu=mu * scale,
                        log_likelihood=ll - x.size * np.log(scale),
                    ),
                )

        self.iterations_ = iterations
        omega, alpha, beta, mu = best
        return self._finalize(data, omega * scale**2, alpha, beta, mu * scale)

    def _finalize(self, data: np.ndarray, omega: float, alpha: float, beta: float, mu: float) -> GARCHParameters:
        residuals = data - mu
        variances = conditional_variances(
            residuals, omega, alpha, beta, max(float(np.var(data)), VARIANCE_FLOOR)
        )
        variances = np.maximum(variances, VARIANCE_FLOOR)
        ll = gaussian_log_likelihood(residuals, variances)
        n = data.size
        params = GARCHParameters(
            omega=omega,
            alpha=alpha,
            beta=beta,
            mu=mu,
            log_likelihood=ll,
            aic=2 * NUM_PARAMS - 2 * ll,
            bic=NUM_PARAMS * np.log(n) - 2 * ll,
        )
        self._params = params
        self._returns = data
        self._variances = variances
        logger.info(
            "GARCH(1,1) fit | n=%d iterations=%d omega=%.3e alpha=%.4f beta=%.4f mu=%.3e ll=%.3f",
            n,
            self.iterations_,
            omega,
            alpha,
            beta,
            mu,
            ll,
        )
        return params

    def _require_fit(self) -> GARCHParameters:
        if self._params is None:
            raise RuntimeError("GARCH estimator must be fitted before use.")
        return self._params

    def forecast(
        self,
        horizon: int,
        parameters: Optional[GARCHParameters] = None,
        last_variance: Optional[float] = None,
    ) -> np.ndarray:
        """
        Volatility path for ``horizon`` steps after the last fitted variance.

        Future shocks are unknown, so the expected squared residual equals
        the current variance: ``h <- omega + (alpha + beta) * h``.
        """
        if horizon < 1:
            raise ValueError("Forecast horizon must be at least one step.")
        params = parameters or self._require_fit()
        if last_variance is None:
            self._require_fit()
            last_variance = float(self._variances[-1])
        variance = max(float(last_variance), VARIANCE_FLOOR)
        path = np.empty(horizon, dtype=np.float64)
        for step in range(horizon):
            variance = params.omega + (params.alpha + params.beta) * variance
            path[step] = np.sqrt(max(variance, 0.0))
        return path

    def goodness_of_fit(self) -> Tuple[float, float]:
        """``(r2, mse)`` of fitted variances against squared mean-centred returns."""
        params = self._require_fit()
        squared = (self._returns - params.mu) ** 2
        ss_res = float(np.sum((squared - self._variances) ** 2))
        ss_tot = float(np.sum((squared - squared.mean()) ** 2))
        r2 = max(1.0 - ss_res / ss_tot, 0.0) if ss_tot > 0 else 0.0
        return r2, ss_res / squared.size

    def predict_volatility(
        self,
        symbol: str,
        prices: Sequence[float],
        horizon_seconds: float,
    ) -> VolatilityPrediction:
        """Fit on ``prices`` (closes) and forecast over ``horizon_seconds``."""
        closes = np.asarray(prices, dtype=np.float64).ravel()
        if closes.size < self.config.min_observations:
            raise InsufficientDataError(self.config.min_observations, int(closes.size), "price observations")
        params = self.fit(compute_log_returns(closes))
        steps = horizon_to_steps(horizon_seconds, self.config.step_seconds)
        path = self.forecast(steps)
        r2, mse = self.goodness_of_fit()
        confidence = min(max(r2, 0.0), 1.0)
        logger.info(
            "Generated volatility prediction | symbol=%s horizon=%.0fs steps=%d confidence=%.4f",
            symbol,
            horizon_seconds,
            steps,
            confidence,
        )
        return VolatilityPrediction(
            symbol=symbol,
            timestamp=self._clock(),
            horizon=float(horizon_seconds),
            predicted_volatility=[float(value) for value in path],
            confidence=confidence,
            parameters=params,
            r2=r2,
            mse=mse,
            metadata={"steps": str(steps), "backend": self.config.backend},
        )


class ArchGARCHEstimator(GARCHVolatilityEstimator):
    """Same model and outputs, with parameters estimated by the ``arch`` package."""

    def fit(self, returns: Sequence[float], callback: Optional[IterationCallback] = None) -> GARCHParameters:
        data, scale = self._prepare(returns)
        floor = VARIANCE_FLOOR / scale**2
        try:
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always")
                model = arch_model(
                    pd.Series(data / scale),
                    mean="Constant",
                    vol="GARCH",
                    p=1,
                    q=1,
                    dist="normal",
                    rescale=False,
                )
                result = model.fit(disp="off")
            params = result.params
            values = [float(params["omega"]), float(params["alpha[1]"]), float(params["beta[1]"]), float(params["mu"])]
            if not np.all(np.isfinite(values)):
                raise ValueError("arch returned non-finite parameters")
        except Exception as exc:  # noqa: BLE001
            logger.warning("arch GARCH fit failed (%s); using gradient-ascent fit", exc)
            return super().fit(returns, callback=callback)

        if any(issubclass(item.category, ConvergenceWarning) for item in caught):
            logger.warning("arch GARCH fit reported a convergence warning; keeping its estimate")
        omega, alpha, beta = _constrain(values[0], values[1], values[2], floor)
        mu = values[3]
        logger.debug(
            "arch GARCH raw estimate | loglik=%.3f (raw units %.3f)",
            float(result.loglikelihood),
            float(result.loglikelihood) - data.size * np.log(scale),
        )
        self.iterations_ = 0
        params = self._finalize(data, omega * scale**2, alpha, beta, mu * scale)
        if callback is not None:
            callback(0, params)
        return params


def build_estimator(config: Optional[GARCHConfig] = None, **kwargs) -> GARCHVolatilityEstimator:
    """Return the estimator selected by ``config.backend``."""
    config = config or GARCHConfig()
    backend = config.backend.lower()
    if backend == "arch":
        return ArchGARCHEstimator(config, **kwargs)
    if backend != "native":
        raise ValueError(f"Unknown GARCH backend '{config.backend}'")
    return GARCHVolatilityEstimator(config, **kwargs)


__all__ = [
    "ArchGARCHEstimator",
    "GARCHParameters",
    "GARCHVolatilityEstimator",
    "VolatilityPrediction",
    "build_estimator",
    "conditional_variances",
    "gaussian_log_likelihood",
]
