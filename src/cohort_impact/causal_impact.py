"""
Causal Impact Analyzer
======================

Estimates the causal effect of an intervention on a business metric with
a Bayesian structural time series counterfactual.

A structural time series (local level, optional trend and seasonality,
plus a regression on control series) is fit on the pre-period only and
forecast over the post-period. The gap between the observed response and
that counterfactual is the effect.

Key Features:
- statsmodels UnobservedComponents state-space model
- Control series as regressors (synthetic control)
- Pointwise prediction intervals from the forecast distribution
- Posterior-predictive simulations for average/cumulative/relative effects
- Tail-area p-value on the cumulative effect
- In-time placebo test
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_percentage_error, mean_squared_error
from statsmodels.tsa.statespace.structural import UnobservedComponents

from .exceptions import InvalidInputError

logger = logging.getLogger(__name__)

Period = Tuple[Any, Any]


@dataclass
class CausalImpactResult:
    """Container for causal impact analysis results."""
    # Series over the full data index (NaN where the model has no estimate)
    actual: pd.Series
    predicted: pd.Series
    predicted_lower: pd.Series
    predicted_upper: pd.Series
    point_effect: pd.Series
    point_effect_lower: pd.Series
    point_effect_upper: pd.Series
    cumulative_effect_series: pd.Series

    # Post-period averages
    average_actual: float
    average_predicted: float
    average_predicted_lower: float
    average_predicted_upper: float
    average_effect: float
    average_effect_lower: float
    average_effect_upper: float

    # Post-period sums
    cumulative_actual: float
    cumulative_predicted: float
    cumulative_predicted_lower: float
    cumulative_predicted_upper: float
    cumulative_effect: float
    cumulative_effect_lower: float
    cumulative_effect_upper: float

    # Relative effect (cumulative effect / cumulative prediction)
    relative_effect: float
    relative_effect_lower: float
    relative_effect_upper: float

    # Inference. p_value is the posterior tail-area probability of the
    # observed post-period sum: the smaller of the upper and lower tail
    # counts over the simulated sums, (k + 1) / (n + 1). It is not doubled,
    # and `significant` is p_value < alpha.
    p_value: float
    significant: bool
    credible_interval: float

    # Periods
    pre_period: Period
    post_period: Period
    response_col: str
    predictor_cols: List[str]

    # Pre-period fit
    pre_period_mape: float
    pre_period_rmse: float

    model_params: Dict[str, float] = field(default_factory=dict)
    diagnostics: Dict = field(default_factory=dict)
    method: str = 'bsts'

    @property
    def alpha(self) -> float:
        return 1 - self.credible_interval

    def summary(self) -> pd.DataFrame:
        """Average and cumulative estimates over the post-period."""
        rows = {
            'Actual': (self.average_actual, self.cumulative_actual),
            'Prediction': (self.average_predicted, self.cumulative_predicted),
            'Prediction lower': (self.average_predicted_lower, self.cumulative_predicted_lower),
            'Prediction upper': (self.average_predicted_upper, self.cumulative_predicted_upper),
            'Absolute effect': (self.average_effect, self.cumulative_effect),
            'Absolute effect lower': (self.average_effect_lower, self.cumulative_effect_lower),
            'Absolute effect upper': (self.average_effect_upper, self.cumulative_effect_upper),
            'Relative effect': (self.relative_effect, self.relative_effect),
            'Relative effect lower': (self.relative_effect_lower, self.relative_effect_lower),
            'Relative effect upper': (self.relative_effect_upper, self.relative_effect_upper),
        }
        return pd.DataFrame.from_dict(rows, orient='index', columns=['Average', 'Cumulative'])

    def report(self) -> str:
        """Plain-language interpretation of the result."""
        level = f"{self.credible_interval:.0%}"
        direction = 'increase' if self.cumulative_effect >= 0 else 'decrease'

        lines = [
            f"During the post-intervention period, the response variable had an "
            f"average value of approx. {self.average_actual:,.2f}. In the absence of "
            f"an intervention, we would have expected an average response of "
            f"{self.average_predicted:,.2f} ({level} interval "
            f"[{self.average_predicted_lower:,.2f}, {self.average_predicted_upper:,.2f}]).",
            f"Subtracting this prediction from the observed response yields an "
            f"estimated causal effect of {self.average_effect:,.2f} per period "
            f"([{self.average_effect_lower:,.2f}, {self.average_effect_upper:,.2f}]) "
            f"and {self.cumulative_effect:,.2f} in total.",
            f"In relative terms, the response showed an {direction} of "
            f"{self.relative_effect:+.1%} ([{self.relative_effect_lower:+.1%}, "
            f"{self.relative_effect_upper:+.1%}]).",
        ]
        if self.significant:
            lines.append(
                f"The probability of obtaining this effect by chance is very small "
                f"(tail-area p = {self.p_value:.3f}), so the effect is statistically "
                f"significant at the {self.alpha:.2f} level."
            )
        else:
            lines.append(
                f"The effect could be the result of random fluctuation "
                f"(tail-area p = {self.p_value:.3f}) and is not statistically "
                f"significant at the {self.alpha:.2f} level."
            )
        return '\n\n'.join(lines)


def _coerce_label(index: pd.Index, label):
    if isinstance(index, pd.DatetimeIndex) and not isinstance(label, pd.Timestamp):
        try:
            return pd.Timestamp(label)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Cannot interpret {label!r} as a date") from exc
    return label


def _period_positions(index: pd.Index, period: Period, name: str) -> np.ndarray:
    if len(period) != 2:
        raise InvalidInputError(f"{name} must be a (start, end) pair, got {period!r}")
    start, end = (_coerce_label(index, p) for p in period)
    if start > end:
        raise InvalidInputError(f"{name} start {start} is after its end {end}")

    positions = np.flatnonzero((index >= start) & (index <= end))
    if len(positions) == 0:
        raise InvalidInputError(f"{name} {period!r} contains no observations")
    return positions


def periods_from_split(index: pd.Index, intervention) -> Tuple[Period, Period]:
    """
    Split an index into pre and post periods at ``intervention``.

    The post-period starts at the first label >= ``intervention``.
    """
    index = pd.Index(index)
    intervention = _coerce_label(index, intervention)

    before = index[index < intervention]
    after = index[index >= intervention]
    if len(before) == 0 or len(after) == 0:
        raise InvalidInputError(
            f"Intervention {intervention} leaves an empty pre or post period"
        )
    return (before[0], before[-1]), (after[0], after[-1])


class CausalImpactAnalyzer:
    """
    Causal impact analysis with a structural time series counterfactual.

    Parameters
    ----------
    credible_interval : float
        Interval width for all reported intervals (default: 0.95)
    n_simulations : int
        Posterior-predictive draws for effect intervals and p-value
    level : str
        UnobservedComponents level specification ('llevel', 'lltrend', ...)
    trend : bool
        Use a local linear trend instead of a local level
    nseasons : int, optional
        Length of a seasonal cycle, e.g. 7 for daily data
    standardize : bool
        Standardize response and predictors with pre-period moments
    max_iter : int
        Maximum MLE iterations
    random_state : int
        Seed for the simulations
    """

    def __init__(
        self,
        credible_interval: float = 0.95,
        n_simulations: int = 1000,
        level: str = 'llevel',
        trend: bool = False,
        nseasons: Optional[int] = None,
        standardize: bool = True,
        max_iter: int = 500,
        random_state: int = 42
    ):
        if not 0 < credible_interval < 1:
            raise InvalidInputError("credible_interval must be in (0, 1)")
        if n_simulations < 1:
            raise InvalidInputError("n_simulations must be positive")

        self.credible_interval = credible_interval
        self.n_simulations = n_simulations
        self.level = level
        self.trend = trend
        self.nseasons = nseasons
        self.standardize = standardize
        self.max_iter = max_iter
        self.random_state = random_state

    def _validate(
        self,
        data: pd.DataFrame,
        response_col: Optional[str],
        predictor_cols: Optional[Sequence[str]]
    ) -> Tuple[str, List[str]]:
        if not isinstance(data, pd.DataFrame) or data.empty:
            raise InvalidInputError("data must be a non-empty DataFrame")
        if not data.index.is_monotonic_increasing:
            raise InvalidInputError("data index must be sorted in increasing order")

        response_col = response_col if response_col is not None else data.columns[0]
        if predictor_cols is None:
            predictor_cols = [c for c in data.columns if c != response_col]
        predictor_cols = list(predictor_cols)

        missing = [c for c in [response_col] + predictor_cols if c not in data.columns]
        if missing:
            raise InvalidInputError(f"Missing columns: {missing}")
        if response_col in predictor_cols:
            raise InvalidInputError("Response column cannot also be a predictor")
        if predictor_cols and data[predictor_cols].isna().any().any():
            raise InvalidInputError("Predictor columns must not contain missing values")

        return response_col, predictor_cols

    def _build_model(self, y: np.ndarray, X: Optional[np.ndarray]) -> UnobservedComponents:
        # A string level spec overrides the boolean component flags
        level = 'lltrend' if self.trend and self.level == 'llevel' else self.level
        return UnobservedComponents(
            y,
            level=level,
            seasonal=self.nseasons,
            exog=X
        )

    def analyze(
        self,
        data: pd.DataFrame,
        pre_period: Period,
        post_period: Period,
        response_col: Optional[str] = None,
        predictor_cols: Optional[Sequence[str]] = None
    ) -> CausalImpactResult:
        """
        Analyze the causal impact of an intervention.

        Parameters
        ----------
        data : pd.DataFrame
            Time-indexed table with one response column and zero or more
            predictor columns
        pre_period : (start, end)
            Inclusive index labels of the training period
        post_period : (start, end)
            Inclusive index labels of the evaluation period
        response_col : str, optional
            Response column (default: first column)
        predictor_cols : list of str, optional
            Predictor columns (default: every other column)

        Returns
        -------
        CausalImpactResult
        """
        response_col, predictor_cols = self._validate(data, response_col, predictor_cols)

        pre_pos = _period_positions(data.index, pre_period, 'pre_period')
        post_pos = _period_positions(data.index, post_period, 'post_period')
        if pre_pos[-1] >= post_pos[0]:
            raise InvalidInputError("pre_period must end before post_period starts")
        if len(pre_pos) < 3:
            raise InvalidInputError("pre_period needs at least 3 observations")

        y = data[response_col].astype(float).values
        if np.isnan(y[post_pos]).any():
            raise InvalidInputError("Response must not be missing in the post-period")
        X = data[predictor_cols].astype(float).values if predictor_cols else None

        # Standardize with pre-period moments
        y_mean, y_std = 0.0, 1.0
        if self.standardize:
            y_mean = np.nanmean(y[pre_pos])
            y_std = np.nanstd(y[pre_pos]) or 1.0
        y_s = (y - y_mean) / y_std

        X_s = None
        if X is not None:
            X_s = X.copy()
            if self.standardize:
                x_mean = X[pre_pos].mean(axis=0)
                x_std = X[pre_pos].std(axis=0)
                x_std[x_std == 0] = 1.0
                X_s = (X - x_mean) / x_std

        # Fit on the pre-period only
        fit_pos = np.arange(pre_pos[0], pre_pos[-1] + 1)
        model = self._build_model(y_s[fit_pos], X_s[fit_pos] if X_s is not None else None)
        fitted = model.fit(disp=False, maxiter=self.max_iter)

        if not fitted.mle_retvals.get('converged', True):
            warnings.warn(
                "Structural time series fit did not converge; estimates may be unreliable"
            )
        logger.debug("Fitted %s with params %s", self.level, dict(zip(fitted.param_names, fitted.params)))

        alpha = 1 - self.credible_interval

        # In-sample one-step-ahead predictions
        in_sample = fitted.get_prediction()
        pre_mean = np.asarray(in_sample.predicted_mean)
        pre_ci = np.asarray(in_sample.conf_int(alpha=alpha))

        # Out-of-sample counterfactual through the end of the post-period
        forecast_pos = np.arange(pre_pos[-1] + 1, post_pos[-1] + 1)
        n_steps = len(forecast_pos)
        X_future = X_s[forecast_pos] if X_s is not None else None
        forecast = fitted.get_forecast(steps=n_steps, exog=X_future)
        post_mean = np.asarray(forecast.predicted_mean)
        post_ci = np.asarray(forecast.conf_int(alpha=alpha))

        sims = fitted.simulate(
            nsimulations=n_steps,
            repetitions=self.n_simulations,
            anchor='end',
            exog=X_future,
            random_state=self.random_state
        )
        sims = np.asarray(sims).reshape(n_steps, -1) * y_std + y_mean

        # Assemble full-range series
        n = len(data)
        predicted = np.full(n, np.nan)
        lower = np.full(n, np.nan)
        upper = np.full(n, np.nan)

        predicted[fit_pos] = pre_mean * y_std + y_mean
        lower[fit_pos] = pre_ci[:, 0] * y_std + y_mean
        upper[fit_pos] = pre_ci[:, 1] * y_std + y_mean
        predicted[forecast_pos] = post_mean * y_std + y_mean
        lower[forecast_pos] = post_ci[:, 0] * y_std + y_mean
        upper[forecast_pos] = post_ci[:, 1] * y_std + y_mean

        point_effect = y - predicted
        point_lower = y - upper
        point_upper = y - lower

        post_mask = np.zeros(n, dtype=bool)
        post_mask[post_pos] = True
        cumulative = np.where(post_mask, point_effect, 0.0).cumsum()
        cumulative[:post_pos[0]] = np.nan

        # Effect distribution from simulations over post-period rows
        post_offsets = post_pos - forecast_pos[0]
        sim_post = sims[post_offsets]
        n_post = len(post_pos)

        y_post = y[post_pos]
        actual_sum = y_post.sum()
        predicted_sum = predicted[post_pos].sum()
        sim_sums = sim_post.sum(axis=0)

        lo_q, hi_q = alpha / 2 * 100, (1 - alpha / 2) * 100
        pred_sum_lower, pred_sum_upper = np.percentile(sim_sums, [lo_q, hi_q])
        effect_sums = actual_sum - sim_sums
        effect_sum_lower, effect_sum_upper = np.percentile(effect_sums, [lo_q, hi_q])

        with np.errstate(divide='ignore', invalid='ignore'):
            relative_samples = effect_sums / sim_sums
        relative_samples = relative_samples[np.isfinite(relative_samples)]
        relative_effect = (actual_sum - predicted_sum) / predicted_sum if predicted_sum != 0 else np.nan
        if len(relative_samples):
            rel_lower, rel_upper = np.percentile(relative_samples, [lo_q, hi_q])
        else:
            rel_lower = rel_upper = np.nan

        # Smaller of the two tail areas, compared with alpha without doubling
        tail = min(np.sum(sim_sums >= actual_sum), np.sum(sim_sums <= actual_sum))
        p_value = (tail + 1) / (len(sim_sums) + 1)

        # Pre-period fit, skipping the diffuse first observation
        fit_eval = fit_pos[1:] if len(fit_pos) > 1 else fit_pos
        valid = ~np.isnan(y[fit_eval])
        actual_fit = y[fit_eval][valid]
        predicted_fit = predicted[fit_eval][valid]
        pre_mape = mean_absolute_percentage_error(actual_fit, predicted_fit) * 100
        pre_rmse = np.sqrt(mean_squared_error(actual_fit, predicted_fit))

        index = data.index
        result = CausalImpactResult(
            actual=pd.Series(y, index=index, name=response_col),
            predicted=pd.Series(predicted, index=index, name='predicted'),
            predicted_lower=pd.Series(lower, index=index, name='predicted_lower'),
            predicted_upper=pd.Series(upper, index=index, name='predicted_upper'),
            point_effect=pd.Series(point_effect, index=index, name='point_effect'),
            point_effect_lower=pd.Series(point_lower, index=index, name='point_effect_lower'),
            point_effect_upper=pd.Series(point_upper, index=index, name='point_effect_upper'),
            cumulative_effect_series=pd.Series(cumulative, index=index, name='cumulative_effect'),
            average_actual=actual_sum / n_post,
            average_predicted=predicted_sum / n_post,
            average_predicted_lower=pred_sum_lower / n_post,
            average_predicted_upper=pred_sum_upper / n_post,
            average_effect=(actual_sum - predicted_sum) / n_post,
            average_effect_lower=effect_sum_lower / n_post,
            average_effect_upper=effect_sum_upper / n_post,
            cumulative_actual=actual_sum,
            cumulative_predicted=predicted_sum,
            cumulative_predicted_lower=pred_sum_lower,
            cumulative_predicted_upper=pred_sum_upper,
            cumulative_effect=actual_sum - predicted_sum,
            cumulative_effect_lower=effect_sum_lower,
            cumulative_effect_upper=effect_sum_upper,
            relative_effect=relative_effect,
            relative_effect_lower=rel_lower,
            relative_effect_upper=rel_upper,
            p_value=p_value,
            significant=bool(p_value < alpha),
            credible_interval=self.credible_interval,
            pre_period=(index[pre_pos[0]], index[pre_pos[-1]]),
            post_period=(index[post_pos[0]], index[post_pos[-1]]),
            response_col=response_col,
            predictor_cols=predictor_cols,
            pre_period_mape=pre_mape,
            pre_period_rmse=pre_rmse,
            model_params=dict(zip(fitted.param_names, map(float, fitted.params))),
            diagnostics={
                'n_pre': len(pre_pos),
                'n_post': n_post,
                'n_simulations': self.n_simulations,
                'converged': bool(fitted.mle_retvals.get('converged', True)),
                'aic': float(fitted.aic),
                'loglikelihood': float(fitted.llf)
            }
        )

        logger.info(
            "Causal impact on %s: cumulative effect %.2f, relative %.2f%%, p=%.4f",
            response_col, result.cumulative_effect, result.relative_effect * 100, p_value
        )
        return result

    def analyze_split(
        self,
        data: pd.DataFrame,
        intervention,
        response_col: Optional[str] = None,
        predictor_cols: Optional[Sequence[str]] = None
    ) -> CausalImpactResult:
        """Analyze with pre/post periods derived from a single split point."""
        pre_period, post_period = periods_from_split(data.index, intervention)
        return self.analyze(data, pre_period, post_period, response_col, predictor_cols)

    def run_placebo_test(
        self,
        data: pd.DataFrame,
        pre_period: Period,
        placebo_start=None,
        response_col: Optional[str] = None,
        predictor_cols: Optional[Sequence[str]] = None
    ) -> Dict:
        """
        In-time placebo test.

        Re-runs the analysis on pre-period data only, with a fake
        intervention at ``placebo_start`` (default: middle of the
        pre-period). A sound model should find no significant effect.
        """
        pre_pos = _period_positions(data.index, pre_period, 'pre_period')
        pre_data = data.iloc[pre_pos[0]:pre_pos[-1] + 1]

        if placebo_start is None:
            placebo_start = pre_data.index[len(pre_data) // 2]

        placebo_result = self.analyze_split(
            pre_data, placebo_start, response_col, predictor_cols
        )
        return {
            'placebo_start': placebo_result.post_period[0],
            'placebo_effect': placebo_result.average_effect,
            'placebo_relative_effect': placebo_result.relative_effect,
            'placebo_pvalue': placebo_result.p_value,
            'placebo_passed': not placebo_result.significant,
            'result': placebo_result
        }
