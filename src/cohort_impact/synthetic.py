"""
Synthetic data generators for demos, validation and tests.
"""

from typing import Optional

import numpy as np
import pandas as pd


def create_synthetic_cohorts(
    n_cohorts: int = 3,
    population: int = 1000,
    membership_rate: float = 0.3,
    correlation: float = 0.5,
    id_prefix: str = 'user_',
    random_state: int = 42
) -> pd.DataFrame:
    """
    Generate a long (segment, identifier) table of overlapping cohorts.

    Parameters
    ----------
    n_cohorts : int
        Number of cohorts
    population : int
        Number of distinct users to draw from
    membership_rate : float
        Baseline probability that a user belongs to a given cohort
    correlation : float
        Strength of a shared per-user propensity (0-1); higher values
        produce larger multi-cohort overlaps
    random_state : int
        Random seed

    Returns
    -------
    pd.DataFrame
        Columns ``segment`` and ``identifier``
    """
    rng = np.random.RandomState(random_state)

    # Users with a high propensity tend to show up in several cohorts
    propensity = rng.uniform(0, 1, population)

    records = []
    for cohort in range(n_cohorts):
        p = (1 - correlation) * membership_rate + correlation * membership_rate * 2 * propensity
        p = np.clip(p, 0, 1)
        is_member = rng.uniform(0, 1, population) < p
        for user in np.flatnonzero(is_member):
            records.append({
                'segment': f'cohort_{chr(ord("A") + cohort % 26)}{cohort // 26 or ""}',
                'identifier': f'{id_prefix}{user:05d}'
            })

    return pd.DataFrame(records, columns=['segment', 'identifier'])


def create_synthetic_impact_data(
    n_periods: int = 100,
    intervention: int = 70,
    lift: float = 0.0,
    n_predictors: int = 2,
    base_level: float = 1000.0,
    noise_level: float = 0.02,
    weekly_seasonality: float = 0.05,
    start_date: str = '2024-01-01',
    random_state: Optional[int] = 42
) -> pd.DataFrame:
    """
    Generate a daily response series driven by control series.

    The response tracks a weighted sum of the predictors plus noise.
    From row ``intervention`` on, the response is multiplied by
    ``1 + lift``; predictors are unaffected.

    Returns
    -------
    pd.DataFrame
        Date-indexed with columns ``y`` and ``x1``..``xN``
    """
    rng = np.random.RandomState(random_state)
    t = np.arange(n_periods)
    weekly = weekly_seasonality * np.sin(2 * np.pi * t / 7)

    # Shared latent demand as a gentle random walk
    latent = base_level * (1 + np.cumsum(rng.normal(0, 0.005, n_periods)) + weekly)

    predictors = {}
    for i in range(n_predictors):
        scale = rng.uniform(0.5, 1.5)
        predictors[f'x{i + 1}'] = scale * latent * (1 + rng.normal(0, noise_level, n_periods))

    if predictors:
        weights = rng.dirichlet(np.ones(n_predictors))
        response = sum(w * predictors[name] / np.mean(predictors[name])
                       for w, name in zip(weights, predictors)) * base_level
    else:
        response = latent.copy()
    response = response * (1 + rng.normal(0, noise_level, n_periods))

    response[intervention:] *= (1 + lift)

    index = pd.date_range(start_date, periods=n_periods, freq='D', name='date')
    data = pd.DataFrame({'y': response, **predictors}, index=index)
    return data
