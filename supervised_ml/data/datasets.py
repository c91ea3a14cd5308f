# data/datasets.py
"""
Teaching datasets used across the chapters.

mtcars ships with the package as a CSV. The other three (ISLR Default, the
emmeans pigs feeding trial and a response-time experiment) are seeded
simulations that keep the shape, column domains and rough effect sizes of
the originals, so every chapter runs offline and reproducibly.
"""
import logging
from pathlib import Path

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

MTCARS_PATH = Path(__file__).resolve().parent / 'mtcars.csv'

# Published glm(default ~ balance + income + student) coefficients (ISLR, ch. 4)
DEFAULT_LOGIT_COEFS = {
    'intercept': -10.869,
    'balance': 5.737e-3,
    'income': 3.033e-6,
    'student': -0.6468,
}

PIGS_SOURCES = ['fish', 'soy', 'skim']
PIGS_PERCENTS = [9, 12, 15, 18]
# Observations per (source, percent) cell; deliberately unbalanced, 29 in total
PIGS_CELL_COUNTS = {
    'fish': [2, 3, 3, 2],
    'soy': [3, 3, 3, 1],
    'skim': [3, 3, 2, 1],
}
PIGS_SOURCE_EFFECT = {'fish': 0.0, 'soy': 0.27, 'skim': 0.40}
PIGS_PERCENT_EFFECT = {9: 0.0, 12: 0.12, 15: 0.15, 18: 0.23}

RT_COLUMNS = ['subject', 'condition', 'trial', 'rt']


def require_columns(df, columns, name='dataset'):
    """Raise ValueError if any of `columns` is missing from `df`."""
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise ValueError(f"{name} is missing required column(s): {missing}")


def load_mtcars():
    """Motor Trend 1974 road tests: 32 cars, 11 numeric columns."""
    df = pd.read_csv(MTCARS_PATH, index_col='model')
    for col in ['cyl', 'vs', 'am', 'gear', 'carb']:
        df[col] = df[col].astype(int)
    return df


def make_default(n=10000, random_state=42):
    """
    Simulate ISLR::Default: credit card default from balance, income and
    student status. Roughly 3% of simulated customers default.
    """
    rng = np.random.default_rng(random_state)
    student = rng.random(n) < 0.294

    income = np.where(
        student,
        rng.normal(17950, 4900, n),
        rng.normal(40010, 10000, n),
    )
    income = np.clip(income, 770, None)

    balance = np.where(
        student,
        rng.normal(988, 480, n),
        rng.normal(772, 470, n),
    )
    balance = np.clip(balance, 0, None)

    c = DEFAULT_LOGIT_COEFS
    logit = (c['intercept'] + c['balance'] * balance
             + c['income'] * income + c['student'] * student)
    prob = 1.0 / (1.0 + np.exp(-logit))
    default = rng.random(n) < prob

    df = pd.DataFrame({
        'default': np.where(default, 'Yes', 'No'),
        'student': np.where(student, 'Yes', 'No'),
        'balance': balance.round(2),
        'income': income.round(2),
    })
    logger.info(f"Simulated Default data: {n} rows, {default.mean():.2%} defaults")
    return df


def make_pigs(random_state=42):
    """
    Simulate the emmeans `pigs` trial: blood leucine concentration of pigs fed
    one of three protein sources at one of four protein percentages.
    """
    rng = np.random.default_rng(random_state)
    rows = []
    for source in PIGS_SOURCES:
        for percent, count in zip(PIGS_PERCENTS, PIGS_CELL_COUNTS[source]):
            mu = 3.25 + PIGS_SOURCE_EFFECT[source] + PIGS_PERCENT_EFFECT[percent]
            for log_conc in rng.normal(mu, 0.1, count):
                rows.append({'source': source, 'percent': percent, 'conc': round(float(np.exp(log_conc)), 1)})

    df = pd.DataFrame(rows)
    df['source'] = pd.Categorical(df['source'], categories=PIGS_SOURCES)
    return df


def make_response_times(n_subjects=20, n_trials=40, random_state=42):
    """
    Simulate a within-subject response-time experiment. Every subject sees
    n_trials trials split evenly between a congruent and an incongruent
    condition; subjects differ in baseline speed and in condition effect.
    """
    if n_subjects < 2 or n_trials < 2:
        raise ValueError("Need at least 2 subjects and 2 trials per subject")

    rng = np.random.default_rng(random_state)
    intercepts = rng.normal(0, 60, n_subjects)
    slopes = rng.normal(0, 25, n_subjects)

    frames = []
    for s in range(n_subjects):
        condition = np.array(['congruent', 'incongruent'] * (n_trials // 2) + ['congruent'] * (n_trials % 2))
        rng.shuffle(condition)
        incongruent = (condition == 'incongruent').astype(float)
        rt = 450 + intercepts[s] + (40 + slopes[s]) * incongruent + rng.normal(0, 80, n_trials)
        frames.append(pd.DataFrame({
            'subject': f"s{s + 1:02d}",
            'condition': condition,
            'trial': np.arange(1, n_trials + 1),
            'rt': np.clip(rt, 150, None).round(1),
        }))

    return pd.concat(frames, ignore_index=True)


def load_response_times(path):
    """Load a response-time CSV with columns subject, condition, trial, rt."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Response-time file not found: {path}")

    logger.info(f"Loading response times from: {path}")
    df = pd.read_csv(path)
    require_columns(df, RT_COLUMNS, name=path.name)
    df['subject'] = df['subject'].astype(str)
    df['rt'] = pd.to_numeric(df['rt'], errors='coerce')
    n_bad = int(df['rt'].isna().sum())
    if n_bad:
        logger.warning(f"Dropping {n_bad} rows with non-numeric rt")
        df = df.dropna(subset=['rt']).reset_index(drop=True)
    return df
