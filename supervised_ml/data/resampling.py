# data/resampling.py
import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, StratifiedKFold, cross_val_score, train_test_split
from tqdm import tqdm


def split(df, target, test_size=0.3, random_state=42, stratify=False):
    """Hold-out split returning X_train, X_test, y_train, y_test."""
    if target not in df.columns:
        raise ValueError(f"Target column '{target}' not found")

    X = df.drop(columns=[target])
    y = df[target]
    return train_test_split(
        X, y,
        test_size=test_size,
        random_state=random_state,
        stratify=y if stratify else None,
    )


def kfold_scores(estimator, X, y, cv=5, scoring='neg_root_mean_squared_error', random_state=42, stratified=False):
    """
    Shuffled k-fold cross-validation scores. Error scorers ("neg_*") are
    flipped back to positive so lower is better for errors.
    """
    if stratified:
        folds = StratifiedKFold(n_splits=cv, shuffle=True, random_state=random_state)
    else:
        folds = KFold(n_splits=cv, shuffle=True, random_state=random_state)

    scores = cross_val_score(estimator, X, y, cv=folds, scoring=scoring)
    if scoring.startswith('neg_'):
        scores = -scores
    return scores


def bootstrap(statistic, df, n_boot=1000, random_state=42, progress=False):
    """Bootstrap distribution of statistic(df_resampled) as a numpy array."""
    rng = np.random.default_rng(random_state)
    n = len(df)
    values = []
    for _ in tqdm(range(n_boot), desc="Bootstrap", disable=not progress):
        idx = rng.integers(0, n, n)
        sample = df.iloc[idx] if isinstance(df, (pd.DataFrame, pd.Series)) else df[idx]
        values.append(statistic(sample))
    return np.asarray(values)
