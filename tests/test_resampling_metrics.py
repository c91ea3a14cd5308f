import numpy as np
import pandas as pd
import pytest
from sklearn.linear_model import LinearRegression

from supervised_ml.data.datasets import load_mtcars
from supervised_ml.data.resampling import bootstrap, kfold_scores, split
from supervised_ml.utils.metrics import classification_metrics, regression_metrics


def test_split_sizes_and_stratification():
    df = pd.DataFrame({'x': np.arange(100), 'y': [0] * 80 + [1] * 20})
    X_train, X_test, y_train, y_test = split(df, 'y', test_size=0.25, random_state=0, stratify=True)
    assert len(X_test) == 25
    assert 'y' not in X_train.columns
    assert y_test.sum() == 5


def test_split_unknown_target():
    with pytest.raises(ValueError):
        split(pd.DataFrame({'x': [1, 2]}), 'y')


def test_kfold_scores_are_positive_errors():
    df = load_mtcars()
    scores = kfold_scores(LinearRegression(), df[['wt']], df['mpg'], cv=4, random_state=0)
    assert scores.shape == (4,)
    assert (scores > 0).all()


def test_kfold_scores_reproducible():
    df = load_mtcars()
    a = kfold_scores(LinearRegression(), df[['wt', 'hp']], df['mpg'], cv=5, random_state=3)
    b = kfold_scores(LinearRegression(), df[['wt', 'hp']], df['mpg'], cv=5, random_state=3)
    np.testing.assert_allclose(a, b)


def test_bootstrap_mean_is_centered():
    df = load_mtcars()
    draws = bootstrap(lambda d: d['mpg'].mean(), df, n_boot=300, random_state=1)
    assert draws.shape == (300,)
    assert abs(draws.mean() - df['mpg'].mean()) < 0.5


def test_regression_metrics_perfect_fit():
    m = regression_metrics([1, 2, 3], [1, 2, 3])
    assert m['rmse'] == 0.0
    assert m['mae'] == 0.0
    assert m['r2'] == 1.0


def test_classification_metrics_small_example():
    m = classification_metrics([0, 0, 1, 1], [0.1, 0.6, 0.4, 0.9], threshold=0.5)
    np.testing.assert_array_equal(m['confusion_matrix'], [[1, 1], [1, 1]])
    assert m['accuracy'] == 0.5
    assert m['sensitivity'] == 0.5
    assert m['specificity'] == 0.5
    assert m['auc'] == pytest.approx(0.75)


def test_classification_metrics_threshold_shift():
    high = classification_metrics([0, 0, 1, 1], [0.1, 0.6, 0.4, 0.9], threshold=0.95)
    low = classification_metrics([0, 0, 1, 1], [0.1, 0.6, 0.4, 0.9], threshold=0.05)
    assert high['sensitivity'] == 0.0
    assert low['sensitivity'] == 1.0
    assert low['specificity'] == 0.0
