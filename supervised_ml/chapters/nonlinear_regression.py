# chapters/nonlinear_regression.py
"""
Chapter 4: Nonlinear Regression

Fuel economy falls off with horsepower along a curve, not a line. Three ways
to bend the fit: polynomial terms (degree picked by cross-validation), a
B-spline basis, and a genuinely nonlinear exponential-decay model fitted by
nonlinear least squares.
"""
import logging

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy.optimize import curve_fit
from sklearn.linear_model import LinearRegression
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import PolynomialFeatures, StandardScaler
from tqdm import tqdm

from supervised_ml.data.datasets import load_mtcars
from supervised_ml.data.resampling import kfold_scores
from supervised_ml.reporting.report import ChapterReport

logger = logging.getLogger(__name__)

CHAPTER = 'nonlinear_regression'


def exp_decay(x, a, b, c):
    return a * np.exp(-b * x) + c


def gaussian_aic(rss, n, k):
    """AIC of a Gaussian model with k mean parameters (same convention as statsmodels OLS)."""
    return n * np.log(2 * np.pi) + n * np.log(rss / n) + n + 2 * k


def polynomial_pipeline(degree):
    return make_pipeline(PolynomialFeatures(degree, include_bias=False), StandardScaler(), LinearRegression())


def polynomial_cv(df, x, y, degrees=range(1, 6), folds=5, random_state=42, progress=False):
    """CV RMSE for each polynomial degree; the chosen degree is the minimum."""
    rows = []
    for degree in tqdm(list(degrees), desc="Polynomial degree", disable=not progress):
        scores = kfold_scores(polynomial_pipeline(degree), df[[x]], df[y], cv=folds, random_state=random_state)
        rows.append({'degree': degree, 'cv_rmse': scores.mean(), 'cv_sd': scores.std()})
    table = pd.DataFrame(rows).set_index('degree')
    return table, int(table['cv_rmse'].idxmin())


def fit_spline(df, x, y, df_spline=4):
    """OLS on a cubic B-spline basis of x."""
    return smf.ols(f"{y} ~ bs({x}, df={df_spline})", data=df).fit()


def fit_exponential(x, y):
    """
    Nonlinear least squares fit of y = a * exp(-b * x) + c.

    Starting values come from the data: a from the range of y, b from the
    scale of x, c from the floor of y.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    p0 = (y.max() - y.min(), 1.0 / x.mean(), y.min())
    try:
        params, cov = curve_fit(exp_decay, x, y, p0=p0, maxfev=10000)
    except RuntimeError as e:
        raise RuntimeError(f"Exponential fit did not converge: {e}") from e

    rss = float(np.sum((y - exp_decay(x, *params)) ** 2))
    return {
        'params': dict(zip(['a', 'b', 'c'], params)),
        'se': dict(zip(['a', 'b', 'c'], np.sqrt(np.diag(cov)))),
        'rss': rss,
        'aic': float(gaussian_aic(rss, len(y), 3)),
    }


def run(config):
    report = ChapterReport(CHAPTER, config.output_dir, config.save_models)
    df = load_mtcars()
    x, y = 'hp', 'mpg'

    report.section("1. Choosing a polynomial degree")
    cv_table, best_degree = polynomial_cv(df, x, y, range(1, 6), config.cv_folds, config.random_state, progress=config.verbose)
    report.table('polynomial_cv', cv_table.round(3))
    report.metric('best_degree', best_degree)
    if best_degree < cv_table.index.max():
        report.narrate(f"Cross-validation picks degree {best_degree}; higher degrees start chasing noise in {len(df)} points.")
    else:
        report.narrate(f"Cross-validation picks the largest degree tried ({best_degree}); the curve may need more flexibility.")

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.errorbar(cv_table.index, cv_table['cv_rmse'], yerr=cv_table['cv_sd'], marker='o', capsize=4)
    ax.axvline(best_degree, color='red', linestyle='--', label=f"best = {best_degree}")
    ax.set_title('Cross-validated RMSE by polynomial degree')
    ax.set_xlabel('Degree')
    ax.set_ylabel('CV RMSE (mpg)')
    ax.legend()
    report.figure(fig, 'polynomial_cv.png')

    report.section("2. Linear, quadratic and spline fits")
    linear = smf.ols(f"{y} ~ {x}", data=df).fit()
    quadratic = smf.ols(f"{y} ~ {x} + I({x}**2)", data=df).fit()
    spline = fit_spline(df, x, y, df_spline=4)
    report.text(str(quadratic.summary().tables[1]))

    report.section("3. Exponential decay by nonlinear least squares")
    expo = fit_exponential(df[x], df[y])
    report.table('exponential', pd.DataFrame({'estimate': expo['params'], 'se': expo['se']}).round(4))
    report.metric('exp_params', expo['params'])

    report.section("4. Model comparison")
    aic = pd.Series({
        'linear': linear.aic,
        'quadratic': quadratic.aic,
        'spline (df=4)': spline.aic,
        'exponential': expo['aic'],
    }, name='AIC').sort_values()
    report.table('aic', aic.round(2))
    report.metric('aic', aic.to_dict())
    beaten = [name for name in aic.index if name != 'linear' and aic[name] < aic['linear']]
    if len(beaten) == len(aic) - 1:
        verdict = "Every curved model beats the straight line."
    elif beaten:
        verdict = f"Only {', '.join(beaten)} improve on the straight line."
    else:
        verdict = "No curved model improves on the straight line."
    report.narrate(f"Lowest AIC: {aic.index[0]}. {verdict}")

    grid = pd.DataFrame({x: np.linspace(df[x].min(), df[x].max(), 200)})
    fig, ax = plt.subplots(figsize=(9, 6))
    ax.scatter(df[x], df[y], color='black', alpha=0.7)
    ax.plot(grid[x], linear.predict(grid), label='linear')
    ax.plot(grid[x], quadratic.predict(grid), label='quadratic')
    ax.plot(grid[x], spline.predict(grid), label='B-spline')
    ax.plot(grid[x], exp_decay(grid[x].values, *expo['params'].values()), label='exponential')
    ax.set_title('Fuel economy vs horsepower')
    ax.set_xlabel('Gross horsepower')
    ax.set_ylabel('Miles per gallon')
    ax.legend()
    report.figure(fig, 'fits.png')

    report.save_model(polynomial_pipeline(best_degree).fit(df[[x]], df[y]), 'polynomial.joblib')
    return report.finish()
