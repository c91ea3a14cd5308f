# chapters/linear_regression.py
"""
Chapter 1: Linear Regression

Ordinary least squares on mtcars. Fit a simple and a multiple regression for
fuel economy, check the OLS assumptions with the usual residual diagnostics,
compare nested models with an F-test, produce confidence and prediction
intervals, and estimate out-of-sample error with k-fold cross-validation.
"""
import logging

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from scipy import stats
from sklearn.linear_model import LinearRegression
from statsmodels.stats.anova import anova_lm
from statsmodels.stats.diagnostic import het_breuschpagan
from statsmodels.stats.outliers_influence import variance_inflation_factor
from statsmodels.stats.stattools import durbin_watson

from supervised_ml.data.datasets import load_mtcars
from supervised_ml.data.resampling import bootstrap, kfold_scores
from supervised_ml.reporting.report import ChapterReport

logger = logging.getLogger(__name__)

CHAPTER = 'linear_regression'
SIMPLE_FORMULA = 'mpg ~ wt'
MULTIPLE_FORMULA = 'mpg ~ wt + hp + C(am)'


def fit_ols(df, formula):
    return smf.ols(formula, data=df).fit()


def diagnostics(results):
    """
    Assumption checks for a fitted OLS model.

    Returns normality (Shapiro-Wilk on residuals), constant variance
    (Breusch-Pagan), independence (Durbin-Watson) and influence (Cook's
    distance, hat values above 2p/n).
    """
    resid = results.resid
    shapiro_stat, shapiro_p = stats.shapiro(resid)
    bp_lm, bp_p, _, _ = het_breuschpagan(resid, results.model.exog)

    influence = results.get_influence()
    cooks = influence.cooks_distance[0]
    leverage = influence.hat_matrix_diag
    n, p = results.model.exog.shape
    high_leverage = list(resid.index[leverage > 2 * p / n])

    return {
        'shapiro_stat': float(shapiro_stat),
        'shapiro_p': float(shapiro_p),
        'breusch_pagan_stat': float(bp_lm),
        'breusch_pagan_p': float(bp_p),
        'durbin_watson': float(durbin_watson(resid)),
        'max_cooks_distance': float(np.max(cooks)),
        'most_influential': resid.index[int(np.argmax(cooks))],
        'high_leverage': high_leverage,
    }


def vif_table(df, columns):
    """Variance inflation factor of each predictor in `columns`."""
    X = sm.add_constant(df[columns].astype(float))
    vifs = [variance_inflation_factor(X.values, i) for i in range(1, X.shape[1])]
    return pd.Series(vifs, index=columns, name='VIF').sort_values(ascending=False)


def compare_nested(small, large):
    """F-test of a nested OLS model against a larger one."""
    table = anova_lm(small, large)
    return {
        'table': table,
        'f_stat': float(table['F'].iloc[1]),
        'p_value': float(table['Pr(>F)'].iloc[1]),
    }


def cv_rmse(df, features, target, folds=5, random_state=42):
    """k-fold RMSE of the same linear model fitted with scikit-learn."""
    scores = kfold_scores(LinearRegression(), df[features], df[target], cv=folds, random_state=random_state)
    return float(scores.mean()), float(scores.std())


def bootstrap_slope(df, x, y, n_boot=1000, level=0.95, random_state=42, progress=False):
    """Percentile bootstrap interval for the slope of y on x, resampling cars."""
    def slope(sample):
        return np.cov(sample[x], sample[y])[0, 1] / np.var(sample[x], ddof=1)

    draws = bootstrap(slope, df[[x, y]], n_boot=n_boot, random_state=random_state, progress=progress)
    tail = 100 * (1 - level) / 2
    lower, upper = np.percentile(draws, [tail, 100 - tail])
    return {
        'estimate': float(slope(df)),
        'se': float(draws.std(ddof=1)) if n_boot > 1 else float('nan'),
        'lower': float(lower),
        'upper': float(upper),
    }


def _diagnostic_panel(results):
    fitted = results.fittedvalues
    resid = results.resid
    influence = results.get_influence()
    std_resid = influence.resid_studentized_internal
    leverage = influence.hat_matrix_diag

    fig, axes = plt.subplots(2, 2, figsize=(12, 10))

    axes[0, 0].scatter(fitted, resid, alpha=0.7)
    axes[0, 0].axhline(0, color='red', linestyle='--')
    axes[0, 0].set_title('Residuals vs Fitted')
    axes[0, 0].set_xlabel('Fitted values')
    axes[0, 0].set_ylabel('Residuals')

    sm.qqplot(std_resid, line='45', ax=axes[0, 1])
    axes[0, 1].set_title('Normal Q-Q')

    axes[1, 0].scatter(fitted, np.sqrt(np.abs(std_resid)), alpha=0.7, color='green')
    axes[1, 0].set_title('Scale-Location')
    axes[1, 0].set_xlabel('Fitted values')
    axes[1, 0].set_ylabel('sqrt(|Standardized residuals|)')

    axes[1, 1].scatter(leverage, std_resid, alpha=0.7, color='orange')
    axes[1, 1].set_title('Residuals vs Leverage')
    axes[1, 1].set_xlabel('Leverage')
    axes[1, 1].set_ylabel('Standardized residuals')

    return fig


def run(config):
    report = ChapterReport(CHAPTER, config.output_dir, config.save_models)
    df = load_mtcars()

    report.section("1. The data")
    report.text(f"mtcars: {len(df)} cars, {df.shape[1]} variables")
    report.table('describe', df[['mpg', 'wt', 'hp', 'am']].describe().round(2))

    report.section("2. Simple linear regression")
    simple = fit_ols(df, SIMPLE_FORMULA)
    report.text(str(simple.summary()))
    slope = simple.params['wt']
    report.metric('simple_slope_wt', float(slope))
    report.metric('simple_r2', float(simple.rsquared))
    report.narrate(
        f"Each additional 1,000 lbs of weight is associated with a {abs(slope):.2f} mpg drop in fuel economy;",
        f"weight alone explains {simple.rsquared:.1%} of the variance in mpg.",
    )

    boot = bootstrap_slope(df, 'wt', 'mpg', config.n_bootstrap, random_state=config.random_state, progress=config.verbose)
    ols_lower, ols_upper = simple.conf_int().loc['wt']
    report.table('slope_intervals', pd.DataFrame(
        {'lower': [ols_lower, boot['lower']], 'upper': [ols_upper, boot['upper']]},
        index=['OLS t-interval', f"bootstrap ({config.n_bootstrap} resamples)"],
    ).round(3))
    report.metric('bootstrap_slope_ci', (boot['lower'], boot['upper']))

    fig, ax = plt.subplots(figsize=(8, 6))
    ax.scatter(df['wt'], df['mpg'], alpha=0.7)
    grid = pd.DataFrame({'wt': np.linspace(df['wt'].min(), df['wt'].max(), 100)})
    bands = simple.get_prediction(grid).summary_frame(alpha=0.05)
    ax.plot(grid['wt'], bands['mean'], color='red', label='OLS fit')
    ax.fill_between(grid['wt'], bands['mean_ci_lower'], bands['mean_ci_upper'], color='red', alpha=0.2, label='95% CI')
    ax.set_title('mpg vs weight')
    ax.set_xlabel('Weight (1000 lbs)')
    ax.set_ylabel('Miles per gallon')
    ax.legend()
    report.figure(fig, 'simple_fit.png')

    report.section("3. Multiple linear regression")
    multiple = fit_ols(df, MULTIPLE_FORMULA)
    report.text(str(multiple.summary()))
    report.metric('multiple_r2', float(multiple.rsquared))
    report.metric('multiple_adj_r2', float(multiple.rsquared_adj))

    report.section("4. Assumption checks")
    diag = diagnostics(multiple)
    for key, value in diag.items():
        report.text(f"{key}: {value}")
    report.metric('diagnostics', diag)
    report.figure(_diagnostic_panel(multiple), 'diagnostics.png')
    if diag['shapiro_p'] < 0.05:
        report.narrate("Shapiro-Wilk rejects normal residuals at the 5% level; inference on coefficients is approximate.")
    else:
        report.narrate("Residuals are consistent with normality (Shapiro-Wilk p >= 0.05).")
    if diag['breusch_pagan_p'] < 0.05:
        report.narrate("Breusch-Pagan flags non-constant variance; robust (HC3) standard errors are advisable.")
    report.narrate(f"The most influential car is {diag['most_influential']} (Cook's D = {diag['max_cooks_distance']:.2f}).")

    report.section("5. Multicollinearity")
    vifs = vif_table(df, ['wt', 'hp', 'am'])
    report.table('vif', vifs.round(2))
    if (vifs > 5).any():
        report.narrate("At least one VIF exceeds 5, so coefficient estimates are unstable.")

    report.section("6. Nested model comparison")
    comparison = compare_nested(simple, multiple)
    report.table('anova', comparison['table'])
    report.metric('anova_p', comparison['p_value'])
    verdict = "significantly improves" if comparison['p_value'] < 0.05 else "does not significantly improve"
    report.narrate(
        f"Adding hp and transmission type {verdict} the fit "
        f"(F = {comparison['f_stat']:.2f}, p = {comparison['p_value']:.4f})."
    )

    report.section("7. Intervals for new cars")
    new_cars = pd.DataFrame({'wt': [2.5, 3.5], 'hp': [120, 200], 'am': [1, 0]}, index=['light manual', 'heavy automatic'])
    intervals = multiple.get_prediction(new_cars).summary_frame(alpha=0.05)
    intervals.index = new_cars.index
    report.table('intervals', intervals.round(2))
    report.narrate("Prediction intervals are wider than confidence intervals because they include the residual noise of a single car.")

    report.section("8. Cross-validated error")
    rmse_simple, sd_simple = cv_rmse(df, ['wt'], 'mpg', config.cv_folds, config.random_state)
    rmse_multi, sd_multi = cv_rmse(df, ['wt', 'hp', 'am'], 'mpg', config.cv_folds, config.random_state)
    report.text(f"{config.cv_folds}-fold RMSE, mpg ~ wt:            {rmse_simple:.3f} (sd {sd_simple:.3f})")
    report.text(f"{config.cv_folds}-fold RMSE, mpg ~ wt + hp + am:  {rmse_multi:.3f} (sd {sd_multi:.3f})")
    report.metric('cv_rmse_simple', rmse_simple)
    report.metric('cv_rmse_multiple', rmse_multi)

    report.save_model(multiple, 'ols_multiple.joblib')
    return report.finish()
