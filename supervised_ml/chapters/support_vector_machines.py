# chapters/support_vector_machines.py
"""
Chapter 7: Support Vector Machines

Maximal-margin classifiers with a linear and a radial (RBF) kernel on the
Default data. C (and gamma for RBF) are tuned by a cross-validated grid
search on AUC. Features are standardized because the RBF kernel is distance
based. SVC scales quadratically with n, so the chapter works on a stratified
sub-sample.
"""
import logging

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.model_selection import GridSearchCV, StratifiedKFold, train_test_split
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC

from supervised_ml.chapters.decision_trees import default_features
from supervised_ml.data.datasets import make_default
from supervised_ml.reporting.report import ChapterReport
from supervised_ml.utils.metrics import classification_metrics

logger = logging.getLogger(__name__)

CHAPTER = 'support_vector_machines'


def subsample(X, y, size, random_state=42):
    """Stratified sub-sample of at most `size` rows."""
    if size >= len(X):
        return X, y
    X_small, _, y_small, _ = train_test_split(X, y, train_size=size, stratify=y, random_state=random_state)
    return X_small, y_small


def svc_pipeline(kernel, random_state=42):
    return make_pipeline(StandardScaler(), SVC(kernel=kernel, class_weight='balanced', random_state=random_state))


def tune_svc(X, y, kernel, param_grid, folds=5, random_state=42):
    """Grid search over the SVC pipeline, scored by ROC AUC."""
    search = GridSearchCV(
        svc_pipeline(kernel, random_state),
        param_grid,
        cv=StratifiedKFold(n_splits=folds, shuffle=True, random_state=random_state),
        scoring='roc_auc',
        n_jobs=1,
    )
    search.fit(X, y)
    logger.info(f"{kernel} SVC best params {search.best_params_} (CV AUC {search.best_score_:.4f})")
    return {
        'best_params': search.best_params_,
        'best_score': float(search.best_score_),
        'estimator': search.best_estimator_,
        'cv_results': pd.DataFrame(search.cv_results_),
    }


def _decision_boundary(model, X, y):
    balance = np.linspace(X['balance'].min(), X['balance'].max(), 200)
    income = np.linspace(X['income'].min(), X['income'].max(), 200)
    bb, ii = np.meshgrid(balance, income)
    grid = pd.DataFrame({'balance': bb.ravel(), 'income': ii.ravel(), 'student': 0})
    zz = model.decision_function(grid).reshape(bb.shape)

    fig, ax = plt.subplots(figsize=(9, 7))
    ax.contourf(bb, ii, zz, levels=20, cmap='coolwarm', alpha=0.4)
    ax.contour(bb, ii, zz, levels=[0], colors='black')
    mask = X['student'] == 0
    ax.scatter(X.loc[mask, 'balance'], X.loc[mask, 'income'], c=y[mask], cmap='coolwarm', s=10, edgecolors='none')
    ax.set_title('Radial SVM decision boundary (non-students)')
    ax.set_xlabel('Balance')
    ax.set_ylabel('Income')
    return fig


def run(config):
    report = ChapterReport(CHAPTER, config.output_dir, config.save_models)
    svm_cfg = config.svm

    X, y = default_features(make_default(random_state=config.random_state))
    X, y = subsample(X, y, svm_cfg.sample_size, config.random_state)
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=config.test_size, stratify=y, random_state=config.random_state
    )

    report.section("1. Setup")
    report.text(f"Sub-sample: {len(X)} customers ({y.mean():.2%} defaults), train {len(X_train)}, test {len(X_test)}")

    rows = {}
    tuned = {}
    for section, kernel, grid in (("2. Linear kernel", 'linear', svm_cfg.linear_grid),
                                  ("3. Radial kernel", 'rbf', svm_cfg.radial_grid)):
        report.section(section)
        fit = tune_svc(X_train, y_train, kernel, grid, config.cv_folds, config.random_state)
        tuned[kernel] = fit
        model = fit['estimator']
        scores = model.decision_function(X_test)
        # decision_function > 0 is the positive class, so 0 is the matching threshold
        cls = classification_metrics(y_test, scores, threshold=0.0)
        n_support = model[-1].n_support_

        report.text(f"Best params: {fit['best_params']} (CV AUC {fit['best_score']:.4f})")
        report.table(f'{kernel}_confusion', pd.DataFrame(
            cls['confusion_matrix'], index=['actual No', 'actual Yes'], columns=['pred No', 'pred Yes']))
        report.text(f"Support vectors per class: No = {n_support[0]}, Yes = {n_support[1]}")
        rows[kernel] = {
            'cv_auc': fit['best_score'],
            'test_auc': cls['auc'],
            'accuracy': cls['accuracy'],
            'sensitivity': cls['sensitivity'],
            'specificity': cls['specificity'],
            'n_support': int(n_support.sum()),
        }

    report.section("4. Comparison")
    comparison = pd.DataFrame(rows).T
    report.table('comparison', comparison.round(4))
    report.metric('test_auc', comparison['test_auc'].to_dict())
    report.metric('best_params', {k: v['best_params'] for k, v in tuned.items()})
    # Standardized linear-kernel weights are comparable across features
    weights = pd.Series(np.abs(tuned['linear']['estimator'][-1].coef_[0]), index=X.columns)
    report.table('linear_weights', weights.round(4))
    report.metric('balance_income_weight_ratio', float(weights['balance'] / weights['income']))
    report.narrate("class_weight='balanced' raises the cost of misclassifying the rare defaults, which buys sensitivity at the price of accuracy.")
    if weights['balance'] > 5 * weights['income']:
        report.narrate("The decision boundary is nearly vertical in balance: income barely matters once balance is known.")
    else:
        report.narrate(f"Income carries real weight next to balance (|w| {weights['income']:.3f} vs {weights['balance']:.3f}), so the boundary tilts.")

    report.figure(_decision_boundary(tuned['rbf']['estimator'], X_test, y_test), 'rbf_boundary.png')
    report.save_model(tuned['rbf']['estimator'], 'svc_rbf.joblib')
    return report.finish()
