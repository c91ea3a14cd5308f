# utils/metrics.py
import numpy as np
from sklearn.metrics import confusion_matrix, mean_absolute_error, mean_squared_error, r2_score, roc_auc_score


def regression_metrics(y_true, y_pred):
    """RMSE, MAE and R^2 for a set of predictions"""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    return {
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'r2': float(r2_score(y_true, y_pred)),
    }


def classification_metrics(y_true, prob, threshold=0.5):
    """Confusion-matrix based metrics for a binary 0/1 outcome.

    `prob` can be any score that increases with the positive class, e.g. SVC
    decision values together with threshold=0.
    """
    y_true = np.asarray(y_true).astype(int)
    prob = np.asarray(prob, dtype=float)
    y_pred = (prob >= threshold).astype(int)

    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()

    return {
        'confusion_matrix': np.array([[tn, fp], [fn, tp]]),
        'accuracy': float((tp + tn) / len(y_true)),
        'sensitivity': float(tp / (tp + fn)) if (tp + fn) > 0 else 0.0,
        'specificity': float(tn / (tn + fp)) if (tn + fp) > 0 else 0.0,
        'auc': float(roc_auc_score(y_true, prob)) if len(np.unique(y_true)) > 1 else float('nan'),
    }
