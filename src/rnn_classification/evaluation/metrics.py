from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
    roc_curve,
)

__all__ = [
    "BinaryMetrics",
    "ClassifierSummary",
    "evaluate_binary_at_threshold",
    "compute_roc_curve",
    "signal_efficiency_at",
    "separation",
    "summarize_classifier",
    "ranking_frame",
]

BACKGROUND_EFFICIENCIES: Tuple[float, ...] = (0.01, 0.10, 0.30)


# ---------------------------------------------------------------------------
# Core dataclasses
# ---------------------------------------------------------------------------


@dataclass
class BinaryMetrics:
    """Metrics for a signal/background classifier at one score threshold.

    ``recall`` is the signal efficiency at that threshold. Confusion counts
    are raw event counts; the ratio metrics use the event weights when given.
    """

    threshold: float

    roc_auc: float

    accuracy: float
    precision: float
    recall: float
    f1: float

    support_sig: int
    support_bkg: int

    tp: int
    fp: int
    tn: int
    fn: int

    def as_dict(self, prefix: str = "") -> Dict[str, float]:
        return {
            f"{prefix}threshold": float(self.threshold),
            f"{prefix}roc_auc": float(self.roc_auc),
            f"{prefix}accuracy": float(self.accuracy),
            f"{prefix}precision": float(self.precision),
            f"{prefix}recall": float(self.recall),
            f"{prefix}f1": float(self.f1),
            f"{prefix}support_sig": int(self.support_sig),
            f"{prefix}support_bkg": int(self.support_bkg),
            f"{prefix}tp": int(self.tp),
            f"{prefix}fp": int(self.fp),
            f"{prefix}tn": int(self.tn),
            f"{prefix}fn": int(self.fn),
        }


@dataclass
class ClassifierSummary:
    """Figures of merit reported for each booked method."""

    roc_auc: float
    eff_at_bkg_01: float
    eff_at_bkg_10: float
    eff_at_bkg_30: float
    separation: float
    accuracy: float

    def as_dict(self, prefix: str = "") -> Dict[str, float]:
        return {
            f"{prefix}roc_auc": self.roc_auc,
            f"{prefix}eff_at_bkg_01": self.eff_at_bkg_01,
            f"{prefix}eff_at_bkg_10": self.eff_at_bkg_10,
            f"{prefix}eff_at_bkg_30": self.eff_at_bkg_30,
            f"{prefix}separation": self.separation,
            f"{prefix}accuracy": self.accuracy,
        }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _to_numpy(y: Any) -> np.ndarray:
    """Convert various array-likes to a flat numpy array."""
    arr = np.asarray(y)
    if arr.ndim != 1:
        arr = arr.ravel()
    return arr


def _safe_metric(fn: Callable[..., float], *args: Any, **kwargs: Any) -> float:
    """sklearn metric or NaN when only one class is present."""
    try:
        return float(fn(*args, **kwargs))
    except ValueError:
        return float("nan")


def _confusion_counts(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, int]:
    return dict(
        tp=int(((y_true == 1) & (y_pred == 1)).sum()),
        fp=int(((y_true == 0) & (y_pred == 1)).sum()),
        tn=int(((y_true == 0) & (y_pred == 0)).sum()),
        fn=int(((y_true == 1) & (y_pred == 0)).sum()),
        support_sig=int((y_true == 1).sum()),
        support_bkg=int((y_true == 0).sum()),
    )


# ---------------------------------------------------------------------------
# Public evaluation functions
# ---------------------------------------------------------------------------


def evaluate_binary_at_threshold(
    y_true: Sequence[int],
    y_proba: Sequence[float],
    threshold: float = 0.5,
    sample_weight: Optional[Sequence[float]] = None,
) -> BinaryMetrics:
    """Evaluate a classifier at a fixed decision threshold.

    Parameters
    ----------
    y_true
        Labels (1 = signal, 0 = background).
    y_proba
        Signal probabilities, same shape as y_true.
    threshold
        Decision threshold in [0, 1].
    sample_weight
        Optional per-event weights for the ratio metrics.
    """
    y_true_arr = _to_numpy(y_true).astype(int)
    y_proba_arr = _to_numpy(y_proba)
    weights = None if sample_weight is None else _to_numpy(sample_weight)

    if not (0.0 <= threshold <= 1.0):
        raise ValueError(f"threshold must be in [0, 1], got {threshold}")

    y_pred = (y_proba_arr >= threshold).astype(int)
    counts = _confusion_counts(y_true_arr, y_pred)

    return BinaryMetrics(
        threshold=float(threshold),
        roc_auc=_safe_metric(roc_auc_score, y_true_arr, y_proba_arr, sample_weight=weights),
        accuracy=_safe_metric(accuracy_score, y_true_arr, y_pred, sample_weight=weights),
        precision=_safe_metric(
            precision_score, y_true_arr, y_pred, sample_weight=weights, zero_division=0
        ),
        recall=_safe_metric(
            recall_score, y_true_arr, y_pred, sample_weight=weights, zero_division=0
        ),
        f1=_safe_metric(f1_score, y_true_arr, y_pred, sample_weight=weights, zero_division=0),
        **counts,
    )


def compute_roc_curve(
    y_true: Sequence[int],
    y_proba: Sequence[float],
    sample_weight: Optional[Sequence[float]] = None,
) -> pd.DataFrame:
    """ROC curve points.

    Returns a DataFrame with columns fpr, tpr and threshold, plus the same
    curve in efficiency form: ``signal_efficiency`` (= tpr),
    ``background_efficiency`` (= fpr) and ``background_rejection`` (= 1 - fpr).
    """
    y_true_arr = _to_numpy(y_true)
    y_proba_arr = _to_numpy(y_proba)
    weights = None if sample_weight is None else _to_numpy(sample_weight)

    try:
        fpr, tpr, thresholds = roc_curve(y_true_arr, y_proba_arr, sample_weight=weights)
    except ValueError:
        fpr, tpr, thresholds = np.array([0.0]), np.array([0.0]), np.array([0.5])

    # sklearn yields nan rates when one class is absent.
    fpr = np.nan_to_num(fpr)
    tpr = np.nan_to_num(tpr)

    return pd.DataFrame(
        {
            "fpr": fpr,
            "tpr": tpr,
            "threshold": thresholds,
            "signal_efficiency": tpr,
            "background_efficiency": fpr,
            "background_rejection": 1.0 - fpr,
        }
    )


def signal_efficiency_at(
    y_true: Sequence[int],
    y_proba: Sequence[float],
    background_efficiency: float,
    sample_weight: Optional[Sequence[float]] = None,
) -> float:
    """Signal efficiency at a fixed background efficiency, linearly interpolated."""
    if not (0.0 <= background_efficiency <= 1.0):
        raise ValueError(
            f"background_efficiency must be in [0, 1], got {background_efficiency}"
        )
    roc = compute_roc_curve(y_true, y_proba, sample_weight=sample_weight)
    return float(np.interp(background_efficiency, roc["fpr"].to_numpy(), roc["tpr"].to_numpy()))


def separation(
    signal_scores: Sequence[float],
    background_scores: Sequence[float],
    *,
    signal_weights: Optional[Sequence[float]] = None,
    background_weights: Optional[Sequence[float]] = None,
    bins: int = 40,
) -> float:
    """Separation ``<S^2> = 1/2 * sum_i (s_i - b_i)^2 / (s_i + b_i)``.

    s and b are the normalised score histograms over a shared range; 0 means
    identical shapes and 1 means no overlap.
    """
    sig = _to_numpy(signal_scores).astype(float)
    bkg = _to_numpy(background_scores).astype(float)
    if sig.size == 0 or bkg.size == 0:
        return float("nan")

    low = float(min(sig.min(), bkg.min()))
    high = float(max(sig.max(), bkg.max()))
    if high <= low:
        return 0.0

    s_hist, _ = np.histogram(sig, bins=bins, range=(low, high), weights=signal_weights)
    b_hist, _ = np.histogram(bkg, bins=bins, range=(low, high), weights=background_weights)
    s_hist = s_hist / s_hist.sum()
    b_hist = b_hist / b_hist.sum()

    total = s_hist + b_hist
    mask = total > 0
    return float(0.5 * np.sum((s_hist[mask] - b_hist[mask]) ** 2 / total[mask]))


def summarize_classifier(
    y_true: Sequence[int],
    y_proba: Sequence[float],
    sample_weight: Optional[Sequence[float]] = None,
) -> ClassifierSummary:
    y_true_arr = _to_numpy(y_true).astype(int)
    y_proba_arr = _to_numpy(y_proba)
    weights = None if sample_weight is None else _to_numpy(sample_weight)

    effs = [
        signal_efficiency_at(y_true_arr, y_proba_arr, eff, sample_weight=weights)
        for eff in BACKGROUND_EFFICIENCIES
    ]
    sig_mask = y_true_arr == 1
    at_half = evaluate_binary_at_threshold(y_true_arr, y_proba_arr, 0.5, sample_weight=weights)

    return ClassifierSummary(
        roc_auc=at_half.roc_auc,
        eff_at_bkg_01=effs[0],
        eff_at_bkg_10=effs[1],
        eff_at_bkg_30=effs[2],
        separation=separation(
            y_proba_arr[sig_mask],
            y_proba_arr[~sig_mask],
            signal_weights=None if weights is None else weights[sig_mask],
            background_weights=None if weights is None else weights[~sig_mask],
        ),
        accuracy=at_half.accuracy,
    )


def ranking_frame(summaries: Mapping[str, ClassifierSummary]) -> pd.DataFrame:
    """One row per method, best ROC-AUC first."""
    rows = [{"method": name, **summary.as_dict()} for name, summary in summaries.items()]
    df = pd.DataFrame(rows, columns=["method", *ClassifierSummary.__dataclass_fields__])
    return df.sort_values("roc_auc", ascending=False, ignore_index=True)
