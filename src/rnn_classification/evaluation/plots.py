from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
from sklearn.metrics import auc

from rnn_classification.evaluation.metrics import compute_roc_curve

__all__ = [
    "plot_roc_curve",
    "plot_multi_roc",
    "plot_training_curves",
    "plot_time_histograms",
]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_ax(ax: Optional[plt.Axes] = None, figsize: Tuple[int, int] = (8, 6)) -> plt.Axes:
    """Return an existing Axes or create a new one with a default figsize."""
    if ax is not None:
        return ax

    _, new_ax = plt.subplots(figsize=figsize)
    return new_ax


def _maybe_save(fig: plt.Figure, savepath: Optional[Path | str], dpi: int = 120) -> None:
    """Save figure to disk if savepath is provided."""
    if savepath is None:
        return

    savepath = Path(savepath)
    savepath.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(savepath, dpi=dpi, bbox_inches="tight")


def _style_roc_axes(ax: plt.Axes, title: str) -> None:
    ax.set_title(title)
    ax.set_xlabel("Signal efficiency")
    ax.set_ylabel("Background rejection")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1.05)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="lower left")


# ---------------------------------------------------------------------------
# ROC curves (background rejection vs signal efficiency)
# ---------------------------------------------------------------------------


def plot_roc_curve(
    y_true: np.ndarray,
    y_proba: np.ndarray,
    *,
    sample_weight: Optional[np.ndarray] = None,
    label: Optional[str] = None,
    ax: Optional[plt.Axes] = None,
    figsize: Tuple[int, int] = (8, 6),
    savepath: Optional[Path | str] = None,
    show: bool = False,
) -> plt.Axes:
    """Plot background rejection against signal efficiency for one method.

    The legend shows the ROC integral (area under the curve).
    """
    roc = compute_roc_curve(y_true, y_proba, sample_weight=sample_weight)
    eff = roc["signal_efficiency"].to_numpy()
    rej = roc["background_rejection"].to_numpy()
    area = float(auc(eff, rej)) if eff.size > 1 else float("nan")

    ax = _ensure_ax(ax, figsize=figsize)
    name = label or "classifier"
    ax.plot(eff, rej, linewidth=2, label=f"{name} (ROC integral = {area:.3f})")
    ax.plot([0, 1], [1, 0], linestyle="--", linewidth=1, alpha=0.5, color="grey")
    _style_roc_axes(ax, "Background rejection versus Signal efficiency")

    _maybe_save(ax.get_figure(), savepath)

    if show:
        plt.show()

    return ax


def plot_multi_roc(
    curves: Mapping[str, Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]],
    *,
    title: str = "Background rejection versus Signal efficiency",
    figsize: Tuple[int, int] = (8, 6),
    savepath: Optional[Path | str] = None,
    show: bool = False,
) -> plt.Figure:
    """Overlay the ROC curves of several methods.

    Parameters
    ----------
    curves
        ``{method_name: (y_true, y_proba, sample_weight_or_None)}``.
    """
    fig, ax = plt.subplots(figsize=figsize)
    for name, (y_true, y_proba, weights) in curves.items():
        plot_roc_curve(y_true, y_proba, sample_weight=weights, label=name, ax=ax)
    # plot_roc_curve re-styles per call; set the shared title once at the end.
    _style_roc_axes(ax, title)

    _maybe_save(fig, savepath)

    if show:
        plt.show()

    return fig


# ---------------------------------------------------------------------------
# Training curves
# ---------------------------------------------------------------------------


def plot_training_curves(
    history: Mapping[str, Sequence[float]],
    *,
    title_prefix: str = "Model",
    figsize: Tuple[int, int] = (12, 4),
    savepath: Optional[Path | str] = None,
    show: bool = False,
) -> Dict[str, plt.Axes]:
    """Loss and accuracy per epoch from a ``fit`` history.

    Train values are drawn against ``epoch``, validation values against
    ``val_epoch``; missing keys are skipped.
    """
    epochs = list(history.get("epoch", [])) or list(
        range(1, len(history.get("train_loss", [])) + 1)
    )
    val_epochs = list(history.get("val_epoch", [])) or epochs

    fig, (ax_loss, ax_acc) = plt.subplots(1, 2, figsize=figsize)

    for ax, key, ylabel in ((ax_loss, "loss", "Loss"), (ax_acc, "accuracy", "Accuracy")):
        train_vals = history.get(f"train_{key}")
        val_vals = history.get(f"val_{key}")
        if train_vals is None and val_vals is None:
            ax.set_visible(False)
            continue
        if train_vals is not None:
            ax.plot(epochs[: len(train_vals)], train_vals, marker="o", label="Training")
        if val_vals is not None:
            ax.plot(val_epochs[: len(val_vals)], val_vals, marker="o", label="Validation")
        ax.set_title(f"{title_prefix}: {ylabel}")
        ax.set_xlabel("Epoch")
        ax.set_ylabel(ylabel)
        ax.grid(True, alpha=0.3)
        ax.legend()

    plt.tight_layout()
    _maybe_save(fig, savepath)

    if show:
        plt.show()

    return {"loss": ax_loss, "accuracy": ax_acc}


# ---------------------------------------------------------------------------
# Generator histograms
# ---------------------------------------------------------------------------


def plot_time_histograms(
    signal_hist: np.ndarray,
    background_hist: np.ndarray,
    *,
    hist_range: Tuple[float, float] = (0.0, 10.0),
    ncols: int = 5,
    savepath: Optional[Path | str] = None,
    show: bool = False,
) -> plt.Figure:
    """One panel per time step with the signal and background histograms overlaid.

    Both inputs have shape (ntime, nbins).
    """
    ntime, nbins = signal_hist.shape
    nrows = int(np.ceil(ntime / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(3 * ncols, 2.5 * nrows), squeeze=False)

    edges = np.linspace(hist_range[0], hist_range[1], nbins + 1)
    for j, ax in enumerate(axes.flat):
        if j >= ntime:
            ax.set_visible(False)
            continue
        ax.stairs(signal_hist[j], edges, color="tab:red", label="signal")
        ax.stairs(background_hist[j], edges, color="tab:blue", label="background")
        ax.set_title(f"time step {j}", fontsize=9)
        if j == 0:
            ax.legend(fontsize=7)

    plt.tight_layout()
    _maybe_save(fig, savepath)

    if show:
        plt.show()

    return fig
