from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import numpy as np
import pandas as pd

from rnn_classification.exceptions import DataError, InputFileError
from rnn_classification.logging_config import get_logger

logger = get_logger(__name__)

TREE_COLUMN = "tree"
SIGNAL_TREE = "sgn"
BACKGROUND_TREE = "bkg"


def variable_array_names(name: str, width: int) -> List[str]:
    """Expand an array variable into its element names: ``name[0] .. name[width-1]``."""
    return [f"{name}[{k}]" for k in range(width)]


def time_variable_names(ntime: int, ndim: int, prefix: str = "vars_time") -> List[str]:
    """Column names of a (ntime, ndim) event, time-major."""
    names: List[str] = []
    for i in range(ntime):
        names.extend(variable_array_names(f"{prefix}{i}", ndim))
    return names


def _infer_format(path: Path) -> str:
    """Infer file format from suffix, defaulting to 'parquet'."""
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return "csv"
    if suffix == ".feather":
        return "feather"
    return "parquet"


def _ensure_exists(path: Path) -> None:
    if not path.exists():
        raise InputFileError(path, location=f"{__name__}._ensure_exists")


def _validate_columns(
    df: pd.DataFrame,
    required_columns: Iterable[str] | None = None,
    *,
    path: Path | None = None,
) -> None:
    if not required_columns:
        return

    missing = set(required_columns).difference(df.columns)
    if missing:
        raise DataError(
            "Missing required columns in loaded dataset",
            code="data_missing_columns",
            context={
                "path": str(path) if path is not None else None,
                "missing_columns": sorted(missing)[:10],
                "n_missing": len(missing),
            },
            location=f"{__name__}._validate_columns",
        )


def load_dataframe(
    path: str | Path,
    *,
    format: str | None = None,
    required_columns: Iterable[str] | None = None,
    read_kwargs: Mapping[str, Any] | None = None,
) -> pd.DataFrame:
    """Load a tabular file into a DataFrame with structured errors.

    Parameters
    ----------
    path:
        File to read.
    format:
        'parquet', 'csv' or 'feather'. Inferred from the suffix when omitted.
    required_columns:
        Columns that must be present; otherwise a DataError is raised.
    read_kwargs:
        Extra keyword arguments for the pandas reader.

    Raises
    ------
    DataError
        If the file does not exist, cannot be read, or misses columns.
    """
    path = Path(path)
    _ensure_exists(path)

    fmt = (format or _infer_format(path)).lower()
    kwargs: dict[str, Any] = dict(read_kwargs or {})

    logger.info("Loading dataframe from %s (format=%s)", path, fmt)

    try:
        if fmt == "csv":
            df = pd.read_csv(path, **kwargs)
        elif fmt == "parquet":
            df = pd.read_parquet(path, **kwargs)
        elif fmt == "feather":
            df = pd.read_feather(path, **kwargs)
        else:
            raise DataError(
                f"Unsupported data format: {fmt}",
                code="data_unsupported_format",
                context={"path": str(path), "format": fmt},
                location=f"{__name__}.load_dataframe",
            )
    except DataError:
        raise
    except Exception as exc:
        raise InputFileError(
            path,
            reason=f"unreadable as {fmt}",
            code="data_load_error",
            cause=exc,
            location=f"{__name__}.load_dataframe",
        ) from exc

    _validate_columns(df, required_columns, path=path)

    logger.info("Loaded dataframe: %d rows x %d columns", df.shape[0], df.shape[1])
    return df


# ---------------------------------------------------------------------------
# Event files: two trees ("sgn", "bkg") stored in one table
# ---------------------------------------------------------------------------


def events_to_frame(events: np.ndarray, tree: str) -> pd.DataFrame:
    """Flatten (n, ntime, ndim) events into one row per event."""
    if events.ndim != 3:
        raise DataError(
            "Events must have shape (n_events, ntime, ndim).",
            code="data_bad_event_shape",
            context={"shape": list(events.shape)},
            location=f"{__name__}.events_to_frame",
        )
    n, ntime, ndim = events.shape
    frame = pd.DataFrame(
        events.reshape(n, ntime * ndim).astype(np.float32, copy=False),
        columns=time_variable_names(ntime, ndim),
    )
    frame.insert(0, TREE_COLUMN, tree)
    return frame


def write_event_file(
    path: str | Path,
    signal: np.ndarray,
    background: np.ndarray,
    *,
    fmt: str | None = None,
) -> Path:
    """Persist signal and background events to a single tabular file.

    Both collections must share the same (ntime, ndim) shape. Rows keep
    their generation order; the ``tree`` column tells the collections apart.
    """
    path = Path(path)
    if signal.shape[1:] != background.shape[1:]:
        raise DataError(
            "Signal and background events must have identical (ntime, ndim) shapes.",
            code="data_shape_mismatch",
            context={"signal": list(signal.shape), "background": list(background.shape)},
            location=f"{__name__}.write_event_file",
        )

    frame = pd.concat(
        [events_to_frame(signal, SIGNAL_TREE), events_to_frame(background, BACKGROUND_TREE)],
        ignore_index=True,
    )
    frame[TREE_COLUMN] = frame[TREE_COLUMN].astype("category")

    fmt = (fmt or _infer_format(path)).lower()
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        if fmt == "csv":
            frame.to_csv(path, index=False)
        elif fmt == "feather":
            frame.to_feather(path)
        elif fmt == "parquet":
            frame.to_parquet(path, index=False)
        else:
            raise DataError(
                f"Unsupported data format: {fmt}",
                code="data_unsupported_format",
                context={"path": str(path), "format": fmt},
                location=f"{__name__}.write_event_file",
            )
    except DataError:
        raise
    except Exception as exc:
        raise DataError(
            f"Failed to write event file {path}",
            code="data_write_error",
            cause=exc,
            context={"path": str(path), "format": fmt},
            location=f"{__name__}.write_event_file",
        ) from exc

    return path


def read_event_trees(path: str | Path) -> Dict[str, pd.DataFrame]:
    """Read an event file and split it into its ``sgn`` and ``bkg`` trees."""
    df = load_dataframe(path, required_columns=[TREE_COLUMN])
    trees: Dict[str, pd.DataFrame] = {}
    for name in (SIGNAL_TREE, BACKGROUND_TREE):
        tree = df.loc[df[TREE_COLUMN].astype(str) == name].drop(columns=[TREE_COLUMN])
        if tree.empty:
            raise DataError(
                f"Event file has no '{name}' records.",
                code="data_missing_tree",
                context={"path": str(path), "tree": name},
                location=f"{__name__}.read_event_trees",
            )
        trees[name] = tree.reset_index(drop=True)
        logger.info("Tree %s: %d entries, %d branches", name, len(tree), tree.shape[1])
    return trees


def frame_to_events(
    frame: pd.DataFrame,
    ntime: int,
    ndim: int,
    prefix: str = "vars_time",
) -> np.ndarray:
    """Gather the ``vars_time*`` columns back into a (n, ntime, ndim) float32 array."""
    columns = time_variable_names(ntime, ndim, prefix=prefix)
    _validate_columns(frame, columns)
    values = frame[columns].to_numpy(dtype=np.float32)
    return values.reshape(len(frame), ntime, ndim)
