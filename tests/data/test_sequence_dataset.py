from __future__ import annotations

import numpy as np
import pytest
import torch
from torch.utils.data import DataLoader

from rnn_classification.data.event_loader import EventLoader, EventSample
from rnn_classification.exceptions import DataError
from rnn_classification.torch.datasets.sequence import EventSequenceDataset

from tests.conftest import NDIM, NTIME


# ---------------------------------------------------------------------------
# Construction and shapes
# ---------------------------------------------------------------------------


def test_dataset_items_are_event_label_weight(prepared_loader: EventLoader) -> None:
    """Each item is (x, y, w) with x shaped (ntime, ndim)."""
    sample = prepared_loader.prepared.train
    ds = EventSequenceDataset(sample)

    assert len(ds) == len(sample)
    assert ds.ntime == NTIME
    assert ds.ndim == NDIM

    x, y, w = ds[0]
    assert x.shape == (NTIME, NDIM)
    assert x.dtype == torch.float32
    assert y.shape == ()
    assert w.shape == ()
    assert float(y) in {0.0, 1.0}


def test_dataloader_batches_have_expected_shapes(prepared_loader: EventLoader) -> None:
    ds = EventSequenceDataset(prepared_loader.prepared.train)
    loader = DataLoader(ds, batch_size=16, shuffle=False)

    xb, yb, wb = next(iter(loader))

    assert xb.shape == (16, NTIME, NDIM)
    assert yb.shape == (16,)
    assert wb.shape == (16,)


def test_dataset_keeps_sample_values() -> None:
    x = np.arange(2 * 3 * 4, dtype=np.float64).reshape(2, 3, 4)
    sample = EventSample(
        x=x,
        y=np.array([1.0, 0.0], dtype=np.float32),
        weights=np.array([0.5, 2.0], dtype=np.float32),
    )

    ds = EventSequenceDataset(sample)
    x1, y1, w1 = ds[1]

    np.testing.assert_array_equal(x1.numpy(), x[1].astype(np.float32))
    assert float(y1) == 0.0
    assert float(w1) == pytest.approx(2.0)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


def test_flat_sample_is_rejected() -> None:
    sample = EventSample(
        x=np.zeros((3, 12), dtype=np.float32),
        y=np.zeros(3, dtype=np.float32),
        weights=np.ones(3, dtype=np.float32),
    )

    with pytest.raises(DataError) as ctx:
        EventSequenceDataset(sample)
    assert ctx.value.code == "data_bad_event_shape"


def test_empty_sample_is_rejected() -> None:
    sample = EventSample(
        x=np.zeros((0, 2, 2), dtype=np.float32),
        y=np.zeros(0, dtype=np.float32),
        weights=np.zeros(0, dtype=np.float32),
    )

    with pytest.raises(DataError) as ctx:
        EventSequenceDataset(sample)
    assert ctx.value.code == "data_empty_sample"
