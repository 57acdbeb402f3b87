from __future__ import annotations

from typing import Tuple

import numpy as np
import torch
from torch.utils.data import Dataset

from rnn_classification.data.event_loader import EventSample
from rnn_classification.exceptions import DataError


class EventSequenceDataset(Dataset):
    """PyTorch Dataset over a prepared :class:`EventSample`.

    Each item is ``(x, y, w)``:

        x: (ntime, ndim) float32 tensor
        y: scalar float32 label (1 = signal, 0 = background)
        w: scalar float32 event weight

    so a DataLoader yields ``(B, ntime, ndim)``, ``(B,)`` and ``(B,)`` batches.
    """

    def __init__(self, sample: EventSample) -> None:
        super().__init__()
        if sample.x.ndim != 3:
            raise DataError(
                "Event sample must have shape (n_events, ntime, ndim).",
                code="data_bad_event_shape",
                context={"shape": list(sample.x.shape)},
                location="rnn_classification.torch.datasets.sequence.EventSequenceDataset.__init__",
            )
        if len(sample) == 0:
            raise DataError(
                "Cannot build a dataset from an empty sample.",
                code="data_empty_sample",
                location="rnn_classification.torch.datasets.sequence.EventSequenceDataset.__init__",
            )

        self.x = torch.from_numpy(np.ascontiguousarray(sample.x, dtype=np.float32))
        self.y = torch.from_numpy(np.ascontiguousarray(sample.y, dtype=np.float32))
        self.w = torch.from_numpy(np.ascontiguousarray(sample.weights, dtype=np.float32))

    def __len__(self) -> int:
        return int(self.x.shape[0])

    def __getitem__(self, idx: int) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        return self.x[idx], self.y[idx], self.w[idx]

    @property
    def ntime(self) -> int:
        return int(self.x.shape[1])

    @property
    def ndim(self) -> int:
        return int(self.x.shape[2])
