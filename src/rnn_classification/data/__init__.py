"""
Data access utilities for rnn_classification.

- generator: synthetic signal/background time-series events.
- loading: reading and writing the persisted event file.
- event_loader: variable declarations and the train/test split.

Import the concrete modules directly, for example:

    from rnn_classification.data.generator import make_time_data
"""

from __future__ import annotations

__all__: list[str] = []
