"""
Classifier methods that can be booked on a Factory.

- deep_learning.MethodDL: recurrent / dense networks trained with PyTorch.
- bdt.MethodBDT: gradient-boosted decision trees (scikit-learn).
"""

from __future__ import annotations

from rnn_classification.methods.base import Method
from rnn_classification.methods.bdt import MethodBDT
from rnn_classification.methods.deep_learning import MethodDL

METHOD_TYPES = {
    MethodDL.method_type: MethodDL,
    MethodBDT.method_type: MethodBDT,
}

__all__ = ["Method", "MethodBDT", "MethodDL", "METHOD_TYPES"]
