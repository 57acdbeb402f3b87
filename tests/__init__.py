"""
Test suite for the rnn_classification package.

This package is organized by concern:

- data/       – generator, event file and event loader tests
- models/     – tests for the layout-driven recurrent classifier
- training/   – tests for losses, training loops and early stopping
- evaluation/ – tests for metrics and plots
- cli/        – tests for the Typer-based command-line interface
- mlops/      – tests for MLflow utilities
- conftest.py – shared fixtures and test configuration

Notes
-----
- No side effects here (no imports that configure logging, load configs, etc.).
- Being a package lets test modules import shared constants from
  ``tests.conftest``.
"""

__all__: list[str] = []
