"""
CLI tools for LinkStore.

This module provides command-line tools for:
- seed: Persist, inspect and drop local data without a running server

Invariants:
    - Tools work offline against the configured data directory
"""

from .seed_cli import SeedCLI

__all__ = ["SeedCLI"]
