"""
CLI tools for dataset store administration.

Invariants:
    - Tools work offline against the database file (no server required)
    - Multi-dataset imports are atomic
"""

from .dataset_cli import DatasetCLI, ImportFileError

__all__ = ["DatasetCLI", "ImportFileError"]
