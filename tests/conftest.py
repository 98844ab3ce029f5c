"""
Pytest configuration for tests under tests/.

Tests import the package as `profiler.*` and the builders as `fixtures.*`.
This conftest puts the repo root and tests/ on sys.path regardless of
invocation cwd.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
REPO_ROOT = TESTS_DIR.parent

for path in (REPO_ROOT, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fixtures.profiles import get_profile_from_text_samples  # noqa: E402


CALL_TREE_TEXT = """
    A  A  A
    B  B  B
    C  C  H
    D  F  I
    E  G
"""


@pytest.fixture
def call_tree_profile():
    """The five-sample tree used across call tree and transform tests."""
    profile, func_names = get_profile_from_text_samples(CALL_TREE_TEXT)
    return profile, func_names[0]
