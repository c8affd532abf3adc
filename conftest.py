# Root conftest.py - keeps the repository root importable so tests can use
# the flat `core` / `validation` / `infrastructure` packages without install,
# and exposes tests/graph_factories.py to every test directory.
import os
import sys

ROOT = os.path.dirname(os.path.abspath(__file__))

sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.join(ROOT, "tests"))
