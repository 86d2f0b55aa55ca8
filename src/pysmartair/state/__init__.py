"""State layer.

This package is the single source of truth for how observations arriving
from push or polling are merged into the per-station latest view and the
rolling history.
"""
