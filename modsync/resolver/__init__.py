"""Dependency resolution — which files of which modules a run installs."""
