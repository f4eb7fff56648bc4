"""Content cache — local copies of custom and external module sources.

The cache is an optimization layer: losing it costs a re-copy, never
correctness, because every copy is re-derived from the live source.
"""
