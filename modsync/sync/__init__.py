"""Reconciliation — classify local edits, back them up, write modules, restore.

This package provides:
- Classification: which installed files are custom or modified
- Backups: side copies of local edits that survive a failed run
- Writing: placeholder substitution and atomic file writes, journaled
- Pre-flight: caller decisions for modules whose source went missing
- The reconciler state machine that drives a whole run
"""
