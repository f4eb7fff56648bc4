"""Installation state — the manifest document and detection of what is installed."""
