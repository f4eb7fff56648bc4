"""Installation data models — modules, artifacts, file records, cache entries, manifest."""
