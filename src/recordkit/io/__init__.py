"""Storage-facing subpackages: ``xlsx`` (record export) and ``fs`` (retention)."""
