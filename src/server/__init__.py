"""Service wiring - configuration, background workers, diagnostics API."""
