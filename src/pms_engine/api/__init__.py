"""HTTP API for the PMS engine."""
