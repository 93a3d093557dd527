"""monstack CLI commands."""
