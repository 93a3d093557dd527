"""monstack - release orchestrator for a self-hosted monitoring stack."""

__version__ = "1.0.0"
