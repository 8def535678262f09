"""ci-guardian: safety-gated patch generation for failed CI runs."""

__version__ = "0.1.0"
