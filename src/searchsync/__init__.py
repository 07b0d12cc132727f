"""SearchSync — Uniform search over interchangeable full-text backends, kept in sync with your records."""

__version__ = "0.1.0"
