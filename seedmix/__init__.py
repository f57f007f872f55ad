"""SeedMix - playlist generation from a single seed track."""

__version__ = "0.1.0"
