"""Ensemble lottery prediction engine: boost, forest and sequence models combined by a hybrid vote."""

__version__ = "0.1.0"
