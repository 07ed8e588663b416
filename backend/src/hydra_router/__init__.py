"""Hydra Router — resilient multi-provider generation routing."""

__version__ = "0.1.0"
