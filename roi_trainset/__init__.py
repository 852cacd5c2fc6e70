"""Pixel-classifier training data from annotated regions of interest."""

__version__ = "0.1.0"
