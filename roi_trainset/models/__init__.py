"""Model components: per-pixel feature extractors."""
