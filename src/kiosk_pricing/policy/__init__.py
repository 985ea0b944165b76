"""Price list resolution."""
