"""Fighter dispatch: escrowed missions matched to the nearest qualified provider."""

__version__ = "0.1.0"
