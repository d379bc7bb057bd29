"""Flight-controller rate curves and configuration synchronisation."""

__version__ = "0.1.0"
