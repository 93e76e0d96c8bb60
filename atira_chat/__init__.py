"""Real-time chat relay for the Atira stroke-education platform."""

__version__ = "1.0.0"
