"""dagent: a plan-driven shell agent loop."""

__version__ = "0.1.0"
