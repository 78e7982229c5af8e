"""Recovery plan synthesis, policy validation and execution forecasting."""

__version__ = "0.3.0"
