"""cloudscribe - checkout, fee calculation and purchase reconciliation."""

__version__ = "0.1.0"
