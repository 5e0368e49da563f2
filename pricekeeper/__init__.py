"""pricekeeper: resilient multi-source token price resolution."""

__version__ = "1.0.0"
