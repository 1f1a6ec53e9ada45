"""EMI Tracker - personal EMI, payment and savings tracking API."""

__version__ = "1.0.0"
