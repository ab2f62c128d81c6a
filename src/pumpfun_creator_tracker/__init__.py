"""Pump.fun Creator Tracker - creator statistics and launch alerting."""

__version__ = "0.1.0"
