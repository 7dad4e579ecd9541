"""Gold and silver spot prices in CAD with provider fallback and monthly snapshots."""

__version__ = "1.0.0"
