"""Lyon Transit Ingest: normalizes Grand Lyon open-data transit feeds into PostgreSQL."""

__version__ = "0.1.0"

from lyon_transit.__main__ import main

__all__ = ["main", "__version__"]
