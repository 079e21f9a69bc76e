"""Stack walking over CPU contexts and stack memory captured in minidumps."""

__version__ = "0.3.0"