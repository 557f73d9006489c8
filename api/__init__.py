"""Local HTTP interface for the ClinicVault backup engine."""

from backup import __version__

__all__ = ["__version__"]
