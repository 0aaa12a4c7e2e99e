"""
Exception types raised by the forest engine.

All of them are fatal for a run: the core has no recoverable error paths, so
callers either fix the configuration or let the exception terminate the run.
"""

from __future__ import annotations


class SylvaError(Exception):
    """Base class for pysylva errors."""


class ConfigurationError(SylvaError, ValueError):
    """Inconsistent configuration (derived field sizes, parameter ranges, policy names)."""


class AllocationError(SylvaError, MemoryError):
    """A field could not be allocated."""


class HaloExchangeError(SylvaError, RuntimeError):
    """A halo message was lost, late, or did not match the expected tag/shape/checksum."""


class NumericalError(SylvaError, FloatingPointError):
    """A field became non-finite or negative where the model forbids it."""
