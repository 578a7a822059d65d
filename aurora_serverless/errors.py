"""Exception taxonomy for aurora-serverless.

``ConfigurationError`` is the recoverable kind: the cluster builder collects
these on the ``BuildResult`` instead of aborting, so a caller sees every
problem with a definition in one pass.  ``PreconditionError`` and
``AlreadyExistsError`` abort only the call that raised them.
"""

from __future__ import annotations


class AuroraServerlessError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(AuroraServerlessError):
    """A cluster definition is invalid (bad subnet count, scaling range, ...)."""


class PreconditionError(AuroraServerlessError):
    """An operation needs data or state the target does not have."""


class AlreadyExistsError(AuroraServerlessError):
    """Something was registered twice under the same identity."""
