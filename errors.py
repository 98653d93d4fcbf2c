"""
Error types raised by the line stacking transform.

Request-level errors derive from StackProcessError and abort the whole
invocation. GeometryError is the only per-feature error; the offset builder
logs it and skips the affected stack member.
"""


class StackProcessError(Exception):
    """A request-level failure. No output collection is produced."""


class ValidationError(StackProcessError):
    """Invalid parameters, schema or input feature values."""


class ScriptError(StackProcessError):
    """The render script could not be created or failed during evaluation."""


class GeometryError(Exception):
    """A single feature's geometry could not be offset."""
