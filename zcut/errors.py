"""Exceptions raised by the optimisation and code generation engines."""


class ZCutError(Exception):
    """Base class for all zcut errors."""


class InvalidInputError(ZCutError, ValueError):
    """Parts, stock sheets or settings that cannot be processed at all."""


class ProfileMismatchError(ZCutError):
    """A G-code profile template is empty or malformed."""
