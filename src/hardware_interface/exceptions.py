"""Exception types raised by the servo link."""

from __future__ import annotations


class ServoLinkError(Exception):
    """Base class for servo link failures."""


class TransportError(ServoLinkError):
    """Channel open, read or write failure."""


class SkillValidationError(ServoLinkError):
    """
    Imported skill data was rejected.

    The message is meant to be shown to the user as is.
    """
