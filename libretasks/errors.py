"""Exception types for libretasks.

Three fatal categories, all raised once and never retried internally:

    ParseError         malformed or unexpected binary structure (build time)
    InconsistentError  structurally valid model that cannot serve the task
                       (wrong tensor count/type, missing quantization, ...)
    ArgumentError      invalid caller configuration (configuration time)

All derive from ``ValueError`` so code written against the plain parser
(which historically raised ``ValueError``) keeps working.
"""

__all__ = ["LibreTasksError", "ParseError", "InconsistentError", "ArgumentError"]


class LibreTasksError(Exception):
    """Base class for every error raised by libretasks."""


class ParseError(LibreTasksError, ValueError):
    """Model binary could not be parsed."""


class InconsistentError(LibreTasksError, ValueError):
    """Model is well-formed but unusable for the requested task."""


class ArgumentError(LibreTasksError, ValueError):
    """Invalid caller-supplied configuration."""
