# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""Exceptions raised by the mapping engine."""

from __future__ import annotations

__all__ = [
    "DanglingReferenceError",
    "MetaXMLError",
    "ParseError",
    "SchemaConflictError",
    "UnknownTypeError",
    "ValidationError",
]

import collections.abc as cabc


class MetaXMLError(Exception):
    """Base class for all errors raised by metaxml."""


class SchemaConflictError(MetaXMLError, ValueError):
    """Raised when descriptors cannot be merged into one registry.

    This error is fatal for the registry under construction; the
    registry must be discarded.
    """


class UnknownTypeError(MetaXMLError, KeyError):
    """Raised when a qualified type name is not known to the registry."""

    def __init__(self, name: str, /) -> None:
        super().__init__(name)

    @property
    def name(self) -> str:
        """The type name that was searched for."""
        return self.args[0]

    def __str__(self) -> str:
        return f"Unknown type: {self.name}"


class ParseError(MetaXMLError, ValueError):
    """Raised when the input is not well-formed XML."""


class ValidationError(MetaXMLError, ValueError):
    """Raised when well-formed XML does not match the registered schema."""


class DanglingReferenceError(ValidationError):
    """Raised when references point to IDs that are not in the document.

    All unresolved IDs of a document are reported at once, in the order
    in which they were first referenced.
    """

    def __init__(self, ids: cabc.Iterable[str], /) -> None:
        super().__init__(tuple(ids))

    @property
    def ids(self) -> tuple[str, ...]:
        """The IDs that could not be resolved."""
        return self.args[0]

    def __str__(self) -> str:
        return "Unresolved references: " + ", ".join(
            f"#{i}" for i in self.ids
        )
