# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

__all__ = [
    "NAMESPACES",
    "NamespaceMap",
    "UnknownNamespaceError",
]

import collections.abc as cabc
import logging
import typing as t

from ._errors import SchemaConflictError

LOGGER = logging.getLogger(__name__)

NAMESPACES: t.Final[cabc.Mapping[str, str]] = {
    "xml": "http://www.w3.org/XML/1998/namespace",
    "xsi": "http://www.w3.org/2001/XMLSchema-instance",
}
"""Namespaces that are bound in every registry."""


class UnknownNamespaceError(KeyError):
    """Raised when a requested namespace cannot be found."""

    def __init__(self, name: str, /) -> None:
        super().__init__(name)

    @property
    def name(self) -> str:
        """The prefix or URI that was searched for."""
        return self.args[0]

    def __str__(self) -> str:
        return f"Namespace not found: {self.name}"


class NamespaceMap:
    """The namespace bindings of a single registry.

    Each URI has exactly one canonical prefix, which is used whenever
    markup is written. Every prefix that was ever bound to a URI stays
    valid as an alias, so that qualified type names using any of them
    can still be resolved.

    The first prefix registered for a URI becomes canonical, unless a
    later binding explicitly requests its prefix to be the canonical
    one. Two explicit requests for different prefixes are a conflict.
    """

    def __init__(self) -> None:
        self.__canonical: dict[str, str] = {}
        self.__requested: set[str] = set()
        self.__uris: dict[str, str] = {}
        for prefix, uri in NAMESPACES.items():
            self.bind(uri, prefix)

    def bind(self, uri: str, prefix: str, *, canonical: bool = False) -> None:
        """Bind ``prefix`` to ``uri``.

        Raises
        ------
        SchemaConflictError
            If the prefix is already bound to a different URI, or if
            another explicit canonical prefix was requested for the
            same URI.
        """
        if not prefix or ":" in prefix:
            raise SchemaConflictError(f"Invalid namespace prefix: {prefix!r}")

        bound = self.__uris.get(prefix)
        if bound is not None and bound != uri:
            raise SchemaConflictError(
                f"Prefix {prefix!r} is bound to {bound!r},"
                f" cannot rebind it to {uri!r}"
            )
        self.__uris[prefix] = uri

        current = self.__canonical.get(uri)
        if current is None:
            self.__canonical[uri] = prefix
        elif canonical and current != prefix:
            if uri in self.__requested:
                raise SchemaConflictError(
                    f"Conflicting canonical prefixes for {uri!r}:"
                    f" {current!r} and {prefix!r}"
                )
            LOGGER.debug(
                "Canonical prefix of %s changed from %r to %r",
                uri,
                current,
                prefix,
            )
            self.__canonical[uri] = prefix
        if canonical:
            self.__requested.add(uri)

    def prefix_of(self, uri: str) -> str:
        """Return the canonical prefix for ``uri``."""
        try:
            return self.__canonical[uri]
        except KeyError:
            raise UnknownNamespaceError(uri) from None

    def uri_of(self, prefix: str) -> str:
        """Return the URI bound to ``prefix`` (canonical or alias)."""
        try:
            return self.__uris[prefix]
        except KeyError:
            raise UnknownNamespaceError(prefix) from None

    def canonicalize(self, prefix: str) -> str:
        """Map a prefix alias to the canonical prefix of its URI."""
        return self.prefix_of(self.uri_of(prefix))

    def __contains__(self, uri: object) -> bool:
        return uri in self.__canonical

    def items(self) -> cabc.ItemsView[str, str]:
        """Return the canonical ``(uri, prefix)`` pairs."""
        return self.__canonical.items()
