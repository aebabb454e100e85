# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""Miscellaneous utility functions used throughout the modules."""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import os
import random
import re
import typing as t
import uuid

import typing_extensions as te
from lxml import etree

import metaxml._namespaces as _n


ATT_XSI_TYPE = f"{{{_n.NAMESPACES['xsi']}}}type"
RE_VALID_ID = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]*")
P_CLARK_NAME = re.compile(r"^(?:\{([^}]*)\})?(.+)$")

_ID_GENERATOR = random.Random(os.getenv("METAXML_ID_SEED") or None)

IDString = t.NewType("IDString", str)
"""A string that can be used as element identity and reference target."""


def is_valid_id(string: t.Any) -> te.TypeGuard[IDString]:
    """Validate that ``string`` can be used as an element ID."""
    return isinstance(string, str) and bool(RE_VALID_ID.fullmatch(string))


def generate_id(prefix: str = "id_") -> str:
    """Generate a new, random ID to be used in a document.

    The ID starts with *prefix*, so that it is a valid XML name even
    though the random part may start with a digit.
    """
    random_bytes = _ID_GENERATOR.randbytes(16)
    return prefix + str(uuid.UUID(bytes=random_bytes, version=4))


@contextlib.contextmanager
def deterministic_ids(*, seed: t.Any = None) -> cabc.Iterator[None]:
    """Enter a context during which generated IDs are deterministic.

    This function is primarily intended for testing. It can be used as
    a context manager, or to decorate a function, in which case
    deterministic IDs will be generated while that function is being
    called::

        with deterministic_ids():
            first = generate_id()
        with deterministic_ids():
            assert generate_id() == first

    A seed for the PRNG may be passed using the *seed* keyword argument.
    """
    global _ID_GENERATOR

    if seed is None:
        seed = 0
    orig_generator = _ID_GENERATOR
    _ID_GENERATOR = random.Random(seed)
    try:
        yield
    finally:
        _ID_GENERATOR = orig_generator


def split_qname(name: str) -> tuple[str | None, str]:
    """Split a ``prefix:local`` name into its prefix and local part.

    Names without a prefix yield ``None`` as prefix.
    """
    prefix, sep, local = name.rpartition(":")
    if not sep:
        return None, name
    if not prefix or not local:
        raise ValueError(f"Malformed qualified name: {name!r}")
    return prefix, local


def split_clark(name: str) -> tuple[str | None, str]:
    """Split an ``{uri}local`` name into the namespace URI and local name."""
    match = P_CLARK_NAME.search(name)
    if match is None:
        raise ValueError(f"Malformed name: {name!r}")
    return match.group(1) or None, match.group(2)


def resolve_namespace(
    name: str, nsmap: cabc.Mapping[str | None, str]
) -> str:
    """Resolve a ':'-delimited name to Clark notation.

    Parameters
    ----------
    name
        Name in ``prefix:local`` form, or a plain local name.
    nsmap
        The prefix bindings to resolve against. A ``None`` key is used
        as default namespace for unprefixed names.

    Returns
    -------
    str
        The name in ``{uri}local`` form, or the plain local name if it
        has no prefix and there is no default namespace.
    """
    prefix, local = split_qname(name)
    try:
        uri = nsmap[prefix]
    except KeyError:
        if prefix is None:
            return local
        raise ValueError(f"Undeclared namespace prefix: {prefix!r}") from None
    return f"{{{uri}}}{local}"


def xsi_type_of(elem: etree._Element) -> etree.QName | None:
    """Return the resolved ``xsi:type`` of the element, if it has one."""
    xtype = elem.get(ATT_XSI_TYPE)
    if not xtype:
        return None
    return etree.QName(resolve_namespace(xtype, elem.nsmap))


def split_links(links: str) -> cabc.Iterator[str]:
    """Split a string containing space-separated references.

    Each reference is either a fragment link ``#ID`` or a plain ``ID``.
    This function yields the bare IDs.

    Yields
    ------
    str
        A single ID from the list.
    """
    for part in links.split():
        yield parse_link(part)


def parse_link(link: str) -> str:
    """Return the ID that a single ``#ID`` or ``ID`` link points to."""
    link = link.strip()
    _, _, target = link.rpartition("#")
    if not target:
        raise ValueError(f"Malformed link definition: {link!r}")
    return target


def make_link(target_id: str, *, fragment: bool = True) -> str:
    """Encode a reference to ``target_id``."""
    if fragment:
        return f"#{target_id}"
    return target_id
