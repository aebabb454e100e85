# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""Meta-model descriptors.

A meta-model is described by one *package* per XML namespace. Each
package is a plain data document (JSON or YAML) that looks like this:

.. code-block:: json

   {
     "name": "DMN",
     "uri": "https://www.omg.org/spec/DMN/20191111/MODEL/",
     "prefix": "dmn",
     "xml": {"tagAlias": "lowerCase"},
     "types": [
       {
         "name": "DMNElement",
         "isAbstract": true,
         "properties": [
           {"name": "id", "type": "String", "isAttr": true, "isId": true}
         ]
       },
       {"name": "Decision", "superClass": ["DMNElement"]}
     ]
   }

The descriptors in this module are the parsed, immutable form of such
documents. They carry no behavior; merging packages and resolving
inheritance is the job of :class:`~metaxml.model.TypeRegistry`.
"""

from __future__ import annotations

__all__ = [
    "EnumerationDescriptor",
    "Package",
    "PropertyDescriptor",
    "SerializationKind",
    "TypeDescriptor",
    "load_package",
]

import collections.abc as cabc
import contextlib
import dataclasses
import enum
import json
import logging
import os
import typing as t

import yaml

from metaxml._errors import SchemaConflictError

from . import _pods

LOGGER = logging.getLogger(__name__)

FileOrPath = str | os.PathLike[t.Any] | t.IO[str]

BUILTIN_TYPES = frozenset({*_pods.PRIMITIVES, _pods.ANY_TYPE})


class SerializationKind(enum.Enum):
    """How a property is represented in markup."""

    ATTRIBUTE = enum.auto()
    """An XML attribute on the owning element."""
    ELEMENT = enum.auto()
    """One child element per value."""
    BODY = enum.auto()
    """The text content of the owning element."""
    REFERENCE = enum.auto()
    """The identity of another instance, as attribute or child element."""


@dataclasses.dataclass(frozen=True)
class PropertyDescriptor:
    """Describes one property of a type."""

    name: str
    """The local name of the property."""
    type: str
    """The declared type.

    This is either the name of a primitive type (``String``,
    ``Boolean``, ``Integer``, ``Real``), ``Element`` for arbitrary XML,
    or the qualified name of a type or enumeration.
    """
    kind: SerializationKind
    prefix: str
    """Prefix of the package that declares this property."""
    owner: str
    """Qualified name of the type that declares this property."""
    is_many: bool = False
    is_attr: bool = False
    """Whether a reference is stored in an attribute."""
    is_id: bool = False
    default: t.Any = None
    tag_by_property: bool = False
    """Whether child elements are named after the property.

    By default, nested instances are written as elements named after
    their own type.
    """
    wrapped: bool = False
    """Whether list members are nested in one wrapper element."""
    fragment_ref: bool = True
    """Whether references are written as ``#ID`` rather than ``ID``."""
    key: str = ""
    """The name under which the value is stored on instances.

    This is the local name for properties declared in the type
    hierarchy, and ``prefix:name`` for properties added by another
    namespace through ``extends``.
    """

    def __post_init__(self) -> None:
        if not self.key:
            object.__setattr__(self, "key", self.name)

    @property
    def is_primitive(self) -> bool:
        return self.type in _pods.PRIMITIVES

    @property
    def is_any(self) -> bool:
        return self.type == _pods.ANY_TYPE

    @property
    def qualified_name(self) -> str:
        return f"{self.prefix}:{self.name}"


@dataclasses.dataclass(frozen=True)
class TypeDescriptor:
    """Describes a type of model instances."""

    name: str
    prefix: str
    uri: str
    tag: str
    """The local name of elements representing this type."""
    supertype: str | None = None
    properties: tuple[PropertyDescriptor, ...] = ()
    is_abstract: bool = False
    extends: tuple[str, ...] = ()
    """Qualified names of types that receive this type's properties."""

    @property
    def qualified_name(self) -> str:
        return f"{self.prefix}:{self.name}"

    def __str__(self) -> str:
        return self.qualified_name


@dataclasses.dataclass(frozen=True)
class EnumerationDescriptor:
    """Describes a closed set of string literals."""

    name: str
    prefix: str
    literals: tuple[str, ...]

    @property
    def qualified_name(self) -> str:
        return f"{self.prefix}:{self.name}"


@dataclasses.dataclass(frozen=True)
class Package:
    """All descriptors belonging to one namespace."""

    name: str
    uri: str
    prefix: str
    canonical_prefix: bool = False
    """Whether this package insists on its prefix being canonical."""
    types: tuple[TypeDescriptor, ...] = ()
    enumerations: tuple[EnumerationDescriptor, ...] = ()

    @classmethod
    def from_mapping(cls, data: cabc.Mapping[str, t.Any], /) -> Package:
        """Build a package from a parsed descriptor document.

        Raises
        ------
        SchemaConflictError
            If the document is structurally invalid.
        """
        try:
            uri = data["uri"]
        except KeyError:
            raise SchemaConflictError("Package has no 'uri'") from None
        name = data.get("name") or uri
        prefix = data.get("prefix") or str(name).lower()
        xmlopts = data.get("xml") or {}
        tag_alias = xmlopts.get("tagAlias")
        if tag_alias not in (None, "lowerCase"):
            raise SchemaConflictError(
                f"Unsupported tagAlias in package {name}: {tag_alias!r}"
            )

        types = tuple(
            _parse_type(i, prefix, uri, tag_alias)
            for i in data.get("types", ())
        )
        enumerations = tuple(
            EnumerationDescriptor(
                name=i["name"],
                prefix=prefix,
                literals=tuple(
                    j["name"] if isinstance(j, cabc.Mapping) else j
                    for j in i.get("literalValues", ())
                ),
            )
            for i in data.get("enumerations", ())
        )
        return cls(
            name=name,
            uri=uri,
            prefix=prefix,
            canonical_prefix=bool(data.get("canonicalPrefix", False)),
            types=types,
            enumerations=enumerations,
        )


def _qualify(name: str, prefix: str) -> str:
    if name in BUILTIN_TYPES or ":" in name:
        return name
    return f"{prefix}:{name}"


def _make_tag(name: str, tag_alias: str | None) -> str:
    if tag_alias == "lowerCase":
        return name[:1].lower() + name[1:]
    return name


def _parse_type(
    data: cabc.Mapping[str, t.Any],
    prefix: str,
    uri: str,
    tag_alias: str | None,
) -> TypeDescriptor:
    name = data["name"]
    qname = f"{prefix}:{name}"

    supertypes = data.get("superClass") or ()
    if isinstance(supertypes, str):
        supertypes = (supertypes,)
    if len(supertypes) > 1:
        raise SchemaConflictError(
            f"{qname} declares more than one supertype:"
            f" {', '.join(supertypes)}"
        )
    supertype = _qualify(supertypes[0], prefix) if supertypes else None

    extends = data.get("extends") or ()
    if isinstance(extends, str):
        extends = (extends,)

    properties = tuple(
        _parse_property(i, prefix, qname) for i in data.get("properties", ())
    )
    seen: set[str] = set()
    for prop in properties:
        if prop.name in seen:
            raise SchemaConflictError(
                f"Duplicate property {prop.name!r} in {qname}"
            )
        seen.add(prop.name)

    return TypeDescriptor(
        name=name,
        prefix=prefix,
        uri=uri,
        tag=_make_tag(name, tag_alias),
        supertype=supertype,
        properties=properties,
        is_abstract=bool(data.get("isAbstract", False)),
        extends=tuple(_qualify(i, prefix) for i in extends),
    )


def _parse_property(
    data: cabc.Mapping[str, t.Any], prefix: str, owner: str
) -> PropertyDescriptor:
    name = data["name"]
    ptype = _qualify(data.get("type", "String"), prefix)
    is_attr = bool(data.get("isAttr", False))
    is_body = bool(data.get("isBody", False))
    is_ref = bool(data.get("isReference", False))
    is_many = bool(data.get("isMany", False))
    xmlopts = data.get("xml") or {}

    def fail(reason: str) -> t.NoReturn:
        raise SchemaConflictError(f"Property {owner}.{name}: {reason}")

    if is_ref:
        kind = SerializationKind.REFERENCE
        if is_body:
            fail("references cannot be body text")
        if ptype in BUILTIN_TYPES:
            fail(f"references must point to a type, not {ptype}")
    elif is_body:
        kind = SerializationKind.BODY
        if is_attr:
            fail("cannot be both attribute and body text")
        if is_many:
            fail("body text cannot have list cardinality")
    elif is_attr:
        kind = SerializationKind.ATTRIBUTE
        if ptype == "Element":
            fail("arbitrary elements cannot be stored in attributes")
    else:
        kind = SerializationKind.ELEMENT

    serialize = xmlopts.get("serialize")
    if serialize not in (None, "property", "xsi:type"):
        fail(f"unsupported serialization {serialize!r}")
    ref_style = xmlopts.get("refStyle", "fragment")
    if ref_style not in ("fragment", "id"):
        fail(f"unsupported reference style {ref_style!r}")
    wrapped = bool(xmlopts.get("wrapped", False))
    if wrapped and (not is_many or kind is not SerializationKind.ELEMENT):
        fail("only element lists can be wrapped")

    default = data.get("default")
    if isinstance(default, str) and ptype in _pods.PRIMITIVES:
        try:
            default = _pods.PRIMITIVES[ptype].from_xml(default)
        except ValueError as err:
            fail(f"invalid default: {err}")

    return PropertyDescriptor(
        name=name,
        type=ptype,
        kind=kind,
        prefix=prefix,
        owner=owner,
        is_many=is_many,
        is_attr=is_attr,
        is_id=bool(data.get("isId", False)),
        default=default,
        tag_by_property=serialize is not None,
        wrapped=wrapped,
        fragment_ref=ref_style == "fragment",
    )


def load_package(file: FileOrPath) -> Package:
    """Load a package descriptor from a JSON or YAML document.

    The document is parsed as JSON first. Paths ending in ``.json``
    must contain JSON, anything else falls back to YAML.

    Parameters
    ----------
    file
        An open file-like object containing the descriptor, or a path
        or PathLike pointing to such a file. Files are expected to use
        UTF-8 encoding.

    Raises
    ------
    SchemaConflictError
        If the document cannot be parsed, or does not describe a valid
        package.
    """
    if hasattr(file, "read"):
        file = t.cast(t.IO[str], file)
        ctx: t.ContextManager[t.IO[str]] = contextlib.nullcontext(file)
        json_only = False
    else:
        assert not isinstance(file, t.IO)
        ctx = open(file, encoding="utf-8")  # noqa: SIM115
        json_only = os.fspath(file).endswith(".json")

    with ctx as opened_file:
        data = _parse_document(opened_file.read(), json_only=json_only)

    if not isinstance(data, cabc.Mapping):
        raise SchemaConflictError(
            f"Expected a mapping as package descriptor,"
            f" found {type(data).__name__}"
        )
    package = Package.from_mapping(data)
    LOGGER.debug(
        "Loaded package %s (%s) with %d types",
        package.name,
        package.uri,
        len(package.types),
    )
    return package


def _parse_document(text: str, *, json_only: bool) -> t.Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as err:
        if json_only:
            raise SchemaConflictError(
                f"Cannot parse package descriptor as JSON: {err}"
            ) from err

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as err:
        raise SchemaConflictError(
            f"Cannot parse package descriptor as YAML: {err}"
        ) from err

