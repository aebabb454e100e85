# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""The type registry merges package descriptors into one meta-model."""

from __future__ import annotations

__all__ = ["TypeRegistry"]

import collections
import collections.abc as cabc
import dataclasses
import logging
import types
import typing as t

from metaxml import _namespaces, helpers
from metaxml._errors import SchemaConflictError, UnknownTypeError

from . import _descriptors, _obj, _pods

LOGGER = logging.getLogger(__name__)

_TypeKey: t.TypeAlias = tuple[str, str]
"""A tuple of namespace URI and local type name."""

Kind = _descriptors.SerializationKind


class TypeRegistry:
    """A queryable collection of type descriptors.

    The registry is filled with one or more packages (see
    :mod:`metaxml.model._descriptors` for the format) and then frozen.
    Freezing happens implicitly as soon as instances are created or the
    registry is used by a reader or writer. A frozen registry is
    immutable and can be shared freely, including across threads.

    Derived data, like the effective property set of a type, is computed
    lazily on first use and cached.

    Parameters
    ----------
    packages
        Packages to register. Either :class:`Package` objects, or
        mappings in the descriptor document format.
    """

    def __init__(
        self,
        *packages: _descriptors.Package | cabc.Mapping[str, t.Any],
    ) -> None:
        self.namespaces = _namespaces.NamespaceMap()
        self.__packages: dict[str, list[_descriptors.Package]] = {}
        self.__types: dict[_TypeKey, _descriptors.TypeDescriptor] = {}
        self.__tags: dict[_TypeKey, _descriptors.TypeDescriptor] = {}
        self.__enums: dict[_TypeKey, _pods.EnumPOD] = {}
        self.__frozen = False
        self.__clear_caches()
        self.register(*packages)

    def __clear_caches(self) -> None:
        self.__chains: dict[_TypeKey, tuple[_descriptors.TypeDescriptor, ...]]
        self.__chains = {}
        self.__effective: dict[
            _TypeKey, cabc.Mapping[str, _descriptors.PropertyDescriptor]
        ] = {}
        self.__elementprops: dict[
            _TypeKey, cabc.Mapping[_TypeKey, _descriptors.PropertyDescriptor]
        ] = {}
        self.__attrprops: dict[
            _TypeKey,
            cabc.Mapping[
                tuple[str | None, str], _descriptors.PropertyDescriptor
            ],
        ] = {}
        self.__extensions: (
            dict[_TypeKey, list[_descriptors.TypeDescriptor]] | None
        ) = None

    @property
    def frozen(self) -> bool:
        return self.__frozen

    def register(
        self,
        *packages: _descriptors.Package | cabc.Mapping[str, t.Any],
    ) -> None:
        """Merge packages into this registry.

        Registering a type again with exactly the same shape has no
        effect.

        Raises
        ------
        SchemaConflictError
            If a type is registered twice with different shapes, if a
            prefix is bound to two different URIs, or if two types in
            the same namespace would use the same element tag.
        RuntimeError
            If the registry is already frozen.
        """
        if self.__frozen:
            raise RuntimeError("Cannot register packages: registry is frozen")

        for package in packages:
            if not isinstance(package, _descriptors.Package):
                package = _descriptors.Package.from_mapping(package)
            self.__register_package(package)
        self.__clear_caches()

    def __register_package(self, package: _descriptors.Package) -> None:
        LOGGER.debug(
            "Registering package %s with prefix %r",
            package.uri,
            package.prefix,
        )
        self.namespaces.bind(
            package.uri, package.prefix, canonical=package.canonical_prefix
        )
        self.__packages.setdefault(package.uri, []).append(package)

        for typ in package.types:
            key = (package.uri, typ.name)
            existing = self.__types.get(key)
            if existing is not None:
                if _shape(existing) == _shape(typ):
                    continue
                raise SchemaConflictError(
                    f"Type {typ.qualified_name} is already registered"
                    " with a different shape"
                )
            if key in self.__enums:
                raise SchemaConflictError(
                    f"{typ.qualified_name} is already an enumeration"
                )

            tagkey = (package.uri, typ.tag)
            clash = self.__tags.get(tagkey)
            if clash is not None:
                raise SchemaConflictError(
                    f"Types {clash.qualified_name} and {typ.qualified_name}"
                    f" share the element tag {typ.tag!r}"
                )
            self.__types[key] = typ
            self.__tags[tagkey] = typ

        for enum in package.enumerations:
            key = (package.uri, enum.name)
            if key in self.__types:
                raise SchemaConflictError(
                    f"{enum.qualified_name} is already a type"
                )
            try:
                pod = _pods.EnumPOD(enum.qualified_name, enum.literals)
            except TypeError as err:
                raise SchemaConflictError(
                    f"Invalid enumeration {enum.qualified_name}: {err}"
                ) from err
            existing_pod = self.__enums.get(key)
            if existing_pod is not None and (
                existing_pod.literals != pod.literals
            ):
                raise SchemaConflictError(
                    f"Enumeration {enum.qualified_name} is already registered"
                    " with different literals"
                )
            self.__enums[key] = pod

    def freeze(self) -> None:
        """Validate all supertype chains and forbid further registration.

        Calling this method more than once has no effect.

        Raises
        ------
        UnknownTypeError
            If a type names a supertype or extension target that is not
            registered.
        SchemaConflictError
            If the supertype chain of a type contains a cycle.
        """
        if self.__frozen:
            return
        for typ in self.__types.values():
            self.supertypes(typ)
        self.__extension_index()
        self.__frozen = True
        LOGGER.debug(
            "Registry frozen with %d namespaces and %d types",
            len(self.__packages),
            len(self.__types),
        )

    def __iter__(self) -> cabc.Iterator[_descriptors.TypeDescriptor]:
        return iter(self.__types.values())

    def __len__(self) -> int:
        return len(self.__types)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        try:
            self.resolve_type(name)
        except UnknownTypeError:
            return False
        return True

    def resolve_type(
        self, name: str | _descriptors.TypeDescriptor
    ) -> _descriptors.TypeDescriptor:
        """Find a type by its qualified name.

        The prefix may be any prefix that was bound to the type's
        namespace. Unqualified names are accepted if they are unique
        across all namespaces.

        Raises
        ------
        UnknownTypeError
            If no such type is registered.
        """
        if isinstance(name, _descriptors.TypeDescriptor):
            name = self.qualified_name(name)

        try:
            prefix, local = helpers.split_qname(name)
        except ValueError:
            raise UnknownTypeError(name) from None

        if prefix is None:
            candidates = [
                typ for (_, n), typ in self.__types.items() if n == local
            ]
            if len(candidates) == 1:
                return candidates[0]
            raise UnknownTypeError(name)

        try:
            uri = self.namespaces.uri_of(prefix)
        except _namespaces.UnknownNamespaceError:
            raise UnknownTypeError(name) from None
        try:
            return self.__types[uri, local]
        except KeyError:
            raise UnknownTypeError(name) from None

    def qualified_name(self, typ: _descriptors.TypeDescriptor) -> str:
        """Return the name of a type using its canonical prefix."""
        return f"{self.namespaces.prefix_of(typ.uri)}:{typ.name}"

    def find_type_by_tag(
        self, uri: str, tag: str
    ) -> _descriptors.TypeDescriptor | None:
        """Find the type that is represented by elements ``{uri}tag``."""
        return self.__tags.get((uri, tag))

    def find_type_by_name(
        self, uri: str, name: str
    ) -> _descriptors.TypeDescriptor | None:
        """Find a type by namespace URI and local name."""
        return self.__types.get((uri, name))

    def knows_namespace(self, uri: str | None) -> bool:
        """Check whether any package was registered for ``uri``."""
        return uri in self.__packages

    def package_by_uri(self, uri: str) -> _descriptors.Package:
        """Return the first package registered for ``uri``.

        Raises
        ------
        UnknownNamespaceError
            If no package uses this namespace.
        """
        try:
            return self.__packages[uri][0]
        except KeyError:
            raise _namespaces.UnknownNamespaceError(uri) from None

    def prefix_for(self, uri: str) -> str:
        """Return the canonical prefix that is written for ``uri``."""
        return self.namespaces.prefix_of(uri)

    def codec_for(
        self, prop: _descriptors.PropertyDescriptor
    ) -> _pods.BasePOD[t.Any] | None:
        """Return the codec for a primitive or enumeration property.

        Returns None for properties holding instances or raw XML.
        """
        pod = _pods.PRIMITIVES.get(prop.type)
        if pod is not None:
            return pod
        if ":" not in prop.type:
            return None
        prefix, local = helpers.split_qname(prop.type)
        assert prefix is not None
        try:
            uri = self.namespaces.uri_of(prefix)
        except _namespaces.UnknownNamespaceError:
            return None
        return self.__enums.get((uri, local))

    def property_type(
        self, prop: _descriptors.PropertyDescriptor
    ) -> _descriptors.TypeDescriptor | None:
        """Resolve the declared type of a property holding instances."""
        if prop.is_any or self.codec_for(prop) is not None:
            return None
        return self.resolve_type(prop.type)

    def supertypes(
        self, typ: str | _descriptors.TypeDescriptor
    ) -> tuple[_descriptors.TypeDescriptor, ...]:
        """Return the supertype chain of a type, from root to ``typ``.

        Raises
        ------
        SchemaConflictError
            If the chain contains a cycle.
        """
        typ = self.resolve_type(typ)
        key = (typ.uri, typ.name)
        try:
            return self.__chains[key]
        except KeyError:
            pass

        chain = [typ]
        seen = {key}
        current = typ
        while current.supertype is not None:
            current = self.resolve_type(current.supertype)
            ckey = (current.uri, current.name)
            if ckey in seen:
                raise SchemaConflictError(
                    f"Cyclic inheritance involving {typ.qualified_name}"
                )
            seen.add(ckey)
            chain.append(current)
        result = tuple(reversed(chain))
        self.__chains[key] = result
        return result

    def is_subtype(
        self,
        typ: str | _descriptors.TypeDescriptor,
        supertype: str | _descriptors.TypeDescriptor,
    ) -> bool:
        """Check whether ``typ`` is ``supertype`` or derives from it."""
        supertype = self.resolve_type(supertype)
        return supertype in self.supertypes(typ)

    def __extension_index(
        self,
    ) -> dict[_TypeKey, list[_descriptors.TypeDescriptor]]:
        if self.__extensions is not None:
            return self.__extensions

        index: dict[_TypeKey, list[_descriptors.TypeDescriptor]]
        index = collections.defaultdict(list)
        for typ in self.__types.values():
            for target in typ.extends:
                ttyp = self.resolve_type(target)
                index[ttyp.uri, ttyp.name].append(typ)
        self.__extensions = dict(index)
        return self.__extensions

    def effective_properties(
        self, typ: str | _descriptors.TypeDescriptor
    ) -> cabc.Mapping[str, _descriptors.PropertyDescriptor]:
        """Return all properties of a type, keyed by instance name.

        The supertype chain is walked from the root to ``typ``. A
        property redeclared by a subtype replaces the inherited one, but
        keeps its position. Properties that other namespaces add through
        ``extends`` follow the properties of the type they extend, and
        are keyed as ``prefix:name``.

        Raises
        ------
        SchemaConflictError
            If the merged set has more than one body text property or
            more than one identity property, or if two extensions add
            the same property.
        """
        typ = self.resolve_type(typ)
        key = (typ.uri, typ.name)
        try:
            return self.__effective[key]
        except KeyError:
            pass

        extensions = self.__extension_index()
        props: dict[str, _descriptors.PropertyDescriptor] = {}
        for current in self.supertypes(typ):
            for prop in current.properties:
                props[prop.key] = prop
            for ext in extensions.get((current.uri, current.name), ()):
                prefix = self.namespaces.prefix_of(ext.uri)
                for prop in ext.properties:
                    pkey = f"{prefix}:{prop.name}"
                    if pkey in props:
                        raise SchemaConflictError(
                            f"Property {pkey} is added to"
                            f" {typ.qualified_name} more than once"
                        )
                    props[pkey] = dataclasses.replace(prop, key=pkey)

        bodies = [p.key for p in props.values() if p.kind is Kind.BODY]
        if len(bodies) > 1:
            raise SchemaConflictError(
                f"{typ.qualified_name} has more than one body text"
                f" property: {', '.join(bodies)}"
            )
        for prop in props.values():
            if prop.wrapped and self.codec_for(prop) is not None:
                raise SchemaConflictError(
                    f"Property {prop.owner}.{prop.name}:"
                    " only lists of instances can be wrapped"
                )
        ids = [p.key for p in props.values() if p.is_id]
        if len(ids) > 1:
            raise SchemaConflictError(
                f"{typ.qualified_name} has more than one identity"
                f" property: {', '.join(ids)}"
            )

        result = types.MappingProxyType(props)
        self.__effective[key] = result
        return result

    def id_property(
        self, typ: str | _descriptors.TypeDescriptor
    ) -> _descriptors.PropertyDescriptor | None:
        """Return the identity property of a type, if it has one.

        This is the property flagged with ``isId``, or a string
        attribute named ``id``.
        """
        props = self.effective_properties(typ)
        for prop in props.values():
            if prop.is_id:
                return prop
        prop = props.get("id")
        if (
            prop is not None
            and prop.type == "String"
            and prop.kind is Kind.ATTRIBUTE
            and not prop.is_many
        ):
            return prop
        return None

    def body_property(
        self, typ: str | _descriptors.TypeDescriptor
    ) -> _descriptors.PropertyDescriptor | None:
        """Return the property that carries the element's text content."""
        for prop in self.effective_properties(typ).values():
            if prop.kind is Kind.BODY:
                return prop
        return None

    def property_uri(self, prop: _descriptors.PropertyDescriptor) -> str:
        """Return the namespace URI of the package declaring ``prop``."""
        return self.namespaces.uri_of(prop.prefix)

    def is_extension_property(
        self,
        typ: _descriptors.TypeDescriptor,
        prop: _descriptors.PropertyDescriptor,
    ) -> bool:
        """Check whether ``prop`` was added to ``typ`` through ``extends``."""
        return prop.key != prop.name

    def attribute_properties(
        self, typ: str | _descriptors.TypeDescriptor
    ) -> cabc.Mapping[tuple[str | None, str], _descriptors.PropertyDescriptor]:
        """Map attribute names to the properties stored in them.

        Keys are ``(uri, local name)`` tuples. Properties of the type
        hierarchy use unqualified attributes, so their ``uri`` is None.
        """
        typ = self.resolve_type(typ)
        key = (typ.uri, typ.name)
        try:
            return self.__attrprops[key]
        except KeyError:
            pass

        result: dict[tuple[str | None, str], _descriptors.PropertyDescriptor]
        result = {}
        for prop in self.effective_properties(typ).values():
            if not (
                prop.kind is Kind.ATTRIBUTE
                or (prop.kind is Kind.REFERENCE and prop.is_attr)
            ):
                continue
            if self.is_extension_property(typ, prop):
                result[self.property_uri(prop), prop.name] = prop
            else:
                result[None, prop.name] = prop
        self.__attrprops[key] = types.MappingProxyType(result)
        return self.__attrprops[key]

    def element_properties(
        self, typ: str | _descriptors.TypeDescriptor
    ) -> cabc.Mapping[_TypeKey, _descriptors.PropertyDescriptor]:
        """Map property-named element tags to their properties.

        This covers primitive values stored in child elements, reference
        elements, wrapped lists, and properties serialized by property
        name. Other nested instances are named after their own type, see
        :meth:`find_containment`.
        """
        typ = self.resolve_type(typ)
        key = (typ.uri, typ.name)
        try:
            return self.__elementprops[key]
        except KeyError:
            pass

        result: dict[_TypeKey, _descriptors.PropertyDescriptor] = {}
        for prop in self.effective_properties(typ).values():
            if prop.kind is Kind.REFERENCE and not prop.is_attr:
                pass
            elif prop.kind is not Kind.ELEMENT or prop.is_any:
                continue
            elif not (
                prop.tag_by_property
                or prop.wrapped
                or self.codec_for(prop) is not None
            ):
                continue
            result[self.property_uri(prop), prop.name] = prop
        self.__elementprops[key] = types.MappingProxyType(result)
        return self.__elementprops[key]

    def find_containment(
        self,
        typ: str | _descriptors.TypeDescriptor,
        child: _descriptors.TypeDescriptor,
    ) -> _descriptors.PropertyDescriptor | None:
        """Find the property of ``typ`` that can contain a ``child``.

        Only properties whose elements are named after the contained
        type are considered. The first matching property in declaration
        order wins.
        """
        for prop in self.effective_properties(typ).values():
            if (
                prop.kind is not Kind.ELEMENT
                or prop.is_any
                or prop.wrapped
                or prop.tag_by_property
            ):
                continue
            ptype = self.property_type(prop)
            if ptype is not None and self.is_subtype(child, ptype):
                return prop
        return None

    def any_property(
        self, typ: str | _descriptors.TypeDescriptor
    ) -> _descriptors.PropertyDescriptor | None:
        """Return the property that collects arbitrary XML, if any."""
        for prop in self.effective_properties(typ).values():
            if prop.kind is Kind.ELEMENT and prop.is_any:
                return prop
        return None

    def create(
        self, typ: str | _descriptors.TypeDescriptor, /, **kw: t.Any
    ) -> _obj.ModelInstance:
        """Create a new instance of a type.

        This freezes the registry.

        Parameters
        ----------
        typ
            The type to instantiate, usually as qualified name.
        kw
            Initial property values.

        Raises
        ------
        UnknownTypeError
            If the type is not registered.
        TypeError
            If the type is abstract.
        """
        self.freeze()
        typ = self.resolve_type(typ)
        if typ.is_abstract:
            raise TypeError(
                f"{typ.qualified_name} is an abstract type"
                " and cannot be instantiated directly"
            )
        idprop = self.id_property(typ)
        return _obj.ModelInstance(
            typ,
            self.qualified_name(typ),
            self.effective_properties(typ),
            idprop.key if idprop is not None else None,
            **kw,
        )


def _shape(typ: _descriptors.TypeDescriptor) -> tuple[t.Any, ...]:
    """Return a prefix-independent representation of a type."""
    return (
        typ.uri,
        typ.name,
        typ.tag,
        typ.supertype and helpers.split_qname(typ.supertype)[1],
        typ.is_abstract,
        tuple(
            dataclasses.replace(
                p, prefix="", owner="", type=helpers.split_qname(p.type)[1]
            )
            for p in typ.properties
        ),
        tuple(helpers.split_qname(i)[1] for i in typ.extends),
    )
