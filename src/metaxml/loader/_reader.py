# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""Streaming conversion from XML markup to model instances."""

from __future__ import annotations

__all__ = ["XMLReader", "read"]

import copy
import dataclasses
import io
import logging
import typing as t

from lxml import etree

from metaxml import helpers
from metaxml._errors import (
    DanglingReferenceError,
    ParseError,
    ValidationError,
)
from metaxml.model import _descriptors, _obj, _pods, _registry

LOGGER = logging.getLogger(__name__)

Kind = _descriptors.SerializationKind

Source: t.TypeAlias = "str | bytes | t.IO[bytes]"


@dataclasses.dataclass
class _InstanceFrame:
    instance: _obj.ModelInstance
    type: _descriptors.TypeDescriptor
    indexed: bool = False


@dataclasses.dataclass
class _ValueFrame:
    owner: _obj.ModelInstance
    prop: _descriptors.PropertyDescriptor
    codec: _pods.BasePOD[t.Any]


@dataclasses.dataclass
class _ReferenceFrame:
    owner: _obj.ModelInstance
    prop: _descriptors.PropertyDescriptor


@dataclasses.dataclass
class _WrapperFrame:
    owner: _obj.ModelInstance
    prop: _descriptors.PropertyDescriptor
    member_type: _descriptors.TypeDescriptor


@dataclasses.dataclass
class _ExtensionFrame:
    """Captures an element subtree verbatim.

    If ``owner`` is None, the subtree is skipped.
    """

    owner: _obj.ModelInstance | None
    prop: _descriptors.PropertyDescriptor | None = None
    depth: int = 0


_Frame: t.TypeAlias = (
    "_InstanceFrame | _ValueFrame | _ReferenceFrame"
    " | _WrapperFrame | _ExtensionFrame"
)


@dataclasses.dataclass(frozen=True)
class _PendingReference:
    instance: _obj.ModelInstance
    key: str
    index: int | None
    target: str


class XMLReader:
    """Reads XML documents into model instances.

    A reader can be used for any number of documents. Every call to
    :meth:`read` uses its own parser and bookkeeping, so that a single
    reader may also be shared between threads.

    Parameters
    ----------
    registry
        The registry describing the document vocabulary. It is frozen
        when the first document is read.
    strict
        Whether to reject content that cannot be mapped to a property.
        In the default lenient mode, unknown child elements are kept in
        :attr:`~metaxml.model.ModelInstance.extension_elements`,
        unknown attributes in
        :attr:`~metaxml.model.ModelInstance.extra_attributes`, and
        stray text is ignored.
    """

    def __init__(
        self, registry: _registry.TypeRegistry, *, strict: bool = False
    ) -> None:
        self.registry = registry
        self.strict = strict

    def read(
        self,
        source: Source,
        root_type: str | None = None,
        *,
        partial: bool = False,
    ) -> _obj.ModelInstance:
        """Read a document and return its root instance.

        Parameters
        ----------
        source
            The markup, either as ``str``, as ``bytes``, or as a binary
            file-like object.
        root_type
            The qualified name of the type that the root element must
            have. Subtypes are accepted as well.
        partial
            Whether the source is a fragment of a larger document. In a
            fragment, references to IDs that are not declared within
            the fragment are kept as :class:`~metaxml.model.Reference`
            placeholders instead of failing the read.

        Raises
        ------
        ParseError
            If the source is not well-formed XML.
        ValidationError
            If the markup does not match the registered types.
        DanglingReferenceError
            If references point to IDs not declared in the document,
            and ``partial`` is False.
        UnknownTypeError
            If ``root_type`` is not a registered type.
        """
        self.registry.freeze()
        expected = None
        if root_type is not None:
            expected = self.registry.resolve_type(root_type)
        return _ReadContext(self, expected, partial).run(source)


class _ReadContext:
    """The state of one :meth:`XMLReader.read` call."""

    def __init__(
        self,
        reader: XMLReader,
        expected: _descriptors.TypeDescriptor | None,
        partial: bool,
    ) -> None:
        self.registry = reader.registry
        self.strict = reader.strict
        self.expected = expected
        self.partial = partial
        self.stack: list[_Frame] = []
        self.ids: dict[str, _obj.ModelInstance] = {}
        self.pending: list[_PendingReference] = []
        self.root: _obj.ModelInstance | None = None
        self.count = 0

    def run(self, source: Source) -> _obj.ModelInstance:
        kw: dict[str, t.Any] = {}
        if isinstance(source, str):
            source = io.BytesIO(source.encode("utf-8"))
            kw["encoding"] = "utf-8"
        elif isinstance(source, bytes):
            source = io.BytesIO(source)

        events = etree.iterparse(
            source,
            events=("start", "end"),
            huge_tree=True,
            resolve_entities=False,
            **kw,
        )
        try:
            for event, elem in events:
                if event == "start":
                    self.start(elem)
                else:
                    self.end(elem)
        except etree.XMLSyntaxError as err:
            raise ParseError(f"Malformed XML: {err}") from err

        assert self.root is not None
        assert not self.stack
        self.resolve_references()
        LOGGER.debug(
            "Read %d instances with %d IDs and %d references",
            self.count,
            len(self.ids),
            len(self.pending),
        )
        return self.root

    def fail(self, elem: etree._Element, message: str) -> t.NoReturn:
        line = elem.sourceline
        if line is not None:
            message = f"{message} (line {line})"
        raise ValidationError(message)

    def start(self, elem: etree._Element) -> None:
        if not self.stack:
            self.start_root(elem)
            return

        frame = self.stack[-1]
        if isinstance(frame, _ExtensionFrame):
            frame.depth += 1
        elif isinstance(frame, _InstanceFrame):
            self.start_child(frame, elem)
        elif isinstance(frame, _WrapperFrame):
            self.start_member(frame, elem)
        else:
            if self.strict:
                self.fail(
                    elem,
                    f"Unexpected element <{elem.tag}> in the value of"
                    f" {frame.owner.type_name}.{frame.prop.key}",
                )
            LOGGER.warning(
                "Ignoring element <%s> in the value of %s.%s",
                elem.tag,
                frame.owner.type_name,
                frame.prop.key,
            )
            self.stack.append(_ExtensionFrame(None))

    def end(self, elem: etree._Element) -> None:
        frame = self.stack[-1]
        if isinstance(frame, _ExtensionFrame):
            if frame.depth:
                frame.depth -= 1
                return
            self.stack.pop()
            if frame.owner is not None:
                captured = copy.deepcopy(elem)
                captured.tail = None
                etree.cleanup_namespaces(captured)
                if frame.prop is None:
                    frame.owner.extension_elements.append(captured)
                else:
                    _assign(frame.owner, frame.prop, captured)
        elif isinstance(frame, _InstanceFrame):
            self.stack.pop()
            self.end_instance(frame, elem)
        elif isinstance(frame, _ValueFrame):
            self.stack.pop()
            value = self.decode(elem, frame.codec, elem.text or "", frame.prop)
            _assign(frame.owner, frame.prop, value)
        elif isinstance(frame, _ReferenceFrame):
            self.stack.pop()
            link = elem.get("href")
            if link is None:
                link = elem.text or ""
            try:
                target = helpers.parse_link(link)
            except ValueError as err:
                self.fail(elem, str(err))
            self.add_reference(frame.owner, frame.prop, target)
        else:
            self.stack.pop()

        elem.clear(keep_tail=True)
        self.discard_previous(elem)

    def discard_previous(self, elem: etree._Element) -> None:
        """Detach the consumed siblings that precede ``elem``.

        Their tails are checked for stray text first, because the
        parent element no longer sees them when it ends.
        """
        parent = elem.getparent()
        if parent is None:
            return
        frame = self.stack[-1]
        while elem.getprevious() is not None:
            tail = parent[0].tail
            if (
                self.strict
                and tail
                and tail.strip()
                and isinstance(frame, _InstanceFrame)
                and self.registry.body_property(frame.type) is None
            ):
                self.fail(
                    parent,
                    f"Unexpected text content in"
                    f" {self.registry.qualified_name(frame.type)}",
                )
            del parent[0]

    def start_root(self, elem: etree._Element) -> None:
        qname = etree.QName(elem)
        typ = self.registry.find_type_by_tag(
            qname.namespace or "", qname.localname
        )
        if typ is None:
            self.fail(elem, f"Unknown root element <{elem.tag}>")
        typ = self.actual_type(elem, typ)
        if self.expected is not None and not self.registry.is_subtype(
            typ, self.expected
        ):
            self.fail(
                elem,
                f"Expected root element of type"
                f" {self.registry.qualified_name(self.expected)},"
                f" found {self.registry.qualified_name(typ)}",
            )
        self.root = self.open_instance(elem, typ)

    def actual_type(
        self,
        elem: etree._Element,
        declared: _descriptors.TypeDescriptor,
    ) -> _descriptors.TypeDescriptor:
        """Apply the ``xsi:type`` of ``elem`` to the ``declared`` type."""
        try:
            xtype = helpers.xsi_type_of(elem)
        except ValueError as err:
            self.fail(elem, str(err))

        if xtype is None:
            typ = declared
        else:
            uri = xtype.namespace or etree.QName(elem).namespace or ""
            found = self.registry.find_type_by_name(uri, xtype.localname)
            if found is None:
                self.fail(elem, f"Unknown xsi:type {xtype.text!r}")
            if not self.registry.is_subtype(found, declared):
                self.fail(
                    elem,
                    f"xsi:type {self.registry.qualified_name(found)} is not"
                    f" a subtype of {self.registry.qualified_name(declared)}",
                )
            typ = found

        if typ.is_abstract:
            self.fail(
                elem,
                f"Cannot instantiate abstract type"
                f" {self.registry.qualified_name(typ)} without xsi:type",
            )
        return typ

    def open_instance(
        self, elem: etree._Element, typ: _descriptors.TypeDescriptor
    ) -> _obj.ModelInstance:
        instance = self.registry.create(typ)
        self.count += 1
        own_uri = etree.QName(elem).namespace
        attrprops = self.registry.attribute_properties(typ)

        for name, value in elem.attrib.items():
            if name == helpers.ATT_XSI_TYPE:
                continue
            uri, local = helpers.split_clark(name)
            prop = None
            if uri is None or uri == own_uri:
                prop = attrprops.get((None, local))
            if prop is None and uri is not None:
                prop = attrprops.get((uri, local))

            if prop is None:
                if self.strict:
                    self.fail(
                        elem,
                        f"Unknown attribute {name!r} on"
                        f" {self.registry.qualified_name(typ)}",
                    )
                instance.extra_attributes[name] = value
                if uri is not None and not self.registry.knows_namespace(uri):
                    prefix = _prefix_in_scope(elem, uri)
                    if prefix is not None:
                        instance.extra_namespaces[prefix] = uri
            elif prop.kind is Kind.REFERENCE:
                try:
                    if prop.is_many:
                        targets = list(helpers.split_links(value))
                    else:
                        targets = [helpers.parse_link(value)]
                except ValueError as err:
                    self.fail(elem, str(err))
                for target in targets:
                    self.add_reference(instance, prop, target)
            else:
                codec = self.registry.codec_for(prop)
                if codec is None:
                    self.fail(
                        elem,
                        f"Attribute {prop.owner}.{prop.name} does not"
                        f" have a primitive type: {prop.type}",
                    )
                if prop.is_many:
                    for part in value.split():
                        decoded = self.decode(elem, codec, part, prop)
                        _assign(instance, prop, decoded)
                else:
                    decoded = self.decode(elem, codec, value, prop)
                    instance.set(prop.key, decoded)

        frame = _InstanceFrame(instance, typ)
        self.index(frame, elem)
        self.stack.append(frame)
        return instance

    def end_instance(
        self, frame: _InstanceFrame, elem: etree._Element
    ) -> None:
        body = self.registry.body_property(frame.type)
        if body is not None:
            if elem.text is not None:
                codec = self.registry.codec_for(body)
                assert codec is not None
                value = self.decode(elem, codec, elem.text, body)
                frame.instance.set(body.key, value)
        elif self.strict:
            texts = [elem.text, *(i.tail for i in elem)]
            if any(i and i.strip() for i in texts):
                self.fail(
                    elem,
                    f"Unexpected text content in"
                    f" {self.registry.qualified_name(frame.type)}",
                )
        if not frame.indexed:
            self.index(frame, elem)

    def start_child(self, frame: _InstanceFrame, elem: etree._Element) -> None:
        registry = self.registry
        qname = etree.QName(elem)
        uri = qname.namespace or ""
        owner = frame.instance

        prop = registry.element_properties(frame.type).get(
            (uri, qname.localname)
        )
        if prop is not None:
            if prop.kind is Kind.REFERENCE:
                self.stack.append(_ReferenceFrame(owner, prop))
                return
            ptype = registry.property_type(prop)
            if ptype is None:
                codec = registry.codec_for(prop)
                assert codec is not None
                self.stack.append(_ValueFrame(owner, prop, codec))
            elif prop.wrapped:
                self.stack.append(_WrapperFrame(owner, prop, ptype))
            else:
                child = self.open_instance(elem, self.actual_type(elem, ptype))
                _assign(owner, prop, child)
            return

        ctype = registry.find_type_by_tag(uri, qname.localname)
        if ctype is not None:
            ctype = self.actual_type(elem, ctype)
            prop = registry.find_containment(frame.type, ctype)
            if prop is not None:
                _assign(owner, prop, self.open_instance(elem, ctype))
                return

        prop = registry.any_property(frame.type)
        if prop is not None:
            if ctype is not None:
                _assign(owner, prop, self.open_instance(elem, ctype))
            else:
                self.stack.append(_ExtensionFrame(owner, prop))
            return

        self.unknown_child(owner, elem)

    def start_member(self, frame: _WrapperFrame, elem: etree._Element) -> None:
        qname = etree.QName(elem)
        ctype = self.registry.find_type_by_tag(
            qname.namespace or "", qname.localname
        )
        if ctype is not None:
            ctype = self.actual_type(elem, ctype)
            if self.registry.is_subtype(ctype, frame.member_type):
                member = self.open_instance(elem, ctype)
                _assign(frame.owner, frame.prop, member)
                return
        self.unknown_child(frame.owner, elem)

    def unknown_child(
        self, owner: _obj.ModelInstance, elem: etree._Element
    ) -> None:
        if self.strict:
            self.fail(elem, f"Unexpected element <{elem.tag}> in {owner!r}")
        if self.registry.knows_namespace(etree.QName(elem).namespace):
            LOGGER.warning(
                "Keeping unexpected element <%s> in %r as extension",
                elem.tag,
                owner,
            )
        self.stack.append(_ExtensionFrame(owner))

    def decode(
        self,
        elem: etree._Element,
        codec: _pods.BasePOD[t.Any],
        text: str,
        prop: _descriptors.PropertyDescriptor,
    ) -> t.Any:
        try:
            return codec.from_xml(text)
        except ValueError as err:
            self.fail(
                elem, f"Invalid value for {prop.owner}.{prop.name}: {err}"
            )

    def index(self, frame: _InstanceFrame, elem: etree._Element) -> None:
        identity = frame.instance.identity
        if identity is None:
            return
        frame.indexed = True
        existing = self.ids.get(identity)
        if existing is None:
            self.ids[identity] = frame.instance
            return
        msg = f"Duplicate ID {identity!r} on {frame.instance!r}"
        if self.strict:
            self.fail(elem, msg)
        LOGGER.warning("%s, keeping the first declaration", msg)

    def add_reference(
        self,
        owner: _obj.ModelInstance,
        prop: _descriptors.PropertyDescriptor,
        target: str,
    ) -> None:
        index = _assign(owner, prop, _obj.Reference(target))
        self.pending.append(_PendingReference(owner, prop.key, index, target))

    def resolve_references(self) -> None:
        missing: dict[str, None] = {}
        for ref in self.pending:
            target = self.ids.get(ref.target)
            if target is None:
                missing[ref.target] = None
                continue

            prop = ref.instance.properties[ref.key]
            ptype = self.registry.resolve_type(prop.type)
            if not self.registry.is_subtype(target.descriptor, ptype):
                msg = (
                    f"{ref.instance!r}.{ref.key} cannot point to {target!r}:"
                    f" expected {self.registry.qualified_name(ptype)}"
                )
                if self.strict:
                    raise ValidationError(msg)
                LOGGER.warning("%s, keeping the reference anyway", msg)

            if ref.index is None:
                ref.instance.set(ref.key, target)
            else:
                ref.instance.get(ref.key)[ref.index] = target

        if not missing:
            return
        if not self.partial:
            raise DanglingReferenceError(missing)
        LOGGER.debug(
            "Keeping %d references to IDs outside of the fragment",
            len(missing),
        )


def _prefix_in_scope(elem: etree._Element, uri: str) -> str | None:
    for prefix, value in elem.nsmap.items():
        if prefix and value == uri:
            return prefix
    return None


def _assign(
    owner: _obj.ModelInstance,
    prop: _descriptors.PropertyDescriptor,
    value: t.Any,
) -> int | None:
    """Store ``value`` in ``prop`` and return its list index, if any."""
    if prop.is_many:
        values = owner.get(prop.key)
        values.append(value)
        return len(values) - 1
    if owner.is_set(prop.key):
        LOGGER.warning(
            "Overwriting single-valued property %s of %r", prop.key, owner
        )
    owner.set(prop.key, value)
    return None


def read(
    registry: _registry.TypeRegistry,
    source: Source,
    root_type: str | None = None,
    *,
    strict: bool = False,
    partial: bool = False,
) -> _obj.ModelInstance:
    """Read a document using a one-off :class:`XMLReader`."""
    return XMLReader(registry, strict=strict).read(
        source, root_type, partial=partial
    )

