# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""Serialization of model instances to XML markup."""

from __future__ import annotations

__all__ = ["HasWrite", "XMLWriter", "write"]

import collections.abc as cabc
import copy
import logging
import typing as t

from lxml import etree

from metaxml import _namespaces as _n
from metaxml import helpers
from metaxml._errors import ValidationError
from metaxml.model import _descriptors, _obj, _registry

LOGGER = logging.getLogger(__name__)

Kind = _descriptors.SerializationKind


@t.runtime_checkable
class HasWrite(t.Protocol):
    """A simple protocol to check for a writable file-like object."""

    def write(self, chunk: bytes) -> t.Any: ...


class XMLWriter:
    """Writes model instances as XML documents.

    Parameters
    ----------
    registry
        The registry that typed the instances. It is frozen when the
        first document is written.
    generate_ids
        Whether to assign a new ID to instances that are the target of a
        reference, but do not have an ID yet. The ID is stored on the
        instance, so that later writes of the same graph reuse it. If
        this is False, such instances fail the write.
    xml_declaration
        Whether to start the document with an XML declaration.
    """

    def __init__(
        self,
        registry: _registry.TypeRegistry,
        *,
        generate_ids: bool = False,
        xml_declaration: bool = False,
    ) -> None:
        self.registry = registry
        self.generate_ids = generate_ids
        self.xml_declaration = xml_declaration

    @t.overload
    def write(self, instance: _obj.ModelInstance, file: None = ...) -> str: ...
    @t.overload
    def write(self, instance: _obj.ModelInstance, file: HasWrite) -> None: ...
    def write(
        self, instance: _obj.ModelInstance, file: HasWrite | None = None
    ) -> str | None:
        """Serialize the tree rooted at ``instance``.

        The document is built completely before anything is returned or
        written to *file*.

        Parameters
        ----------
        instance
            The root instance.
        file
            A binary file-like object. If given, the document is written
            to it as UTF-8 encoded bytes. Otherwise it is returned as
            ``str``.

        Raises
        ------
        ValidationError
            If an instance was not typed by this writer's registry, if
            a value does not fit its property, or if a referenced
            instance has no ID and ``generate_ids`` is False.
        """
        self.registry.freeze()
        root = _WriteContext(self.registry).build(
            instance, generate_ids=self.generate_ids
        )

        if file is None:
            text = etree.tostring(root, encoding="unicode")
            if self.xml_declaration:
                text = '<?xml version="1.0" encoding="UTF-8"?>\n' + text
            return text

        if not isinstance(file, HasWrite):
            raise TypeError(
                f"Expected a writable binary file, not {type(file).__name__}"
            )
        file.write(
            etree.tostring(
                root, encoding="UTF-8", xml_declaration=self.xml_declaration
            )
        )
        return None


class _WriteContext:
    """The state of one :meth:`XMLWriter.write` call."""

    def __init__(self, registry: _registry.TypeRegistry) -> None:
        self.registry = registry

    def build(
        self, root: _obj.ModelInstance, *, generate_ids: bool
    ) -> etree._Element:
        instances = list(self.walk(root))
        for i in instances:
            self.check_type(i)
        self.assign_ids(instances, generate_ids)

        nsmap: dict[str | None, str] = {}
        for uri in self.collect_namespaces(instances):
            nsmap[self.registry.prefix_for(uri)] = uri
        for prefix, uri in self.collect_foreign_namespaces(instances):
            if prefix not in nsmap and uri not in nsmap.values():
                nsmap[prefix] = uri
        elem = etree.Element(self.type_tag(root), nsmap=nsmap)
        self.fill(elem, root)
        LOGGER.debug(
            "Wrote %d instances using %d namespaces",
            len(instances),
            len(nsmap),
        )
        return elem

    def walk(
        self, instance: _obj.ModelInstance
    ) -> cabc.Iterator[_obj.ModelInstance]:
        """Iterate over an instance and all instances contained in it."""
        seen: set[int] = set()
        stack = [instance]
        while stack:
            current = stack.pop()
            if id(current) in seen:
                raise ValidationError(
                    f"{current!r} is contained more than once in the tree"
                )
            seen.add(id(current))
            yield current
            children = []
            for prop, value in current.items():
                if prop.kind is not Kind.ELEMENT:
                    continue
                values = value if prop.is_many else [value]
                children.extend(
                    i for i in values if isinstance(i, _obj.ModelInstance)
                )
            stack.extend(reversed(children))

    def check_type(self, instance: _obj.ModelInstance) -> None:
        desc = instance.descriptor
        known = self.registry.find_type_by_name(desc.uri, desc.name)
        if known is None or known != desc:
            raise ValidationError(
                f"Type {instance.type_name} of {instance!r}"
                " is not known to this registry"
            )

    def assign_ids(
        self, instances: list[_obj.ModelInstance], generate_ids: bool
    ) -> None:
        targets: dict[int, _obj.ModelInstance] = {}
        for instance in instances:
            for prop, value in instance.items():
                if prop.kind is not Kind.REFERENCE:
                    continue
                values = value if prop.is_many else [value]
                for i in values:
                    if isinstance(i, _obj.ModelInstance):
                        targets.setdefault(id(i), i)

        used = {i.identity for i in instances if i.identity is not None}
        used.update(i.identity for i in targets.values() if i.identity)
        for target in targets.values():
            if target.identity is not None:
                continue
            if not generate_ids:
                raise ValidationError(
                    f"{target!r} is referenced, but has no ID"
                )
            if target.id_property is None:
                raise ValidationError(
                    f"{target!r} is referenced, but its type"
                    " does not have an identity property"
                )
            new_id = helpers.generate_id(f"{target.descriptor.name}_")
            while new_id in used:
                new_id = helpers.generate_id(f"{target.descriptor.name}_")
            used.add(new_id)
            target.set(target.id_property, new_id)
            LOGGER.debug("Generated ID %r for %r", new_id, target)

    def collect_namespaces(
        self, instances: list[_obj.ModelInstance]
    ) -> cabc.Iterator[str]:
        """Find the namespaces of all tags and qualified attributes."""
        uris: dict[str, None] = {}
        for instance in instances:
            uris[instance.descriptor.uri] = None
            for prop, value in instance.items():
                if self.registry.is_extension_property(
                    instance.descriptor, prop
                ):
                    uris[self.registry.property_uri(prop)] = None
                if prop.kind not in (Kind.ELEMENT, Kind.REFERENCE) or (
                    prop.is_attr
                ):
                    continue
                values = value if prop.is_many else [value]
                for i in values:
                    tag, xsi_type = self.child_tag(instance, prop, i)
                    if tag is not None:
                        uris[etree.QName(tag).namespace or ""] = None
                    if xsi_type is not None:
                        uris[_n.NAMESPACES["xsi"]] = None
        uris.pop("", None)
        yield from uris

    def collect_foreign_namespaces(
        self, instances: list[_obj.ModelInstance]
    ) -> cabc.Iterator[tuple[str, str]]:
        """Find the source prefixes of namespaces the registry lacks.

        They are taken from the prefixes recorded for extra attributes
        and from the declarations on captured elements.
        """
        for instance in instances:
            captured = list(instance.extension_elements)
            for prop, value in instance.items():
                if prop.is_any:
                    values = value if prop.is_many else [value]
                    captured.extend(
                        i for i in values if isinstance(i, etree._Element)
                    )
            candidates = list(instance.extra_namespaces.items())
            for elem in captured:
                candidates.extend(elem.nsmap.items())
            for prefix, uri in candidates:
                if prefix and uri not in self.registry.namespaces:
                    yield prefix, uri

    def type_tag(self, instance: _obj.ModelInstance) -> str:
        desc = instance.descriptor
        return f"{{{desc.uri}}}{desc.tag}"

    def property_tag(self, prop: _descriptors.PropertyDescriptor) -> str:
        return f"{{{self.registry.property_uri(prop)}}}{prop.name}"

    def child_tag(
        self,
        owner: _obj.ModelInstance,
        prop: _descriptors.PropertyDescriptor,
        value: t.Any,
    ) -> tuple[str | None, str | None]:
        """Determine the tag and ``xsi:type`` of a child element.

        Returns
        -------
        tuple[str | None, str | None]
            The tag in Clark notation, or None for captured XML, and the
            qualified name to write as ``xsi:type``, if any.
        """
        if prop.kind is Kind.REFERENCE or prop.wrapped:
            return self.property_tag(prop), None
        if not isinstance(value, _obj.ModelInstance):
            if isinstance(value, etree._Element):
                return None, None
            return self.property_tag(prop), None

        declared = self.registry.property_type(prop)
        if declared is not None and not self.registry.is_subtype(
            value.descriptor, declared
        ):
            raise ValidationError(
                f"{owner!r}.{prop.key} cannot hold {value!r}:"
                f" expected {self.registry.qualified_name(declared)}"
            )
        if not prop.tag_by_property:
            return self.type_tag(value), None
        if value.descriptor == declared:
            return self.property_tag(prop), None
        return self.property_tag(prop), self.registry.qualified_name(
            value.descriptor
        )

    def encode(
        self,
        owner: _obj.ModelInstance,
        prop: _descriptors.PropertyDescriptor,
        value: t.Any,
    ) -> str:
        if prop.kind is Kind.REFERENCE:
            if isinstance(value, _obj.Reference):
                target = value.id
            else:
                assert isinstance(value, _obj.ModelInstance)
                target = value.identity
                assert target is not None
            return helpers.make_link(target, fragment=prop.fragment_ref)

        codec = self.registry.codec_for(prop)
        if codec is None:
            raise ValidationError(
                f"{owner!r}.{prop.key} cannot be written as text"
            )
        try:
            return codec.to_xml(value)
        except (TypeError, ValueError) as err:
            raise ValidationError(
                f"Cannot write {owner!r}.{prop.key}: {err}"
            ) from None

    def fill(self, elem: etree._Element, instance: _obj.ModelInstance) -> None:
        """Write the properties of ``instance`` into ``elem``."""
        registry = self.registry
        desc = instance.descriptor
        attrs = {
            p.key: name
            for name, p in registry.attribute_properties(desc).items()
        }

        children: list[tuple[_descriptors.PropertyDescriptor, t.Any]] = []
        for prop, value in instance.items():
            if prop.key in attrs:
                uri, name = attrs[prop.key]
                if uri is not None:
                    name = f"{{{uri}}}{name}"
                values = value if prop.is_many else [value]
                text = " ".join(self.encode(instance, prop, i) for i in values)
                elem.set(name, text)
            elif prop.kind is Kind.BODY:
                elem.text = self.encode(instance, prop, value)
            else:
                children.append((prop, value))

        for name, value in instance.extra_attributes.items():
            elem.set(name, value)

        for prop, value in children:
            values = value if prop.is_many else [value]
            if prop.wrapped:
                parent = etree.SubElement(elem, self.property_tag(prop))
                for i in values:
                    if not isinstance(i, _obj.ModelInstance):
                        raise ValidationError(
                            f"{instance!r}.{prop.key} can only hold"
                            f" instances, not {type(i).__name__}"
                        )
                    child = etree.SubElement(parent, self.type_tag(i))
                    self.fill(child, i)
                continue

            for i in values:
                tag, xsi_type = self.child_tag(instance, prop, i)
                if tag is None:
                    elem.append(copy.deepcopy(i))
                    continue
                child = etree.SubElement(elem, tag)
                if prop.kind is Kind.REFERENCE:
                    child.set("href", self.encode(instance, prop, i))
                elif isinstance(i, _obj.ModelInstance):
                    if xsi_type is not None:
                        child.set(helpers.ATT_XSI_TYPE, xsi_type)
                    self.fill(child, i)
                else:
                    child.text = self.encode(instance, prop, i)

        for ext in instance.extension_elements:
            elem.append(copy.deepcopy(ext))


def write(
    registry: _registry.TypeRegistry,
    instance: _obj.ModelInstance,
    file: HasWrite | None = None,
    *,
    generate_ids: bool = False,
    xml_declaration: bool = False,
) -> str | None:
    """Write a document using a one-off :class:`XMLWriter`."""
    writer = XMLWriter(
        registry, generate_ids=generate_ids, xml_declaration=xml_declaration
    )
    return writer.write(instance, file)
