# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

__all__ = [
    "ModelInstance",
    "Reference",
]

import collections.abc as cabc
import dataclasses
import logging
import typing as t

from lxml import etree

from metaxml import helpers

from . import _descriptors

LOGGER = logging.getLogger(__name__)

_NOT_SPECIFIED = object()
"Used to detect unspecified optional arguments"

_RESERVED_ATTRS = frozenset(
    {"extension_elements", "extra_attributes", "extra_namespaces"}
)


@dataclasses.dataclass(frozen=True)
class Reference:
    """A reference to an instance that has not been resolved.

    Readers store these as placeholders while the document is parsed.
    After a partial read, references pointing outside of the fragment
    stay in this form.
    """

    id: str

    def __str__(self) -> str:
        return f"#{self.id}"


class ModelInstance:
    """An instance of a type described in a registry.

    Instances are a bag of named properties. Only properties that exist
    in the type's effective property set can be read or written, either
    with :meth:`get` and :meth:`set`, or using attribute access for
    property names that are valid Python identifiers::

        decision = registry.create("dmn:Decision", id="Decision_1")
        decision.name = "Decision"
        assert decision.get("name") == "Decision"

    Instances do not hold a reference to the registry that created them,
    but their structure is only meaningful in its context.

    Instances should be created with
    :meth:`metaxml.model.TypeRegistry.create`.
    """

    __slots__ = (
        "_descriptor",
        "_id_key",
        "_properties",
        "_type_name",
        "_values",
        "extension_elements",
        "extra_attributes",
        "extra_namespaces",
    )

    _descriptor: _descriptors.TypeDescriptor
    _id_key: str | None
    _properties: cabc.Mapping[str, _descriptors.PropertyDescriptor]
    _type_name: str
    _values: dict[str, t.Any]

    extension_elements: list[etree._Element]
    """XML elements that could not be mapped to any property.

    They are captured verbatim while reading and written back unchanged.
    """
    extra_attributes: dict[str, str]
    """Attributes that could not be mapped, keyed by ``{uri}name``."""
    extra_namespaces: dict[str, str]
    """Prefixes of unregistered namespaces used by ``extra_attributes``.

    Maps each prefix to its namespace URI. Writers reuse these prefixes
    for namespaces the registry does not know.
    """

    def __init__(
        self,
        descriptor: _descriptors.TypeDescriptor,
        type_name: str,
        properties: cabc.Mapping[str, _descriptors.PropertyDescriptor],
        id_key: str | None,
        /,
        **kw: t.Any,
    ) -> None:
        object.__setattr__(self, "_descriptor", descriptor)
        object.__setattr__(self, "_type_name", type_name)
        object.__setattr__(self, "_properties", properties)
        object.__setattr__(self, "_id_key", id_key)
        object.__setattr__(self, "_values", {})
        object.__setattr__(self, "extension_elements", [])
        object.__setattr__(self, "extra_attributes", {})
        object.__setattr__(self, "extra_namespaces", {})
        for key, value in kw.items():
            self.set(key, value)

    @property
    def type_name(self) -> str:
        """The qualified name of this instance's type."""
        return self._type_name

    @property
    def descriptor(self) -> _descriptors.TypeDescriptor:
        return self._descriptor

    @property
    def properties(self) -> cabc.Mapping[str, _descriptors.PropertyDescriptor]:
        """The effective property set of this instance's type."""
        return self._properties

    @property
    def id_property(self) -> str | None:
        """The key of the property holding this instance's identity."""
        return self._id_key

    @property
    def identity(self) -> str | None:
        """The value of the identity property, if it is set."""
        if self._id_key is None:
            return None
        return self._values.get(self._id_key)

    def _property(self, key: str) -> _descriptors.PropertyDescriptor:
        try:
            return self._properties[key]
        except KeyError:
            raise KeyError(
                f"{self._type_name} has no property {key!r}"
            ) from None

    def get(self, key: str, default: t.Any = _NOT_SPECIFIED) -> t.Any:
        """Return the value of a property.

        Unset list properties are initialized with an empty, live list.
        Other unset properties return their declared default, or the
        *default* passed here if there is none.
        """
        prop = self._property(key)
        try:
            return self._values[key]
        except KeyError:
            pass
        if prop.is_many:
            value: list[t.Any] = []
            self._values[key] = value
            return value
        if default is not _NOT_SPECIFIED:
            return default
        return prop.default

    def set(self, key: str, value: t.Any) -> None:
        """Set the value of a property.

        Setting a property to None unsets it.
        """
        prop = self._property(key)
        if value is None:
            self._values.pop(key, None)
            return

        if prop.is_many:
            if isinstance(value, str | bytes) or not isinstance(
                value, cabc.Iterable
            ):
                raise TypeError(
                    f"{self._type_name}.{key} is a list property,"
                    f" expected an iterable, not {type(value).__name__}"
                )
            values = list(value)
            for i in values:
                _check_value(self, prop, i)
            self._values[key] = values
        else:
            _check_value(self, prop, value)
            self._values[key] = value

    def unset(self, key: str) -> None:
        """Remove the value of a property."""
        self._property(key)
        self._values.pop(key, None)

    def is_set(self, key: str) -> bool:
        """Check whether a property has a value.

        Empty lists count as unset.
        """
        self._property(key)
        value = self._values.get(key)
        if isinstance(value, list):
            return bool(value)
        return value is not None

    def items(
        self,
    ) -> cabc.Iterator[tuple[_descriptors.PropertyDescriptor, t.Any]]:
        """Iterate over set properties in declaration order."""
        for key, prop in self._properties.items():
            if self.is_set(key):
                yield prop, self._values[key]

    def __getattr__(self, attr: str) -> t.Any:
        if attr.startswith("_"):
            raise AttributeError(attr)
        try:
            return self.get(attr)
        except KeyError as err:
            raise AttributeError(err.args[0]) from None

    def __setattr__(self, attr: str, value: t.Any) -> None:
        if attr.startswith("_") or attr in _RESERVED_ATTRS:
            object.__setattr__(self, attr, value)
            return
        try:
            self.set(attr, value)
        except KeyError as err:
            raise AttributeError(err.args[0]) from None

    def __delattr__(self, attr: str) -> None:
        try:
            self.unset(attr)
        except KeyError as err:
            raise AttributeError(err.args[0]) from None

    def __dir__(self) -> list[str]:
        props = (i for i in self._properties if ":" not in i)
        return sorted({*super().__dir__(), *props})

    def __repr__(self) -> str:
        identity = self.identity
        if identity is None:
            return f"<{self._type_name}>"
        return f"<{self._type_name} {identity!r}>"

    def to_dict(self) -> dict[str, t.Any]:
        """Render this instance and its children as plain data.

        The result contains the type name under ``$type`` and every set
        property under its key. References are rendered as links in the
        style their property is written with, that is ``#ID`` or a bare
        ``ID``. Captured XML is rendered as serialized markup.
        """
        data: dict[str, t.Any] = {"$type": self._type_name}
        for prop, value in self.items():
            if prop.is_many:
                data[prop.key] = [_to_plain(prop, i) for i in value]
            else:
                data[prop.key] = _to_plain(prop, value)
        if self.extra_attributes:
            data["$attrs"] = dict(self.extra_attributes)
        if self.extension_elements:
            data["$extensions"] = [
                etree.tostring(i, encoding="unicode", with_tail=False)
                for i in self.extension_elements
            ]
        return data


def _to_plain(prop: _descriptors.PropertyDescriptor, value: t.Any) -> t.Any:
    if isinstance(value, Reference):
        return helpers.make_link(value.id, fragment=prop.fragment_ref)
    if isinstance(value, ModelInstance):
        if prop.kind is _descriptors.SerializationKind.REFERENCE:
            return helpers.make_link(
                value.identity or "", fragment=prop.fragment_ref
            )
        return value.to_dict()
    if isinstance(value, etree._Element):
        return etree.tostring(value, encoding="unicode", with_tail=False)
    return value


def _check_value(
    obj: ModelInstance, prop: _descriptors.PropertyDescriptor, value: t.Any
) -> None:
    kind = _descriptors.SerializationKind
    if prop.kind is kind.REFERENCE:
        expected: tuple[type, ...] = (ModelInstance, Reference)
    elif prop.is_any:
        expected = (ModelInstance, etree._Element)
    elif prop.kind is kind.ELEMENT and not prop.is_primitive:
        # enumeration literals are plain strings
        expected = (ModelInstance, str)
    else:
        if isinstance(value, ModelInstance | Reference | etree._Element):
            raise TypeError(
                f"{obj.type_name}.{prop.key} holds {prop.type} values,"
                f" not {type(value).__name__}"
            )
        return

    if not isinstance(value, expected):
        raise TypeError(
            f"{obj.type_name}.{prop.key} expects"
            f" {' or '.join(i.__name__ for i in expected)},"
            f" not {type(value).__name__}"
        )
