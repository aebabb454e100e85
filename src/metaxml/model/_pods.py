# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""Codecs for plain-old-data property values.

Every primitive type a descriptor can name has one codec here, which
converts between the XML text of an attribute or element and the Python
value stored on a :class:`~metaxml.model.ModelInstance`.
"""

from __future__ import annotations

__all__ = [
    "ANY_TYPE",
    "PRIMITIVES",
    "BasePOD",
    "BoolPOD",
    "EnumPOD",
    "FloatPOD",
    "IntPOD",
    "StringPOD",
]

import abc
import collections.abc as cabc
import enum
import math
import typing as t

U = t.TypeVar("U")


class BasePOD(t.Generic[U], metaclass=abc.ABCMeta):
    """A plain-old-data codec."""

    __slots__ = ("typename",)

    def __init__(self, typename: str) -> None:
        self.typename = typename

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.typename!r}>"

    @abc.abstractmethod
    def from_xml(self, value: str, /) -> U:
        """Convert XML text into a value.

        Raises
        ------
        ValueError
            If the text is not a valid representation.
        """

    @abc.abstractmethod
    def to_xml(self, value: U, /) -> str:
        """Convert a value into XML text.

        Raises
        ------
        TypeError
            If the value has the wrong type.
        ValueError
            If the value cannot be represented.
        """


class StringPOD(BasePOD[str]):
    """A POD containing arbitrary string data."""

    __slots__ = ()

    def from_xml(self, value: str, /) -> str:
        return value

    def to_xml(self, value: str, /) -> str:
        if not isinstance(value, str):
            raise TypeError(
                f"{self.typename} only accepts str, not {type(value).__name__}"
            )
        return value


class BoolPOD(BasePOD[bool]):
    """A POD containing a boolean."""

    __slots__ = ()

    def from_xml(self, value: str, /) -> bool:
        value = value.strip()
        if value in ("true", "1"):
            return True
        if value in ("false", "0"):
            return False
        raise ValueError(f"Not a valid boolean: {value!r}")

    def to_xml(self, value: bool, /) -> str:
        if not isinstance(value, bool):
            raise TypeError(
                f"{self.typename} only accepts bool,"
                f" not {type(value).__name__}"
            )
        return ("false", "true")[value]


class IntPOD(BasePOD[int]):
    """A POD containing an integer number."""

    __slots__ = ()

    def from_xml(self, value: str, /) -> int:
        return int(value.strip())

    def to_xml(self, value: int, /) -> str:
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(
                f"{self.typename} only accepts int,"
                f" not {type(value).__name__}"
            )
        return str(value)


class FloatPOD(BasePOD[float]):
    """A POD containing a floating-point number.

    Integral values are written without a fractional part, so that a
    ``100`` read from a document is written back as ``100``.
    """

    __slots__ = ()

    def from_xml(self, value: str, /) -> float:
        return float(value.strip())

    def to_xml(self, value: float, /) -> str:
        if isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        elif not isinstance(value, float):
            raise TypeError(
                f"{self.typename} only accepts float or int,"
                f" not {type(value).__name__}"
            )

        if math.isnan(value):
            return "NaN"
        if value == math.inf:
            return "INF"
        if value == -math.inf:
            return "-INF"
        text = repr(value)
        if text.endswith(".0"):
            text = text[:-2]
        return text


class EnumPOD(BasePOD[str]):
    """A POD that can have one of a predetermined set of values.

    Values are stored as plain strings. When writing, members of an
    :class:`enum.Enum` are accepted as well and written using their
    ``value``.
    """

    __slots__ = ("literals",)

    def __init__(self, typename: str, literals: cabc.Iterable[str]) -> None:
        super().__init__(typename)
        self.literals = tuple(literals)
        if not self.literals:
            raise TypeError(f"Enumeration {typename} does not have any values")

    def from_xml(self, value: str, /) -> str:
        if value not in self.literals:
            raise ValueError(
                f"{value!r} is not a member of {self.typename}:"
                f" expected one of {', '.join(self.literals)}"
            )
        return value

    def to_xml(self, value: str | enum.Enum, /) -> str:
        if isinstance(value, enum.Enum):
            value = value.value
        if not isinstance(value, str):
            raise TypeError(
                f"{self.typename} only accepts str,"
                f" not {type(value).__name__}"
            )
        return self.from_xml(value)


PRIMITIVES: t.Final[cabc.Mapping[str, BasePOD[t.Any]]] = {
    "String": StringPOD("String"),
    "Boolean": BoolPOD("Boolean"),
    "Integer": IntPOD("Integer"),
    "Real": FloatPOD("Real"),
}
"""Codecs for the built-in primitive types, keyed by type name."""

ANY_TYPE: t.Final = "Element"
"""The type name of properties that hold arbitrary XML elements."""
