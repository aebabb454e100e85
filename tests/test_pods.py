# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0

import enum
import math

import pytest

from metaxml import model


class Direction(enum.Enum):
    ONE = "One"
    BOTH = "Both"


@pytest.mark.parametrize(
    ("text", "expected"),
    [("true", True), ("1", True), ("false", False), (" 0 ", False)],
)
def test_booleans_are_read_from_xml_schema_literals(text, expected):
    assert model.BoolPOD("Boolean").from_xml(text) is expected


def test_booleans_reject_other_words():
    with pytest.raises(ValueError):
        model.BoolPOD("Boolean").from_xml("yes")


def test_booleans_are_written_in_lower_case():
    codec = model.BoolPOD("Boolean")

    assert codec.to_xml(True) == "true"
    assert codec.to_xml(False) == "false"


def test_booleans_reject_integers():
    with pytest.raises(TypeError):
        model.BoolPOD("Boolean").to_xml(1)


def test_integers_reject_booleans_and_floats():
    codec = model.IntPOD("Integer")

    with pytest.raises(TypeError):
        codec.to_xml(True)
    with pytest.raises(TypeError):
        codec.to_xml(1.0)


def test_integers_reject_fractional_text():
    with pytest.raises(ValueError):
        model.IntPOD("Integer").from_xml("1.5")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (100.0, "100"),
        (100, "100"),
        (127.5, "127.5"),
        (-0.25, "-0.25"),
        (math.inf, "INF"),
        (-math.inf, "-INF"),
        (math.nan, "NaN"),
    ],
)
def test_reals_are_written_in_their_shortest_form(value, expected):
    assert model.FloatPOD("Real").to_xml(value) == expected


def test_reals_accept_xml_schema_special_values():
    codec = model.FloatPOD("Real")

    assert codec.from_xml("INF") == math.inf
    assert codec.from_xml("-INF") == -math.inf
    assert math.isnan(codec.from_xml("NaN"))


def test_reals_reject_strings():
    with pytest.raises(TypeError):
        model.FloatPOD("Real").to_xml("1.0")


def test_strings_are_passed_through():
    codec = model.StringPOD("String")

    assert codec.from_xml("  a b  ") == "  a b  "
    assert codec.to_xml("x") == "x"
    with pytest.raises(TypeError):
        codec.to_xml(1)


def test_enumerations_only_accept_their_literals():
    codec = model.EnumPOD("AssociationDirection", ["None", "One", "Both"])

    assert codec.from_xml("One") == "One"
    with pytest.raises(ValueError, match="expected one of None, One, Both"):
        codec.from_xml("one")


def test_enumerations_write_enum_members_by_value():
    codec = model.EnumPOD("AssociationDirection", ["None", "One", "Both"])

    assert codec.to_xml(Direction.BOTH) == "Both"
    assert codec.to_xml("None") == "None"


def test_enumerations_need_at_least_one_literal():
    with pytest.raises(TypeError):
        model.EnumPOD("Empty", [])


def test_primitives_cover_the_builtin_type_names():
    assert set(model.PRIMITIVES) == {"String", "Boolean", "Integer", "Real"}
    assert model.ANY_TYPE == "Element"
