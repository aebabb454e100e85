# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0

import io
import json
import logging

import pytest

import metaxml
from metaxml import model

from .conftest import (  # type: ignore
    CAMUNDA,
    DMN,
    SCHEMAS,
    XSI,
    load_packages,
)

TEST_URI = "http://example.com/test"


def make_package(*types, **kw):
    return {
        "name": "Test",
        "uri": TEST_URI,
        "prefix": "t",
        "types": list(types),
        **kw,
    }


def test_resolve_type_finds_types_by_qualified_name(registry):
    decision = registry.resolve_type("dmn:Decision")

    assert decision.name == "Decision"
    assert decision.uri == DMN
    assert decision.tag == "decision"
    assert decision.supertype == "dmn:DRGElement"


def test_resolve_type_accepts_unambiguous_unqualified_names(registry):
    assert registry.resolve_type("Decision") is registry.resolve_type(
        "dmn:Decision"
    )


def test_resolve_type_rejects_ambiguous_unqualified_names(camunda_registry):
    with pytest.raises(metaxml.UnknownTypeError):
        camunda_registry.resolve_type("Definitions")


@pytest.mark.parametrize("name", ["dmn:Nope", "nope:Decision", "Nope", ":x"])
def test_resolve_type_raises_for_unknown_names(registry, name):
    with pytest.raises(metaxml.UnknownTypeError) as excinfo:
        registry.resolve_type(name)

    assert isinstance(excinfo.value, KeyError)
    assert excinfo.value.name == name
    assert str(excinfo.value) == f"Unknown type: {name}"


def test_registry_contains_qualified_names(registry):
    assert "dmn:Decision" in registry
    assert "dmn:Nope" not in registry


def test_effective_properties_walk_the_hierarchy_from_the_root(registry):
    props = registry.effective_properties("dmn:Decision")

    assert list(props) == [
        "id",
        "label",
        "description",
        "extensionElements",
        "name",
        "question",
        "allowedAnswers",
        "variable",
        "informationRequirement",
        "decisionLogic",
    ]
    assert props["id"].owner == "dmn:DMNElement"
    assert props["decisionLogic"].type == "dmn:Expression"


def test_effective_properties_are_cached(registry):
    first = registry.effective_properties("dmn:Decision")
    second = registry.effective_properties("dmn:Decision")

    assert first is second


def test_overridden_properties_keep_their_position():
    registry = metaxml.TypeRegistry(
        make_package(
            {
                "name": "Base",
                "properties": [
                    {"name": "a", "isAttr": True},
                    {"name": "b", "isAttr": True},
                    {"name": "c", "isAttr": True},
                ],
            },
            {
                "name": "Sub",
                "superClass": ["Base"],
                "properties": [
                    {"name": "d", "isAttr": True},
                    {"name": "b", "type": "Integer", "isAttr": True},
                ],
            },
        )
    )

    props = registry.effective_properties("t:Sub")

    assert list(props) == ["a", "b", "c", "d"]
    assert props["b"].type == "Integer"
    assert props["b"].owner == "t:Sub"


def test_extends_adds_prefixed_properties_to_foreign_types(camunda_registry):
    props = camunda_registry.effective_properties("dmn:Definitions")

    assert list(props)[-1] == "camunda:versionTag"
    prop = props["camunda:versionTag"]
    assert prop.name == "versionTag"
    assert prop.prefix == "camunda"
    assert camunda_registry.property_uri(prop) == CAMUNDA


def test_extends_applies_to_subtypes_of_the_extended_type(camunda_registry):
    camunda_registry.register(
        make_package({"name": "Special", "superClass": ["dmn:InputData"]})
    )

    props = camunda_registry.effective_properties("t:Special")

    assert "camunda:inputVariable" in props
    assert "camunda:priority" in props


def test_is_subtype_follows_the_supertype_chain(registry):
    assert registry.is_subtype("dmn:Decision", "dmn:DMNElement")
    assert registry.is_subtype("dmn:Decision", "dmn:Decision")
    assert not registry.is_subtype("dmn:DMNElement", "dmn:Decision")
    assert not registry.is_subtype("dmn:Decision", "dmn:InputData")


def test_supertypes_are_ordered_from_root_to_leaf(registry):
    chain = registry.supertypes("dmn:Decision")

    assert [i.name for i in chain] == [
        "DMNElement",
        "NamedElement",
        "DRGElement",
        "Decision",
    ]


def test_find_type_by_tag_uses_the_tag_alias(registry):
    assert registry.find_type_by_tag(DMN, "decision").name == "Decision"
    assert registry.find_type_by_tag(DMN, "Decision") is None


def test_id_property_prefers_the_identity_flag(registry):
    prop = registry.id_property("dmn:Decision")

    assert prop is not None
    assert prop.name == "id"
    assert prop.is_id


def test_id_property_falls_back_to_a_string_attribute_named_id(
    shapes_registry,
):
    prop = shapes_registry.id_property("s:Circle")

    assert prop is not None
    assert prop.name == "id"
    assert not prop.is_id


def test_id_property_is_none_for_types_without_identity(registry):
    assert registry.id_property("dc:Bounds") is None


def test_registering_an_identical_package_again_has_no_effect(registry):
    count = len(registry)

    registry.register(*load_packages("dmn.json"))

    assert len(registry) == count


def test_registering_a_different_shape_raises(registry):
    package = {
        "name": "DMN",
        "uri": DMN,
        "prefix": "dmn",
        "types": [{"name": "Decision", "properties": [{"name": "x"}]}],
    }

    with pytest.raises(metaxml.SchemaConflictError):
        registry.register(package)


def test_binding_a_prefix_to_a_second_uri_raises(registry):
    package = {
        "name": "Other",
        "uri": "http://example.com/other",
        "prefix": "dmn",
    }

    with pytest.raises(metaxml.SchemaConflictError):
        registry.register(package)


def test_more_than_one_supertype_raises():
    package = make_package(
        {"name": "A"},
        {"name": "B"},
        {"name": "C", "superClass": ["A", "B"]},
    )

    with pytest.raises(metaxml.SchemaConflictError, match="more than one"):
        metaxml.TypeRegistry(package)


def test_freezing_rejects_cyclic_inheritance():
    registry = metaxml.TypeRegistry(
        make_package(
            {"name": "A", "superClass": ["B"]},
            {"name": "B", "superClass": ["A"]},
        )
    )

    with pytest.raises(metaxml.SchemaConflictError, match="Cyclic"):
        registry.freeze()
    assert not registry.frozen


def test_freezing_rejects_unknown_supertypes():
    registry = metaxml.TypeRegistry(
        make_package({"name": "A", "superClass": ["Missing"]})
    )

    with pytest.raises(metaxml.UnknownTypeError):
        registry.freeze()


def test_frozen_registries_reject_new_packages(registry):
    registry.freeze()

    with pytest.raises(RuntimeError):
        registry.register(make_package())


def test_first_prefix_wins_unless_a_canonical_prefix_is_requested(registry):
    registry.register({"name": "Alias", "uri": DMN, "prefix": "model"})
    assert registry.prefix_for(DMN) == "dmn"

    registry.register(
        {"name": "Alias", "uri": DMN, "prefix": "m", "canonicalPrefix": True}
    )
    assert registry.prefix_for(DMN) == "m"
    assert registry.resolve_type("dmn:Decision") is registry.resolve_type(
        "model:Decision"
    )
    assert registry.create("dmn:Decision").type_name == "m:Decision"


def test_conflicting_canonical_prefix_requests_raise(registry):
    registry.register(
        {"name": "A", "uri": DMN, "prefix": "a", "canonicalPrefix": True}
    )

    with pytest.raises(metaxml.SchemaConflictError):
        registry.register(
            {"name": "B", "uri": DMN, "prefix": "b", "canonicalPrefix": True}
        )


def test_more_than_one_body_property_raises():
    registry = metaxml.TypeRegistry(
        make_package(
            {"name": "A", "properties": [{"name": "a", "isBody": True}]},
            {
                "name": "B",
                "superClass": ["A"],
                "properties": [{"name": "b", "isBody": True}],
            },
        )
    )

    with pytest.raises(metaxml.SchemaConflictError, match="body"):
        registry.effective_properties("t:B")


def test_more_than_one_identity_property_raises():
    registry = metaxml.TypeRegistry(
        make_package(
            {
                "name": "A",
                "properties": [
                    {"name": "a", "isAttr": True, "isId": True},
                    {"name": "b", "isAttr": True, "isId": True},
                ],
            },
        )
    )

    with pytest.raises(metaxml.SchemaConflictError, match="identity"):
        registry.effective_properties("t:A")


@pytest.mark.parametrize(
    "prop",
    [
        pytest.param({"isAttr": True, "isBody": True}, id="attr-and-body"),
        pytest.param({"isBody": True, "isMany": True}, id="many-body"),
        pytest.param({"isReference": True}, id="reference-to-primitive"),
        pytest.param(
            {"type": "Element", "isAttr": True}, id="element-in-attribute"
        ),
        pytest.param({"xml": {"serialize": "bogus"}}, id="bad-serialize"),
        pytest.param({"xml": {"wrapped": True}}, id="wrapped-single-value"),
        pytest.param({"type": "Integer", "default": "x"}, id="bad-default"),
    ],
)
def test_invalid_property_descriptors_raise(prop):
    package = make_package(
        {"name": "A", "properties": [{"name": "p", **prop}]}
    )

    with pytest.raises(metaxml.SchemaConflictError):
        metaxml.TypeRegistry(package)


def test_wrapped_primitive_lists_are_rejected():
    registry = metaxml.TypeRegistry(
        make_package(
            {
                "name": "A",
                "properties": [
                    {"name": "p", "isMany": True, "xml": {"wrapped": True}}
                ],
            }
        )
    )

    with pytest.raises(metaxml.SchemaConflictError, match="wrapped"):
        registry.effective_properties("t:A")


def test_string_defaults_are_converted_to_the_property_type(registry):
    props = registry.effective_properties("dc:Bounds")

    assert props["x"].default == 0.0
    assert isinstance(props["x"].default, float)


def test_codec_for_returns_enumeration_codecs(registry):
    prop = registry.effective_properties("dmn:Association")[
        "associationDirection"
    ]

    codec = registry.codec_for(prop)

    assert isinstance(codec, model.EnumPOD)
    assert codec.literals == ("None", "One", "Both")


def test_create_builds_instances_with_canonical_type_names(registry):
    decision = registry.create("Decision", id="Decision_1", name="Decision")

    assert decision.type_name == "dmn:Decision"
    assert decision.id == "Decision_1"
    assert decision.name == "Decision"
    assert registry.frozen


def test_create_rejects_abstract_types(registry):
    with pytest.raises(TypeError, match="abstract"):
        registry.create("dmn:DMNElement")


def test_load_package_reads_yaml_from_open_files():
    with (SCHEMAS / "camunda.yaml").open(encoding="utf-8") as f:
        package = metaxml.load_package(f)

    assert package.uri == CAMUNDA
    assert [i.name for i in package.types] == ["Definitions", "InputData"]
    assert package.types[0].extends == ("dmn:Definitions",)


def test_load_package_rejects_non_mapping_documents():
    with pytest.raises(metaxml.SchemaConflictError):
        metaxml.load_package(io.StringIO("- just\n- a list\n"))


def test_load_package_reads_tab_indented_json():
    with (SCHEMAS / "shapes.json").open(encoding="utf-8") as f:
        data = json.load(f)

    package = metaxml.load_package(io.StringIO(json.dumps(data, indent="\t")))

    assert package.uri == data["uri"]
    assert len(package.types) == len(data["types"])


def test_load_package_requires_json_in_json_files(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("name: Test\nuri: http://example.com/test\n")

    with pytest.raises(metaxml.SchemaConflictError, match="JSON"):
        metaxml.load_package(path)


def test_load_package_reports_malformed_documents():
    with pytest.raises(metaxml.SchemaConflictError, match="YAML"):
        metaxml.load_package(io.StringIO("{name: [unclosed\n"))


def test_enumerations_without_literals_are_rejected():
    package = make_package(enumerations=[{"name": "Empty"}])

    with pytest.raises(metaxml.SchemaConflictError, match="Empty"):
        metaxml.TypeRegistry(package)


def test_registry_logs_package_registration(caplog):
    with caplog.at_level(logging.DEBUG, logger="metaxml"):
        metaxml.TypeRegistry(make_package({"name": "A"}))

    assert TEST_URI in caplog.text


def test_package_by_uri_returns_the_first_registered_package(registry):
    assert registry.package_by_uri(DMN).name == "DMN"
    assert registry.knows_namespace(DMN)
    assert not registry.knows_namespace("http://example.com/nope")

    with pytest.raises(metaxml.UnknownNamespaceError):
        registry.package_by_uri("http://example.com/nope")


def test_prefix_for_returns_the_canonical_prefix(registry):
    assert registry.prefix_for(DMN) == "dmn"
    assert registry.prefix_for(XSI) == "xsi"
