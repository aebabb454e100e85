# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0

import pytest
from lxml import etree

import metaxml

from .conftest import DOCUMENTS  # type: ignore

PLAIN_DOCUMENTS = sorted(
    i.name for i in DOCUMENTS.glob("*.dmn") if i.name != "extensions.dmn"
)


def c14n(elem):
    return etree.tostring(elem, method="c14n", exclusive=True)


@pytest.mark.parametrize("name", PLAIN_DOCUMENTS)
def test_documents_survive_a_roundtrip(reader, writer, name):
    original = reader.read((DOCUMENTS / name).read_bytes())

    text = writer.write(original)
    reread = reader.read(text)

    assert reread.to_dict() == original.to_dict()


@pytest.mark.parametrize("name", PLAIN_DOCUMENTS)
def test_written_output_is_stable(reader, writer, name):
    first = writer.write(reader.read((DOCUMENTS / name).read_bytes()))

    second = writer.write(reader.read(first))

    assert second == first


def test_reference_styles_are_preserved(reader, writer):
    definitions = reader.read((DOCUMENTS / "di-label.dmn").read_bytes())

    text = writer.write(definitions)

    assert 'dmnElementRef="Decision_1"' in text
    assert 'sharedStyle="SharedStyle_1"' in text
    assert '<dmn:requiredInput href="#InputData_1"/>' in text
    assert '<di:waypoint x="180" y="190"/>' in text
    assert 'x="127.5"' in text


def test_foreign_content_survives_a_roundtrip(camunda_registry):
    reader = metaxml.XMLReader(camunda_registry)
    writer = metaxml.XMLWriter(camunda_registry)
    original = reader.read((DOCUMENTS / "extensions.dmn").read_bytes())

    reread = reader.read(writer.write(original))

    assert reread.extra_attributes == original.extra_attributes
    assert reread.get("camunda:versionTag") == "1.2"
    decision, input_data = reread.drgElement
    original_decision = original.drgElement[0]
    assert [c14n(i) for i in decision.extension_elements] == [
        c14n(i) for i in original_decision.extension_elements
    ]
    assert [c14n(i) for i in decision.extensionElements.values] == [
        c14n(i) for i in original_decision.extensionElements.values
    ]
    assert input_data.get("camunda:inputVariable") == "amount"
    assert input_data.get("camunda:priority") == 3


def test_foreign_prefixes_are_kept(camunda_registry):
    reader = metaxml.XMLReader(camunda_registry)
    writer = metaxml.XMLWriter(camunda_registry)
    original = reader.read((DOCUMENTS / "extensions.dmn").read_bytes())

    text = writer.write(original)

    assert original.extra_namespaces == {"foo": "http://example.com/foo"}
    assert 'xmlns:foo="http://example.com/foo"' in text
    assert 'foo:flag="yes"' in text
    assert (
        '<foo:unknown attr="1"><foo:child>text</foo:child></foo:unknown>'
        in text
    )
    assert (
        '<foo:meta key="a">value<foo:nested level="2"/></foo:meta>'
        in text
    )
    assert "ns0" not in text


def test_generated_ids_can_be_read_back(registry):
    writer = metaxml.XMLWriter(registry, generate_ids=True)
    target = registry.create("dmn:InputData", name="Amount")
    definitions = registry.create(
        "dmn:Definitions",
        drgElement=[target],
        artifact=[registry.create("dmn:Association", targetRef=target)],
    )

    reread = metaxml.read(registry, writer.write(definitions))

    association = reread.artifact[0]
    assert association.targetRef is reread.drgElement[0]
    assert association.targetRef.name == "Amount"


def test_partial_documents_keep_their_placeholders(reader, writer):
    source = (
        '<informationRequirement xmlns="https://www.omg.org/spec/DMN/'
        '20191111/MODEL/" id="IR"><requiredInput href="#Outside"/>'
        "</informationRequirement>"
    )
    requirement = reader.read(source, partial=True)

    text = writer.write(requirement)

    assert '<dmn:requiredInput href="#Outside"/>' in text
    reread = reader.read(text, partial=True)
    assert reread.requiredInput == metaxml.Reference("Outside")
