# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""Global fixtures for pytest."""

import pathlib

import pytest

import metaxml
from metaxml import model

TEST_DATA = pathlib.Path(__file__).parent / "data"
SCHEMAS = TEST_DATA / "schemas"
DOCUMENTS = TEST_DATA / "dmn"

DMN = "https://www.omg.org/spec/DMN/20191111/MODEL/"
DMNDI = "https://www.omg.org/spec/DMN/20191111/DMNDI/"
DI = "http://www.omg.org/spec/DMN/20180521/DI/"
DC = "http://www.omg.org/spec/DMN/20180521/DC/"
CAMUNDA = "http://camunda.org/schema/1.0/dmn"
SHAPES = "http://example.com/shapes"
XSI = "http://www.w3.org/2001/XMLSchema-instance"


def load_packages(*names: str) -> list[model.Package]:
    return [metaxml.load_package(SCHEMAS / name) for name in names]


@pytest.fixture
def registry() -> metaxml.TypeRegistry:
    """Create a registry for DMN and its diagram interchange."""
    return metaxml.TypeRegistry(
        *load_packages("dmn.json", "dmndi.json", "di.json", "dc.json")
    )


@pytest.fixture
def camunda_registry() -> metaxml.TypeRegistry:
    """Create a DMN registry with the Camunda vendor extensions."""
    return metaxml.TypeRegistry(
        *load_packages(
            "dmn.json", "dmndi.json", "di.json", "dc.json", "camunda.yaml"
        )
    )


@pytest.fixture
def reader(registry: metaxml.TypeRegistry) -> metaxml.XMLReader:
    return metaxml.XMLReader(registry)


@pytest.fixture
def writer(registry: metaxml.TypeRegistry) -> metaxml.XMLWriter:
    return metaxml.XMLWriter(registry)


@pytest.fixture
def shapes_registry() -> metaxml.TypeRegistry:
    """Create a registry for a small polymorphic drawing vocabulary."""
    return metaxml.TypeRegistry(*load_packages("shapes.json"))
