# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""The metaxml package.

A descriptor-driven mapper between XML documents and typed object
graphs.
"""

from importlib import metadata

try:
    __version__ = metadata.version("metaxml")
except metadata.PackageNotFoundError:
    __version__ = "0.0.0+unknown"
del metadata

from ._errors import *
from ._namespaces import *
from .loader import XMLReader as XMLReader
from .loader import XMLWriter as XMLWriter
from .loader import read as read
from .loader import write as write
from .model import ModelInstance as ModelInstance
from .model import Reference as Reference
from .model import TypeRegistry as TypeRegistry
from .model import load_package as load_package
