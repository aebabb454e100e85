# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""Conversion between XML documents and model instances.

Both directions are driven by a :class:`~metaxml.model.TypeRegistry`.
Parsing is done with LXML's incremental parser, so that large documents
never need to be held in memory as markup. For more information about
LXML, see the `LXML Documentation`_.

.. _LXML Documentation: https://lxml.de/
"""

from ._reader import *
from ._writer import *
