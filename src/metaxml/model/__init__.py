# SPDX-FileCopyrightText: Copyright DB InfraGO AG
# SPDX-License-Identifier: Apache-2.0
"""The meta-model: descriptors, the type registry and model instances."""

from ._descriptors import *
from ._obj import *
from ._pods import *
from ._registry import *
