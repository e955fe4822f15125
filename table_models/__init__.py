# -*- coding: utf-8 -*-
"""
Stokes Disc: Polarized X-ray reflection from axially symmetric surfaces
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Reprocessing-table sources and per-spectrum output indicators.
"""

from .provider import (
    BasisState,
    DEFAULT_TABLE_NAMES,
    STOKES_XFLT,
    TableLocator,
    TableModelError,
    TableSampler,
)
from .fits_table import FitsTableModel, FitsTableSampler, parse_xflt
from .indicator import ConstantIndicator, SpectrumIndicator

__all__ = [
    "BasisState",
    "DEFAULT_TABLE_NAMES",
    "STOKES_XFLT",
    "TableLocator",
    "TableModelError",
    "TableSampler",
    "FitsTableModel",
    "FitsTableSampler",
    "parse_xflt",
    "ConstantIndicator",
    "SpectrumIndicator",
]
