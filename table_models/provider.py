# -*- coding: utf-8 -*-
"""
Stokes Disc: Polarized X-ray reflection from axially symmetric surfaces
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: provider.py — Table sampler interface and basis table location.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

__all__ = [
    "BasisState",
    "TableModelError",
    "TableSampler",
    "TableLocator",
    "DEFAULT_TABLE_NAMES",
    "STOKES_XFLT",
]

logger = logging.getLogger(__name__)

STOKES_XFLT = "Stokes"


class BasisState(enum.IntEnum):
    """Polarization state of the illumination a table was computed for."""
    UNPOL = 0
    HRPOL = 1
    DEG45 = 2


DEFAULT_TABLE_NAMES: Dict[BasisState, str] = {
    BasisState.UNPOL: "stokes-neutral-iso-UNPOL-disc.fits",
    BasisState.HRPOL: "stokes-neutral-iso-HRPOL-disc.fits",
    BasisState.DEG45: "stokes-neutral-iso-45DEG-disc.fits",
}


class TableModelError(ValueError):
    """A table model is malformed or cannot be evaluated at the request."""


@runtime_checkable
class TableSampler(Protocol):
    """
    Minimal interface a reprocessing-table source must satisfy.

    sample(energies, params, table, xflt_name, xflt_value)
        → (response, error), both float64 arrays of shape (n_bins,)

    ``params`` is the table subset [size, photon index, cos_incl, zshift];
    ``xflt_value`` 0/1/2 selects the I/Q/U channel of the table.

    Concrete implementations:
      - FitsTableSampler  (OGIP additive table models on disk)
    """
    def sample(
        self,
        energies: np.ndarray,
        params: Sequence[float],
        table: str,
        xflt_name: str = STOKES_XFLT,
        xflt_value: float = 0.0,
    ) -> Tuple[np.ndarray, np.ndarray]: ...


@dataclass(slots=True, frozen=True)
class TableLocator:
    """
    Resolves the file of each basis table.

    An empty ``directory`` means the bare file name (current working
    directory); otherwise the name is joined onto the directory, with or
    without a trailing separator.
    """
    directory: str = ""
    names: Dict[BasisState, str] = field(
        default_factory=lambda: dict(DEFAULT_TABLE_NAMES)
    )

    def path(self, basis: BasisState) -> str:
        name = self.names[BasisState(basis)]
        if not self.directory:
            return name
        return os.path.join(self.directory, name)

    def paths(self) -> Tuple[str, str, str]:
        """Table paths in basis order (UNPOL, HRPOL, DEG45)."""
        resolved = tuple(self.path(b) for b in BasisState)
        logger.debug("Basis tables resolved to %s", resolved)
        return resolved  # type: ignore[return-value]
