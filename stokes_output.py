# -*- coding: utf-8 -*-
"""
Stokes Disc: Polarized X-ray reflection from axially symmetric surfaces
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: stokes_output.py — Output channel selection.

Maps the requested output kind onto the array handed back to the caller.
Flux-like channels (I, Q, U, V) are per-bin integrated quantities and are
returned as they are. Degree, angles and the normalized ratios are per-bin
*values*; consumers divide every returned array by the bin width, so these
channels carry an extra factor ΔE to cancel that division.
"""

from __future__ import annotations

import enum
import logging
import math
import warnings
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable

import numpy as np

from stokes_engine import STOKES_EPS

__all__ = [
    "OutputKind",
    "OutputIndicatorWarning",
    "OutputIndicator",
    "WIDTH_SCALED_KINDS",
    "resolve_output_kind",
    "select_output",
]

logger = logging.getLogger(__name__)


class OutputKind(enum.IntEnum):
    """Output selector codes, the eighth model parameter."""
    DEFERRED = -1
    FLUX_UNPOLARIZED = 0
    FLUX = 1
    Q = 2
    U = 3
    V = 4
    DEGREE = 5
    ANGLE_PSI = 6
    ANGLE_BETA = 7
    Q_OVER_I = 8
    U_OVER_I = 9
    V_OVER_I = 10

    @property
    def polarized(self) -> bool:
        """True when the kind needs the full three-basis computation."""
        return self not in (OutputKind.DEFERRED, OutputKind.FLUX_UNPOLARIZED)


WIDTH_SCALED_KINDS = frozenset({
    OutputKind.DEGREE,
    OutputKind.ANGLE_PSI,
    OutputKind.ANGLE_BETA,
    OutputKind.Q_OVER_I,
    OutputKind.U_OVER_I,
    OutputKind.V_OVER_I,
})

# Indicator value (data type of the spectrum) → output kind
_INDICATOR_KINDS: Dict[float, OutputKind] = {
    0.0: OutputKind.FLUX,
    1.0: OutputKind.Q,
    2.0: OutputKind.U,
}


class OutputIndicatorWarning(UserWarning):
    """The per-spectrum data-type indicator is missing or unsupported."""


@runtime_checkable
class OutputIndicator(Protocol):
    """
    Deferred output resolver: returns the spectrum's data-type indicator,
    0.0 (counts), 1.0 (Q) or 2.0 (U). Anything else is unresolved.
    """
    def __call__(self) -> float: ...


def resolve_output_kind(
    kind: int,
    indicator: Optional[OutputIndicator] = None,
) -> OutputKind:
    """
    Resolve the deferred kind (-1) through *indicator*; other kinds pass
    through. An unrecognized or missing indicator warns and falls back to
    unpolarized flux.
    """
    kind = OutputKind(kind)
    if kind is not OutputKind.DEFERRED:
        return kind

    value = indicator() if indicator is not None else math.nan
    resolved = _INDICATOR_KINDS.get(float(value))
    if resolved is not None:
        logger.debug("Output indicator %r resolved to %s", value, resolved.name)
        return resolved

    message = (
        f"no or wrong information on data type (indicator={value!r}); "
        "unpolarized flux (Stokes = 0) will be used"
    )
    logger.warning(message)
    warnings.warn(message, OutputIndicatorWarning, stacklevel=2)
    return OutputKind.FLUX_UNPOLARIZED


def select_output(
    kind: OutputKind,
    energies: np.ndarray,
    quantities: Mapping[str, np.ndarray],
    eps: float = STOKES_EPS,
) -> np.ndarray:
    """
    Build the returned array for a resolved *kind*.

    Args:
        kind: Resolved output kind (never DEFERRED).
        energies: Bin edges, shape (n_bins + 1,).
        quantities: Mapping with 'I' and, for polarized kinds, 'Q', 'U',
            'V', 'PD', 'PSI', 'BETA' (as produced by
            ``StokesSuperposition.compute``).
        eps: Denominator guard for the Q/I, U/I, V/I ratios.

    Raises:
        ValueError: If *kind* is DEFERRED or a required quantity is absent.
    """
    kind = OutputKind(kind)
    if kind is OutputKind.DEFERRED:
        raise ValueError("Deferred output kind must be resolved before selection.")

    if kind in (OutputKind.FLUX_UNPOLARIZED, OutputKind.FLUX):
        return np.array(quantities['I'], dtype=np.float64)

    try:
        if kind is OutputKind.Q:
            values = quantities['Q']
        elif kind is OutputKind.U:
            values = quantities['U']
        elif kind is OutputKind.V:
            values = quantities['V']
        elif kind is OutputKind.DEGREE:
            values = quantities['PD']
        elif kind is OutputKind.ANGLE_PSI:
            values = quantities['PSI']
        elif kind is OutputKind.ANGLE_BETA:
            values = quantities['BETA']
        else:
            numerator = {
                OutputKind.Q_OVER_I: 'Q',
                OutputKind.U_OVER_I: 'U',
                OutputKind.V_OVER_I: 'V',
            }[kind]
            values = quantities[numerator] / (quantities['I'] + eps)
    except KeyError as exc:
        raise ValueError(
            f"Output kind {kind.name} requires the polarized quantity {exc}"
        ) from None

    values = np.array(values, dtype=np.float64)
    if kind in WIDTH_SCALED_KINDS:
        values *= np.diff(energies)
    return values
