# -*- coding: utf-8 -*-
"""
Stokes Disc: Polarized X-ray reflection from axially symmetric surfaces
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: indicator.py — Per-spectrum output indicators.

A polarimetric data set stores which Stokes quantity it holds in the
SPECTRUM extension header, e.g. ``XFLT0001 = 'Stokes:1'``. The resolvers
here return that number (NaN when absent) for deferred output selection.
"""

from __future__ import annotations

import logging
import math
import os

from astropy.io import fits

from .fits_table import parse_xflt
from .provider import STOKES_XFLT

__all__ = ["ConstantIndicator", "SpectrumIndicator"]

logger = logging.getLogger(__name__)


class ConstantIndicator:
    """Indicator with a fixed value."""

    __slots__ = ("value",)

    def __init__(self, value: float) -> None:
        self.value = float(value)

    def __call__(self) -> float:
        return self.value

    def __repr__(self) -> str:
        return f"ConstantIndicator({self.value!r})"


class SpectrumIndicator:
    """
    Reads the indicator from the XFLT keywords of a spectrum file.

    Parameters
    ----------
    path : str
        Spectrum file (OGIP PHA).
    name : str
        XFLT name to look for, default ``"Stokes"``.
    extension : str
        Extension holding the keywords, default ``"SPECTRUM"``.
    """

    __slots__ = ("path", "name", "extension")

    def __init__(self, path: str, name: str = STOKES_XFLT,
                 extension: str = "SPECTRUM") -> None:
        self.path = path
        self.name = name
        self.extension = extension

    def __call__(self) -> float:
        """
        Numeric XFLT value for ``name``, or NaN when the file is missing or
        unreadable, or the extension, keyword or value is missing or malformed.
        """
        if not os.path.exists(self.path):
            logger.warning("Spectrum file %s not found", self.path)
            return math.nan

        try:
            with fits.open(self.path, memmap=False) as hdul:
                if self.extension not in hdul:
                    logger.warning("%s has no %s extension", self.path,
                                   self.extension)
                    return math.nan
                header = hdul[self.extension].header
        except OSError as exc:
            logger.warning("Cannot read spectrum file %s: %s", self.path, exc)
            return math.nan

        for card in header:
            if not (card.startswith("XFLT") and card[4:].isdigit()):
                continue
            try:
                key, value = parse_xflt(header[card])
            except ValueError:
                logger.debug("Ignoring malformed %s=%r", card, header[card])
                continue
            if key == self.name:
                return value
        return math.nan

    def __repr__(self) -> str:
        return f"SpectrumIndicator({self.path!r}, name={self.name!r})"
