# -*- coding: utf-8 -*-
"""
Stokes Disc: Polarized X-ray reflection from axially symmetric surfaces
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: fits_table.py — OGIP additive table models.

File layout read here:
  PRIMARY     REDSHIFT (bool): last requested parameter is a redshift
  PARAMETERS  NAME, METHOD (0 linear / 1 log), NUMBVALS, VALUE;  NINTPARM
  ENERGIES    ENERG_LO, ENERG_HI
  SPECTRA     PARAMVAL, INTPSPEC;  optional XFLTnnnn = "Name:value"

A file may carry several SPECTRA extensions told apart by their XFLT
keywords (one per Stokes channel). A single un-keyed SPECTRA extension
serves every selector value.

Spectra are photons per table bin. Evaluation is multilinear in the
parameters, followed by a flux-conserving rebin onto the requested grid
through the cumulative spectrum.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from astropy.io import fits
from scipy.interpolate import RegularGridInterpolator

from .provider import STOKES_XFLT, TableModelError

__all__ = ["FitsTableModel", "FitsTableSampler", "parse_xflt"]

logger = logging.getLogger(__name__)

METHOD_LINEAR = 0
METHOD_LOG = 1


def parse_xflt(card_value: str) -> Tuple[str, float]:
    """
    Split an XFLT keyword value ``"Name:value"`` into (name, float).

    Raises:
        ValueError: If the value is not of that form.
    """
    name, sep, value = str(card_value).partition(":")
    if not sep:
        raise ValueError(f"XFLT value {card_value!r} is not of the form 'Name:value'")
    return name.strip(), float(value)


@dataclass(slots=True)
class FitsTableModel:
    """
    One parsed table file.

    Attributes
    ----------
    names : list of str
        Interpolation parameter names.
    grids : list of ndarray
        Parameter value grids (ascending).
    log_axes : list of bool
        True where the parameter is interpolated logarithmically.
    edges : ndarray
        Contiguous table energy edges, shape (n_energies + 1,).
    spectra : dict
        (xflt_name, xflt_value) → spectra cube of shape (*grid_shape, n_energies).
        The key (None, None) holds an un-keyed SPECTRA extension.
    redshift : bool
        Whether the table accepts a trailing redshift parameter.
    """
    names: List[str]
    grids: List[np.ndarray]
    log_axes: List[bool]
    edges: np.ndarray
    spectra: Dict[Tuple[Optional[str], Optional[float]], np.ndarray]
    redshift: bool = False
    _interpolators: Dict[Tuple[Optional[str], Optional[float]], RegularGridInterpolator] = field(
        default_factory=dict, repr=False
    )

    @property
    def n_params(self) -> int:
        return len(self.grids)

    # -- construction ------------------------------------------------------
    @classmethod
    def from_file(cls, path: str) -> "FitsTableModel":
        """
        Raises
        ------
        FileNotFoundError
            If *path* does not exist.
        TableModelError
            If a required extension or column is missing or inconsistent.
        """
        if not os.path.exists(path):
            raise FileNotFoundError(f"Table model not found: {path}")

        with fits.open(path, memmap=False) as hdul:
            try:
                redshift = bool(hdul[0].header.get("REDSHIFT", False))
                names, grids, log_axes = cls._read_parameters(hdul["PARAMETERS"])
                energies = hdul["ENERGIES"].data
                e_lo = np.asarray(energies["ENERG_LO"], dtype=np.float64)
                e_hi = np.asarray(energies["ENERG_HI"], dtype=np.float64)
            except KeyError as exc:
                raise TableModelError(f"{path}: {exc}") from None

            edges = np.concatenate([e_lo[:1], e_hi])
            if (edges.size < 2 or not np.all(np.diff(edges) > 0)
                    or not np.allclose(e_lo[1:], e_hi[:-1], rtol=1e-9, atol=0.0)):
                raise TableModelError(
                    f"{path}: table energy grid must be contiguous and increasing."
                )

            spectra: Dict[Tuple[Optional[str], Optional[float]], np.ndarray] = {}
            for hdu in hdul[1:]:
                if hdu.name != "SPECTRA":
                    continue
                cube = cls._read_spectra(hdu, grids, e_lo.size, path)
                try:
                    keys = [
                        parse_xflt(hdu.header[card])
                        for card in hdu.header
                        if card.startswith("XFLT") and card[4:].isdigit()
                    ]
                except ValueError as exc:
                    raise TableModelError(f"{path}: {exc}") from None
                if not keys:
                    keys = [(None, None)]
                for key in keys:
                    spectra[key] = cube

        if not spectra:
            raise TableModelError(f"{path}: no SPECTRA extension found.")

        logger.debug(
            "Loaded table %s: params=%s, %d energies, spectra=%s",
            path, names, edges.size - 1, sorted(spectra, key=str),
        )
        return cls(names=names, grids=grids, log_axes=log_axes, edges=edges,
                   spectra=spectra, redshift=redshift)

    @staticmethod
    def _read_parameters(hdu) -> Tuple[List[str], List[np.ndarray], List[bool]]:
        data = hdu.data
        n_int = int(hdu.header.get("NINTPARM", len(data)))
        names, grids, log_axes = [], [], []
        for i in range(n_int):
            n_vals = int(data["NUMBVALS"][i])
            grid = np.asarray(data["VALUE"][i], dtype=np.float64).ravel()[:n_vals]
            if grid.size > 1 and not np.all(np.diff(grid) > 0):
                raise TableModelError(
                    f"Parameter {str(data['NAME'][i]).strip()!r}: grid must be "
                    "strictly increasing."
                )
            names.append(str(data["NAME"][i]).strip())
            grids.append(grid)
            log_axes.append(int(data["METHOD"][i]) == METHOD_LOG)
        return names, grids, log_axes

    @staticmethod
    def _read_spectra(hdu, grids: List[np.ndarray], n_energies: int,
                      path: str) -> np.ndarray:
        try:
            paramval = np.asarray(hdu.data["PARAMVAL"], dtype=np.float64)
            intpspec = np.asarray(hdu.data["INTPSPEC"], dtype=np.float64)
        except KeyError as exc:
            raise TableModelError(f"{path}: SPECTRA is missing column {exc}") from None

        paramval = paramval.reshape(paramval.shape[0], -1)
        intpspec = intpspec.reshape(intpspec.shape[0], -1)
        shape = tuple(g.size for g in grids)

        if intpspec.shape != (int(np.prod(shape)), n_energies):
            raise TableModelError(
                f"{path}: SPECTRA holds {intpspec.shape}, expected "
                f"({int(np.prod(shape))}, {n_energies})."
            )

        # Rows are placed by their PARAMVAL, independent of file ordering
        index = []
        for axis, grid in enumerate(grids):
            col = paramval[:, axis]
            pos = np.clip(np.searchsorted(grid, col), 0, grid.size - 1)
            lower = np.clip(pos - 1, 0, grid.size - 1)
            pos = np.where(np.abs(grid[lower] - col) < np.abs(grid[pos] - col),
                           lower, pos)
            if not np.allclose(grid[pos], col, rtol=1e-6, atol=0.0):
                raise TableModelError(
                    f"{path}: PARAMVAL column {axis} does not match the "
                    "parameter grid."
                )
            index.append(pos)

        cube = np.zeros(shape + (n_energies,), dtype=np.float64)
        cube[tuple(index)] = intpspec
        return cube

    # -- evaluation --------------------------------------------------------
    def interpolate(self, params: Sequence[float], xflt_name: Optional[str] = None,
                    xflt_value: Optional[float] = None) -> np.ndarray:
        """
        Spectrum on the table energy grid at *params* (interpolation
        parameters only).

        Raises
        ------
        TableModelError
            On a missing XFLT spectrum or a parameter outside its grid.
        """
        key = self._spectrum_key(xflt_name, xflt_value)
        point = self._point(params)

        # Single-valued axes carry no interpolation
        free = [i for i, g in enumerate(self.grids) if g.size > 1]
        if not free:
            return self.spectra[key][(0,) * self.n_params].copy()

        interp = self._interpolators.get(key)
        if interp is None:
            cube = self.spectra[key][tuple(slice(None) if i in free else 0
                                           for i in range(self.n_params))]
            axes = tuple(self._axis(self.grids[i], self.log_axes[i]) for i in free)
            interp = RegularGridInterpolator(axes, cube, method="linear",
                                             bounds_error=False, fill_value=None)
            self._interpolators[key] = interp

        return np.asarray(interp([[point[i] for i in free]])[0], dtype=np.float64)

    def evaluate(self, energies: np.ndarray, params: Sequence[float],
                 xflt_name: Optional[str] = None,
                 xflt_value: Optional[float] = None) -> np.ndarray:
        """
        Photons per requested bin.

        ``params`` holds the interpolation parameters followed, for
        redshifted tables, by z. Requested bins outside the table energy
        range receive zero.
        """
        if len(params) < self.n_params + int(self.redshift):
            raise TableModelError(
                f"Table expects {self.n_params + int(self.redshift)} parameters, "
                f"got {len(params)}."
            )
        spectrum = self.interpolate(params[:self.n_params], xflt_name, xflt_value)
        z = float(params[self.n_params]) if self.redshift else 0.0

        shifted = np.asarray(energies, dtype=np.float64) * (1.0 + z)
        cumulative = np.concatenate([[0.0], np.cumsum(spectrum)])
        at_edges = np.interp(shifted, self.edges, cumulative,
                             left=0.0, right=cumulative[-1])
        return np.diff(at_edges) / (1.0 + z)

    # -- internals ---------------------------------------------------------
    def _spectrum_key(self, xflt_name, xflt_value):
        if xflt_name is not None and xflt_value is not None:
            key = (xflt_name, float(xflt_value))
            if key in self.spectra:
                return key
        if (None, None) in self.spectra:
            return (None, None)
        raise TableModelError(
            f"No SPECTRA extension for {xflt_name}:{xflt_value}; available: "
            f"{sorted(self.spectra, key=str)}"
        )

    def _point(self, params: Sequence[float]) -> List[float]:
        point = []
        for name, grid, log_axis, value in zip(self.names, self.grids,
                                               self.log_axes, params):
            value = float(value)
            if grid.size > 1 and not grid[0] <= value <= grid[-1]:
                raise TableModelError(
                    f"Parameter {name!r}={value} outside table range "
                    f"[{grid[0]}, {grid[-1]}]."
                )
            point.append(np.log(value) if log_axis else value)
        return point

    @staticmethod
    def _axis(grid: np.ndarray, log_axis: bool) -> np.ndarray:
        return np.log(grid) if log_axis else grid


class FitsTableSampler:
    """
    ``TableSampler`` over OGIP table files, with an LRU cache of parsed
    tables keyed by absolute path.
    """

    def __init__(self, cache_size: int = 8) -> None:
        self._cache: OrderedDict[str, FitsTableModel] = OrderedDict()
        self._max_cache_size = cache_size
        self._cache_lock = threading.RLock()

    def load(self, table: str) -> FitsTableModel:
        """Parsed table for *table*, from cache when possible."""
        key = os.path.abspath(table)
        with self._cache_lock:
            model = self._cache.get(key)
            if model is not None:
                self._cache.move_to_end(key)
                return model

        model = FitsTableModel.from_file(table)

        with self._cache_lock:
            if len(self._cache) >= self._max_cache_size:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug("Evicted table %s from cache", evicted)
            self._cache[key] = model
        return model

    def invalidate_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def sample(
        self,
        energies: np.ndarray,
        params: Sequence[float],
        table: str,
        xflt_name: str = STOKES_XFLT,
        xflt_value: float = 0.0,
    ) -> Tuple[np.ndarray, np.ndarray]:
        response = self.load(table).evaluate(energies, params, xflt_name, xflt_value)
        return response, np.zeros_like(response)
