# -*- coding: utf-8 -*-
"""
Stokes Disc: Polarized X-ray reflection from axially symmetric surfaces
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: stokes_model.py — Reflection model driver.

Polarized reflection from an axially symmetric, optically thick surface
illuminated isotropically by an (un)polarized power law. The reprocessed
spectra come from three precomputed tables (unpolarized, horizontally and
diagonally polarized illumination); this module samples them, combines
them for the requested incident state and returns one output channel.

Parameters (fixed order):
    0  Size      upper limit of the incident-cosine integration (corona size)
    1  PhoIndex  photon index of the primary power law
    2  cos_incl  cosine of the observer inclination (1 = pole, 0 = disc)
    3  pol_deg   polarization degree of the primary, [0, 1]
    4  chi       polarization angle of the primary [deg], 180° degenerate
    5  pos_ang   position angle of the system axis [deg], 180° degenerate
    6  zshift    overall Doppler shift
    7  Stokes    output channel, see ``stokes_output.OutputKind``
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from astropy.io import ascii

from stokes_engine import STOKES_EPS, StokesSuperposition
from stokes_output import OutputIndicator, OutputKind, resolve_output_kind, select_output
from table_models import (
    DEFAULT_TABLE_NAMES,
    STOKES_XFLT,
    BasisState,
    TableLocator,
    TableSampler,
)

__all__ = [
    "N_MODEL_PARAMS",
    "StokesParameters",
    "StokesConfig",
    "StokesResult",
    "StokesDiscModel",
    "stokes_disc",
    "validate_energy_grid",
    "write_debug_table",
]

logger = logging.getLogger(__name__)

N_MODEL_PARAMS = 8
TABLE_DIR_ENV = "XSDIR"
DEBUG_COLUMNS = ("E_MID", "I", "Q", "U", "V", "PD", "PSI", "BETA")


# ---------------------------------------------------------------------------
# 1.  Inputs
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class StokesParameters:
    """The eight model parameters; angles in degrees."""
    size:     float
    phoindex: float
    cos_incl: float
    pol_deg:  float = 0.0
    chi:      float = 0.0
    pos_ang:  float = 0.0
    zshift:   float = 0.0
    stokes:   int = int(OutputKind.FLUX)

    def __post_init__(self) -> None:
        if not 0.0 <= self.pol_deg <= 1.0:
            raise ValueError(f"pol_deg must be in [0, 1], got {self.pol_deg}")
        if not 0.0 <= self.cos_incl <= 1.0:
            raise ValueError(f"cos_incl must be in [0, 1], got {self.cos_incl}")
        OutputKind(self.stokes)

    @classmethod
    def from_sequence(cls, params: Sequence[float]) -> "StokesParameters":
        """Build from the fixed-order parameter vector."""
        if len(params) != N_MODEL_PARAMS:
            raise ValueError(
                f"Expected {N_MODEL_PARAMS} parameters, got {len(params)}."
            )
        values = [float(p) for p in params]
        return cls(*values[:7], stokes=int(values[7]))

    @property
    def table_params(self) -> Tuple[float, float, float, float]:
        """Subset handed to the table sampler."""
        return (self.size, self.phoindex, self.cos_incl, self.zshift)

    @property
    def inc_degrees(self) -> float:
        """Observer inclination in degrees."""
        return math.degrees(math.acos(self.cos_incl))


ParamsLike = Union[StokesParameters, Sequence[float]]


def validate_energy_grid(energies: Any) -> np.ndarray:
    """
    Float64 copy of *energies* after checking it defines at least one bin.

    Raises
    ------
    ValueError
        If the grid is not 1-D, has fewer than two edges or is not
        strictly increasing.
    """
    grid = np.ascontiguousarray(energies, dtype=np.float64)
    if grid.ndim != 1 or grid.size < 2:
        raise ValueError(
            f"Energy grid must be 1-D with at least 2 edges, got shape {grid.shape}."
        )
    if not np.all(np.diff(grid) > 0):
        raise ValueError("Energy grid must be strictly monotonically increasing.")
    return grid


@dataclass(slots=True, frozen=True)
class StokesConfig:
    """
    Model configuration.

    Attributes
    ----------
    table_dir : str
        Directory of the basis tables; empty means the working directory.
    table_names : dict
        File name of each basis table.
    eps : float
        Denominator guard of the derived quantities.
    debug_path : str | None
        When set, polarized runs write the per-bin debug table there.
    """
    table_dir:   str = ""
    table_names: Dict[BasisState, str] = field(
        default_factory=lambda: dict(DEFAULT_TABLE_NAMES)
    )
    eps:         float = STOKES_EPS
    debug_path:  Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 **overrides: Any) -> "StokesConfig":
        """Read the table directory from ``$XSDIR``; kwargs override."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {"table_dir": env.get(TABLE_DIR_ENV, "").strip()}
        values.update(overrides)
        return cls(**values)

    def locator(self) -> TableLocator:
        return TableLocator(directory=self.table_dir, names=dict(self.table_names))


# ---------------------------------------------------------------------------
# 2.  Result
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class StokesResult:
    """
    Output of one model evaluation.

    ``photar`` / ``photer`` are the returned channel and its error (the
    tables carry no error estimate, so ``photer`` is zero). ``quantities``
    holds every per-bin array computed on the way: 'I' always, and
    'Q', 'U', 'V', 'PD', 'PSI', 'BETA' for polarized kinds.
    """
    photar:      np.ndarray
    photer:      np.ndarray
    kind:        OutputKind
    inc_degrees: float
    quantities:  Dict[str, np.ndarray] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# 3.  Model
# ---------------------------------------------------------------------------
class StokesDiscModel:
    """
    Reflection model over an injected table sampler.

    Parameters:
        sampler: TableSampler
            Source of the basis responses.
        config: StokesConfig
            Table location, denominator guard and debug output. Defaults to
            ``StokesConfig.from_env()``.
    """

    def __init__(self, sampler: TableSampler,
                 config: Optional[StokesConfig] = None) -> None:
        self.sampler = sampler
        self.config = config if config is not None else StokesConfig.from_env()
        self.locator = self.config.locator()
        self.table_paths = self.locator.paths()

    def _sample(self, energies: np.ndarray, params: StokesParameters,
                basis: BasisState, channel: int) -> np.ndarray:
        response, _ = self.sampler.sample(
            energies, params.table_params, self.table_paths[basis],
            STOKES_XFLT, float(channel),
        )
        response = np.asarray(response, dtype=np.float64)
        if response.shape != (energies.size - 1,):
            raise ValueError(
                f"Table sampler returned shape {response.shape} for "
                f"{basis.name}:{channel}, expected ({energies.size - 1},)."
            )
        return response

    def sample_bases(self, energies: np.ndarray,
                     params: StokesParameters) -> np.ndarray:
        """All nine basis responses as a (9, n_bins) matrix."""
        return np.vstack([
            self._sample(energies, params, basis, channel)
            for basis in BasisState
            for channel in range(3)
        ])

    def compute(self, energies: Any, params: ParamsLike,
                indicator: Optional[OutputIndicator] = None) -> StokesResult:
        """
        Evaluate the model on the bin edges *energies*.

        Args:
            energies: N+1 strictly increasing bin edges [keV].
            params: ``StokesParameters`` or the 8-element parameter vector.
            indicator: Resolver for the deferred output kind (-1).

        Raises:
            ValueError: On an invalid grid or parameters.
            FileNotFoundError, TableModelError: Propagated from the sampler.
        """
        grid = validate_energy_grid(energies)
        if not isinstance(params, StokesParameters):
            params = StokesParameters.from_sequence(params)

        kind = resolve_output_kind(params.stokes, indicator)

        if kind.polarized:
            engine = StokesSuperposition(
                self.sample_bases(grid, params),
                params.pol_deg, params.chi, params.pos_ang,
                angles_are_radians=False, eps=self.config.eps,
            )
            quantities = engine.compute()
            if self.config.debug_path:
                write_debug_table(self.config.debug_path, grid, quantities,
                                  params)
        else:
            quantities = {'I': self._sample(grid, params, BasisState.UNPOL, 0)}

        photar = select_output(kind, grid, quantities, self.config.eps)
        return StokesResult(
            photar=photar,
            photer=np.zeros_like(photar),
            kind=kind,
            inc_degrees=params.inc_degrees,
            quantities=quantities,
        )


def stokes_disc(
    energies: Any,
    params: ParamsLike,
    sampler: TableSampler,
    indicator: Optional[OutputIndicator] = None,
    config: Optional[StokesConfig] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Functional form: ``(photar, photer)`` for one evaluation."""
    result = StokesDiscModel(sampler, config).compute(energies, params, indicator)
    return result.photar, result.photer


# ---------------------------------------------------------------------------
# 4.  Debug artifact
# ---------------------------------------------------------------------------
def write_debug_table(path: str, energies: np.ndarray,
                      quantities: Mapping[str, np.ndarray],
                      params: StokesParameters) -> None:
    """
    Tab-separated per-bin table (bin centre, I/Q/U/V per unit energy,
    degree, ψ, β) plus ``<stem>.parameters.txt`` with the inputs.
    """
    width = np.diff(energies)
    columns = [
        0.5 * (energies[:-1] + energies[1:]),
        quantities['I'] / width,
        quantities['Q'] / width,
        quantities['U'] / width,
        quantities['V'] / width,
        quantities['PD'],
        quantities['PSI'],
        quantities['BETA'],
    ]
    ascii.write(columns, path, names=list(DEBUG_COLUMNS), format="tab",
                formats={name: "%E" for name in DEBUG_COLUMNS},
                overwrite=True)

    stem, _ = os.path.splitext(path)
    with open(stem + ".parameters.txt", "w") as fw:
        fw.write(f"Size        {params.size:12.6f}\n")
        fw.write(f"PhoIndex    {params.phoindex:12.6f}\n")
        fw.write(f"cos_incl    {params.cos_incl:12.6f}\n")
        fw.write(f"poldeg      {params.pol_deg:12.6f}\n")
        fw.write(f"chi         {params.chi:12.6f}\n")
        fw.write(f"pos_ang     {params.pos_ang:12.6f}\n")
        fw.write(f"zshift      {params.zshift:12.6f}\n")
        fw.write(f"Stokes      {params.stokes:12d}\n")
        fw.write(f"inc_degrees {params.inc_degrees:12.6f}\n")
    logger.debug("Debug table written to %s", path)


# ═══════════════════════════════════════════════════════════════════════════════
# Self-Test
# ═══════════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    from __about__ import __title__, __version__

    class _PowerLawSampler:
        """Synthetic basis tables: a power law with basis-dependent Q, U."""

        def sample(self, energies, params, table, xflt_name=STOKES_XFLT,
                   xflt_value=0.0):
            _, gamma, mu, _ = params
            lo, hi = energies[:-1], energies[1:]
            flux = (hi ** (1.0 - gamma) - lo ** (1.0 - gamma)) / (1.0 - gamma)
            ramp = np.log(0.5 * (lo + hi))
            basis = next(b for b in BasisState if table.endswith(DEFAULT_TABLE_NAMES[b]))
            q_frac, u_frac, i_frac = {
                BasisState.UNPOL: (0.05 * (1.0 - mu) * ramp, 0.0, 1.0),
                BasisState.HRPOL: (-0.25 + 0.02 * ramp, 0.01, 1.02),
                BasisState.DEG45: (0.01, 0.25 - 0.03 * ramp, 0.99),
            }[basis]
            channel = (i_frac, q_frac, u_frac)[int(xflt_value)]
            response = flux * channel
            return response, np.zeros_like(response)

    print("=" * 70)
    print(f"{__title__} {__version__} — Self-Test")
    print("=" * 70)

    n_bins = 200
    ear = 1.0 * (100.0 / 1.0) ** (np.arange(n_bins + 1) / n_bins)
    model = StokesDiscModel(_PowerLawSampler(), StokesConfig())

    base = [0.3, 2.0, 0.775, 0.5, 30.0, 20.0, 0.0]
    for kind in OutputKind:
        if kind is OutputKind.DEFERRED:
            continue
        res = model.compute(ear, base + [int(kind)])
        out = res.photar
        print(f"  {kind.name:<17} min={out.min():+.4e}  max={out.max():+.4e}  "
              f"inc={res.inc_degrees:.2f}°")

    res = model.compute(ear, base + [int(OutputKind.ANGLE_PSI)])
    psi = res.quantities['PSI']
    print(f"\n  ψ range: [{psi.min():.2f}°, {psi.max():.2f}°], "
          f"max |Δψ| = {np.max(np.abs(np.diff(psi))):.2f}°")
    print("\n" + "=" * 70)
    print("All tests complete.")
