from typing import Dict, List, Sequence, Tuple

import numpy as np
import pytest
from astropy.io import fits

from table_models import DEFAULT_TABLE_NAMES, STOKES_XFLT, BasisState


def basis_of(table: str) -> BasisState:
    for basis, name in DEFAULT_TABLE_NAMES.items():
        if table.endswith(name):
            return basis
    raise KeyError(table)


class DictSampler:
    """In-memory sampler returning fixed responses per (basis, channel)."""

    def __init__(self, responses: Dict[Tuple[BasisState, int], Sequence[float]]) -> None:
        self.responses = responses
        self.calls: List[Tuple[str, int, Tuple[float, ...]]] = []

    def sample(self, energies, params, table, xflt_name=STOKES_XFLT, xflt_value=0.0):
        assert xflt_name == STOKES_XFLT
        self.calls.append((table, int(xflt_value), tuple(params)))
        response = np.array(self.responses[(basis_of(table), int(xflt_value))],
                            dtype=np.float64)
        return response, np.zeros_like(response)


def make_responses(unpol, hrpol, deg45):
    """Raw (not differenced) I, Q, U per basis."""
    responses = {}
    for basis, iqu in zip(BasisState, (unpol, hrpol, deg45)):
        for channel, values in enumerate(iqu):
            responses[(basis, channel)] = values
    return responses


@pytest.fixture
def two_bin_energies() -> np.ndarray:
    return np.array([1.0, 2.0, 4.0])


@pytest.fixture
def worked_example_sampler() -> DictSampler:
    # UNPOL: I=10, Q=U=0; HRPOL adds dQ=5; DEG45 adds dU=5
    return DictSampler(make_responses(
        unpol=([10.0, 10.0], [0.0, 0.0], [0.0, 0.0]),
        hrpol=([10.0, 10.0], [5.0, 5.0], [0.0, 0.0]),
        deg45=([10.0, 10.0], [0.0, 0.0], [5.0, 5.0]),
    ))


@pytest.fixture
def random_sampler() -> DictSampler:
    rng = np.random.default_rng(7)
    n_bins = 16

    def basis():
        i = rng.uniform(5.0, 20.0, n_bins)
        return (i, rng.uniform(-2.0, 2.0, n_bins), rng.uniform(-2.0, 2.0, n_bins))

    return DictSampler(make_responses(basis(), basis(), basis()))


@pytest.fixture
def random_energies() -> np.ndarray:
    return np.geomspace(1.0, 100.0, 17)


def write_table_model(path, grids, spectra, edges, *, names=None, methods=None,
                      redshift=False, xflt=True, row_order=None):
    """
    Write an OGIP additive table model.

    ``spectra`` maps channel → callable(*param_values) → per-bin spectrum.
    With ``xflt`` each channel gets its own SPECTRA extension keyed
    ``Stokes:<channel>``; otherwise a single un-keyed extension of the first
    channel is written.
    """
    n_params = len(grids)
    names = names or [f"PAR{i}" for i in range(n_params)]
    methods = methods or [0] * n_params
    max_vals = max(len(g) for g in grids)
    values = np.zeros((n_params, max_vals))
    for i, g in enumerate(grids):
        values[i, :len(g)] = g

    primary = fits.PrimaryHDU()
    primary.header["HDUCLASS"] = "OGIP"
    primary.header["HDUCLAS1"] = "XSPEC TABLE MODEL"
    primary.header["REDSHIFT"] = redshift
    primary.header["ADDMODEL"] = True

    parameters = fits.BinTableHDU.from_columns([
        fits.Column(name="NAME", format="12A", array=np.array(names)),
        fits.Column(name="METHOD", format="J", array=np.array(methods)),
        fits.Column(name="INITIAL", format="D", array=values[:, 0]),
        fits.Column(name="NUMBVALS", format="J",
                    array=np.array([len(g) for g in grids])),
        fits.Column(name="VALUE", format=f"{max_vals}D", array=values),
    ], name="PARAMETERS")
    parameters.header["NINTPARM"] = n_params
    parameters.header["NADDPARM"] = 0

    edges = np.asarray(edges, dtype=np.float64)
    energies = fits.BinTableHDU.from_columns([
        fits.Column(name="ENERG_LO", format="D", array=edges[:-1]),
        fits.Column(name="ENERG_HI", format="D", array=edges[1:]),
    ], name="ENERGIES")

    mesh = np.array(np.meshgrid(*grids, indexing="ij")).reshape(n_params, -1).T
    if row_order is not None:
        mesh = mesh[row_order]

    hdus = [primary, parameters, energies]
    channels = sorted(spectra) if xflt else sorted(spectra)[:1]
    for channel in channels:
        rows = np.array([spectra[channel](*point) for point in mesh])
        hdu = fits.BinTableHDU.from_columns([
            fits.Column(name="PARAMVAL", format=f"{n_params}D", array=mesh),
            fits.Column(name="INTPSPEC", format=f"{edges.size - 1}D", array=rows),
        ], name="SPECTRA")
        if xflt:
            hdu.header["XFLT0001"] = f"{STOKES_XFLT}:{channel}"
        hdus.append(hdu)

    fits.HDUList(hdus).writeto(path, overwrite=True)
    return str(path)


@pytest.fixture
def table_writer():
    return write_table_model


@pytest.fixture
def make_sampler():
    def _make(unpol, hrpol, deg45):
        return DictSampler(make_responses(unpol, hrpol, deg45))
    return _make
