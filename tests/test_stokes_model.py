import os

import numpy as np
import pytest
from astropy.io import ascii

from __about__ import __version__, metadata_summary
from stokes_model import (
    StokesConfig,
    StokesDiscModel,
    StokesParameters,
    stokes_disc,
    validate_energy_grid,
)
from stokes_output import OutputIndicatorWarning, OutputKind
from table_models import BasisState, ConstantIndicator, DEFAULT_TABLE_NAMES


def params(stokes, pol_deg=1.0, chi=0.0, pos_ang=0.0, cos_incl=0.5):
    return [0.3, 2.0, cos_incl, pol_deg, chi, pos_ang, 0.0, stokes]


def test_worked_example_channels(worked_example_sampler, two_bin_energies) -> None:
    model = StokesDiscModel(worked_example_sampler, StokesConfig())
    width = np.diff(two_bin_energies)

    expected = {
        OutputKind.FLUX: [10.0, 10.0],
        OutputKind.Q: [-5.0, -5.0],
        OutputKind.U: [0.0, 0.0],
        OutputKind.V: [0.0, 0.0],
        OutputKind.DEGREE: 0.5 * width,
        OutputKind.ANGLE_PSI: 90.0 * width,
        OutputKind.ANGLE_BETA: [0.0, 0.0],
        OutputKind.Q_OVER_I: -0.5 * width,
        OutputKind.U_OVER_I: [0.0, 0.0],
        OutputKind.V_OVER_I: [0.0, 0.0],
    }
    for kind, values in expected.items():
        result = model.compute(two_bin_energies, params(int(kind)))
        assert result.kind is kind
        np.testing.assert_allclose(result.photar, values, err_msg=kind.name)
        np.testing.assert_array_equal(result.photer, 0.0)


def test_polarized_run_samples_all_nine_tables(worked_example_sampler,
                                               two_bin_energies) -> None:
    model = StokesDiscModel(worked_example_sampler, StokesConfig())
    model.compute(two_bin_energies, [0.3, 2.0, 0.775, 0.2, 10.0, 5.0, 0.01, 1])

    calls = worked_example_sampler.calls
    assert len(calls) == 9
    assert [(c[0], c[1]) for c in calls] == [
        (DEFAULT_TABLE_NAMES[b], ch) for b in BasisState for ch in range(3)
    ]
    assert all(c[2] == (0.3, 2.0, 0.775, 0.01) for c in calls)


def test_polarization_off_samples_only_unpolarized_flux(worked_example_sampler,
                                                        two_bin_energies) -> None:
    model = StokesDiscModel(worked_example_sampler, StokesConfig())
    result = model.compute(two_bin_energies, params(0, pol_deg=1.0, chi=30.0))

    assert result.kind is OutputKind.FLUX_UNPOLARIZED
    assert worked_example_sampler.calls == [
        (DEFAULT_TABLE_NAMES[BasisState.UNPOL], 0, (0.3, 2.0, 0.5, 0.0))
    ]
    np.testing.assert_array_equal(result.photar, [10.0, 10.0])
    assert set(result.quantities) == {'I'}


def test_tables_resolved_from_configured_directory(worked_example_sampler,
                                                   two_bin_energies) -> None:
    config = StokesConfig.from_env({"XSDIR": "/opt/tables/"})
    StokesDiscModel(worked_example_sampler, config).compute(two_bin_energies, params(0))

    assert worked_example_sampler.calls[0][0] == os.path.join(
        "/opt/tables", DEFAULT_TABLE_NAMES[BasisState.UNPOL])


def test_config_from_env_defaults_to_working_directory() -> None:
    config = StokesConfig.from_env({})
    assert config.table_dir == ""
    assert config.locator().path(BasisState.DEG45) == "stokes-neutral-iso-45DEG-disc.fits"

    config = StokesConfig.from_env({"XSDIR": "tables"}, debug_path="out.dat")
    assert config.locator().path(BasisState.HRPOL) == os.path.join(
        "tables", "stokes-neutral-iso-HRPOL-disc.fits")
    assert config.debug_path == "out.dat"


@pytest.mark.parametrize("value, expected", [(1.0, [-5.0, -5.0]), (2.0, [0.0, 0.0])])
def test_deferred_output_follows_indicator(worked_example_sampler, two_bin_energies,
                                           value, expected) -> None:
    model = StokesDiscModel(worked_example_sampler, StokesConfig())
    result = model.compute(two_bin_energies, params(-1), ConstantIndicator(value))
    np.testing.assert_allclose(result.photar, expected)


def test_deferred_output_with_bad_indicator_returns_unpolarized_flux(
        worked_example_sampler, two_bin_energies) -> None:
    model = StokesDiscModel(worked_example_sampler, StokesConfig())
    with pytest.warns(OutputIndicatorWarning):
        result = model.compute(two_bin_energies, params(-1), ConstantIndicator(7.0))

    assert result.kind is OutputKind.FLUX_UNPOLARIZED
    assert len(worked_example_sampler.calls) == 1
    np.testing.assert_array_equal(result.photar, [10.0, 10.0])


def test_inclination_is_returned(worked_example_sampler, two_bin_energies) -> None:
    model = StokesDiscModel(worked_example_sampler, StokesConfig())
    result = model.compute(two_bin_energies, params(1, cos_incl=0.5))
    assert result.inc_degrees == pytest.approx(60.0)


@pytest.mark.parametrize("chi", [0.0, 33.0, -71.0])
def test_zero_degree_gives_unpolarized_baseline(random_sampler, random_energies,
                                                chi) -> None:
    model = StokesDiscModel(random_sampler, StokesConfig())
    result = model.compute(random_energies, params(1, pol_deg=0.0, chi=chi,
                                                   pos_ang=0.0))
    baseline = random_sampler.responses
    np.testing.assert_array_equal(result.quantities['I'], baseline[(BasisState.UNPOL, 0)])
    np.testing.assert_array_equal(result.quantities['Q'], baseline[(BasisState.UNPOL, 1)])
    np.testing.assert_array_equal(result.quantities['U'], baseline[(BasisState.UNPOL, 2)])


def test_zero_degree_unpolarized_tables_give_zero_polarization(
        make_sampler, two_bin_energies) -> None:
    sampler = make_sampler(
        unpol=([3.0, 4.0], [0.0, 0.0], [0.0, 0.0]),
        hrpol=([3.5, 4.5], [1.0, 2.0], [0.5, 0.0]),
        deg45=([2.5, 4.0], [0.0, 0.3], [1.0, 1.5]),
    )
    model = StokesDiscModel(sampler, StokesConfig())
    for kind in (OutputKind.Q, OutputKind.U, OutputKind.V, OutputKind.DEGREE):
        result = model.compute(two_bin_energies,
                               params(int(kind), pol_deg=0.0, chi=12.0, pos_ang=40.0))
        np.testing.assert_allclose(result.photar, 0.0, atol=1e-15)


@pytest.mark.parametrize("kind", [OutputKind.FLUX, OutputKind.Q, OutputKind.U,
                                  OutputKind.DEGREE, OutputKind.ANGLE_PSI])
def test_angle_periodicity_through_model(random_sampler, random_energies, kind) -> None:
    model = StokesDiscModel(random_sampler, StokesConfig())
    ref = model.compute(random_energies, params(int(kind), 0.6, 20.0, 35.0)).photar
    chi_shift = model.compute(random_energies, params(int(kind), 0.6, 200.0, 35.0)).photar
    pa_shift = model.compute(random_energies, params(int(kind), 0.6, 20.0, -145.0)).photar

    np.testing.assert_allclose(chi_shift, ref, atol=1e-8)
    np.testing.assert_allclose(pa_shift, ref, atol=1e-8)


def test_normalization_consistency(random_sampler, random_energies) -> None:
    model = StokesDiscModel(random_sampler, StokesConfig())
    width = np.diff(random_energies)
    q = model.compute(random_energies, params(2, 0.4, 10.0, 5.0))
    quantities = q.quantities

    checks = {
        OutputKind.FLUX: quantities['I'],
        OutputKind.Q: quantities['Q'],
        OutputKind.U: quantities['U'],
        OutputKind.V: quantities['V'],
        OutputKind.DEGREE: quantities['PD'] * width,
        OutputKind.ANGLE_PSI: quantities['PSI'] * width,
        OutputKind.ANGLE_BETA: quantities['BETA'] * width,
        OutputKind.Q_OVER_I: quantities['Q'] / quantities['I'] * width,
        OutputKind.U_OVER_I: quantities['U'] / quantities['I'] * width,
        OutputKind.V_OVER_I: quantities['V'] / quantities['I'] * width,
    }
    for kind, expected in checks.items():
        out = model.compute(random_energies, params(int(kind), 0.4, 10.0, 5.0)).photar
        np.testing.assert_allclose(out, expected, err_msg=kind.name)


def test_all_zero_tables_stay_finite(make_sampler, two_bin_energies) -> None:
    zeros = ([0.0, 0.0], [0.0, 0.0], [0.0, 0.0])
    model = StokesDiscModel(make_sampler(zeros, zeros, zeros), StokesConfig())
    for kind in OutputKind:
        if kind is OutputKind.DEFERRED:
            continue
        result = model.compute(two_bin_energies, params(int(kind), 0.8, 45.0, 30.0))
        assert np.all(np.isfinite(result.photar)), kind.name


def test_unwrapped_angles_are_continuous(random_sampler, random_energies) -> None:
    model = StokesDiscModel(random_sampler, StokesConfig())
    psi = model.compute(random_energies, params(6, 0.9, 70.0, 50.0)).quantities['PSI']
    assert np.max(np.abs(np.diff(psi))) <= 90.0


def test_stokes_parameters_accepts_dataclass(worked_example_sampler,
                                             two_bin_energies) -> None:
    p = StokesParameters(size=0.3, phoindex=2.0, cos_incl=0.5, pol_deg=1.0,
                         stokes=int(OutputKind.Q))
    result = StokesDiscModel(worked_example_sampler, StokesConfig()).compute(
        two_bin_energies, p)
    np.testing.assert_allclose(result.photar, [-5.0, -5.0])
    assert p.table_params == (0.3, 2.0, 0.5, 0.0)


def test_functional_form(worked_example_sampler, two_bin_energies) -> None:
    photar, photer = stokes_disc(two_bin_energies, params(2), worked_example_sampler,
                                 config=StokesConfig())
    np.testing.assert_allclose(photar, [-5.0, -5.0])
    assert photer.shape == photar.shape


@pytest.mark.parametrize("bad", [
    params(1, pol_deg=1.5),
    params(1, pol_deg=-0.1),
    params(1, cos_incl=1.2),
    params(11),
    params(-2),
    params(1)[:7],
])
def test_invalid_parameters_are_rejected(bad) -> None:
    with pytest.raises(ValueError):
        StokesParameters.from_sequence(bad)


def test_selector_is_truncated_like_an_integer() -> None:
    assert StokesParameters.from_sequence(params(2.0)).stokes == 2
    assert StokesParameters.from_sequence(params(6.7)).stokes == 6


@pytest.mark.parametrize("grid", [[1.0], [1.0, 1.0, 2.0], [3.0, 2.0], [[1.0, 2.0]]])
def test_invalid_energy_grid(grid) -> None:
    with pytest.raises(ValueError):
        validate_energy_grid(grid)


def test_sampler_shape_mismatch_is_reported(make_sampler) -> None:
    short = ([1.0], [0.0], [0.0])
    model = StokesDiscModel(make_sampler(short, short, short), StokesConfig())
    with pytest.raises(ValueError, match="shape"):
        model.compute([1.0, 2.0, 3.0], params(1))


def test_debug_table_written(worked_example_sampler, two_bin_energies, tmp_path) -> None:
    path = tmp_path / "stokes.dat"
    model = StokesDiscModel(worked_example_sampler, StokesConfig(debug_path=str(path)))
    model.compute(two_bin_energies, params(2, cos_incl=0.5))

    table = ascii.read(str(path), format="tab")
    assert table.colnames == ["E_MID", "I", "Q", "U", "V", "PD", "PSI", "BETA"]
    np.testing.assert_allclose(table["E_MID"], [1.5, 3.0])
    np.testing.assert_allclose(table["I"], [10.0, 5.0])
    np.testing.assert_allclose(table["Q"], [-5.0, -2.5])
    np.testing.assert_allclose(table["PSI"], [90.0, 90.0])

    listing = (tmp_path / "stokes.parameters.txt").read_text()
    assert "inc_degrees" in listing
    assert f"{60.0:12.6f}" in listing


def test_debug_table_not_written_without_polarization(worked_example_sampler,
                                                      two_bin_energies, tmp_path) -> None:
    path = tmp_path / "stokes.dat"
    model = StokesDiscModel(worked_example_sampler, StokesConfig(debug_path=str(path)))
    model.compute(two_bin_energies, params(0))
    assert not path.exists()


def test_metadata() -> None:
    summary = metadata_summary()
    assert summary["version"] == __version__
    assert summary["title"] == "Stokes Disc"
    assert summary["license"] == "LGPL-3.0-or-later"


def test_basis_tables_resolved_once_and_logged(worked_example_sampler, caplog) -> None:
    with caplog.at_level("DEBUG", logger="table_models.provider"):
        model = StokesDiscModel(worked_example_sampler,
                                StokesConfig(table_dir="/opt/tables"))
    assert model.table_paths == tuple(
        os.path.join("/opt/tables", DEFAULT_TABLE_NAMES[b]) for b in BasisState
    )
    assert any("Basis tables resolved" in r.getMessage() for r in caplog.records)
