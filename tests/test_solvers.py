"""Tests for the mode-space solvers, source builders and stencils."""

from __future__ import annotations

import numpy as np
import pytest

from cosmopm.core.lattice import Field, TransformPlan
from cosmopm.pm import solvers


def _laplacian(a):
    """Second-order periodic lattice Laplacian in cell units."""
    out = -6.0 * a
    for axis in range(3):
        out += np.roll(a, 1, axis) + np.roll(a, -1, axis)
    return out


def _mode_field(lattice, rank=0, **kw):
    return Field(lattice.transform_lattice(), rank, **kw)


# ====================================================
# Wavenumbers
# ====================================================


class TestWavenumbers:
    def test_k2_zero_only_at_dc(self, lattice):
        """k^2 vanishes at the DC mode and nowhere else."""
        k2 = solvers.lattice_k2(lattice.transform_lattice())
        assert k2.shape == (8, 8, 5)
        assert k2[0, 0, 0] == 0.0
        assert np.count_nonzero(k2 == 0.0) == 1

    def test_k2_at_nyquist_corner(self, lattice):
        """The corner mode carries the largest lattice wavenumber."""
        k2 = solvers.lattice_k2(lattice.transform_lattice())
        assert k2[4, 4, 4] == pytest.approx(12.0)
        assert k2.max() == pytest.approx(12.0)


# ====================================================
# Poisson
# ====================================================


class TestModifiedPoisson:
    def test_single_mode(self, lattice):
        """A single Fourier mode of the source is divided by -k^2."""
        src = _mode_field(lattice)
        pot = _mode_field(lattice)
        src.data[0, 1, 0, 0] = 2.0 + 1.0j
        solvers.solve_modified_poisson(src, pot)
        k2 = (2.0 * np.sin(np.pi / 8)) ** 2
        assert pot.data[0, 1, 0, 0] == pytest.approx(-(2.0 + 1.0j) / k2)
        assert np.count_nonzero(pot.data) == 1

    def test_inverts_lattice_laplacian(self, lattice):
        """The solution satisfies the finite-difference Poisson equation."""
        rng = np.random.default_rng(5)
        s = Field(lattice, 0)
        s.interior[0] = rng.standard_normal((8, 8, 8))
        s.interior[0] -= s.interior[0].mean()
        phi = Field(lattice, 0)
        s_ft, phi_ft = _mode_field(lattice), _mode_field(lattice)

        TransformPlan(s, s_ft).forward()
        solvers.solve_modified_poisson(s_ft, phi_ft)
        TransformPlan(phi, phi_ft).backward()
        np.testing.assert_allclose(_laplacian(phi.interior[0]), s.interior[0], atol=1e-10)

    def test_modified_operator(self, lattice):
        """With modif the operator is -(k^2 + modif)."""
        src = _mode_field(lattice)
        pot = _mode_field(lattice)
        src.data[0, 0, 2, 1] = 1.0
        solvers.solve_modified_poisson(src, pot, modif=0.5)
        k2 = solvers.lattice_k2(lattice.transform_lattice())[0, 2, 1]
        assert pot.data[0, 0, 2, 1] == pytest.approx(-1.0 / (k2 + 0.5))

    def test_dc_without_modif_is_zero(self, lattice):
        """The DC mode is zeroed when the operator is singular."""
        src = _mode_field(lattice)
        pot = _mode_field(lattice)
        src.data[0, 0, 0, 0] = 4.0
        pot.data[...] = 9.0
        solvers.solve_modified_poisson(src, pot)
        assert pot.data[0, 0, 0, 0] == 0.0
        assert np.all(np.isfinite(pot.data))

    def test_dc_with_modif(self, lattice):
        """The DC mode is -source / modif when modif is non-zero."""
        src = _mode_field(lattice)
        pot = _mode_field(lattice)
        src.data[0, 0, 0, 0] = 4.0
        solvers.solve_modified_poisson(src, pot, modif=2.0)
        assert pot.data[0, 0, 0, 0] == pytest.approx(-2.0)

    def test_vector_source_rejected(self, lattice):
        """Component-count mismatches raise ValueError."""
        with pytest.raises(ValueError, match="component"):
            solvers.solve_modified_poisson(_mode_field(lattice, 1), _mode_field(lattice))

    def test_position_field_rejected(self, lattice):
        """Mode-space solves reject position-space fields."""
        with pytest.raises(ValueError, match="mode space"):
            solvers.solve_modified_poisson(Field(lattice, 0), _mode_field(lattice))


# ====================================================
# Scalar projection (chi)
# ====================================================


class TestProjectScalar:
    def test_isotropic_source_gives_zero(self, lattice):
        """A pure-trace stress has no anisotropic part."""
        rng = np.random.default_rng(2)
        S = _mode_field(lattice, 2)
        s = rng.standard_normal((8, 8, 5)) + 1j * rng.standard_normal((8, 8, 5))
        for c in (0, 3, 5):
            S.data[c] = s
        chi = _mode_field(lattice)
        solvers.project_scalar(S, chi)
        np.testing.assert_allclose(chi.data, 0.0, atol=1e-12)

    def test_longitudinal_single_mode(self, lattice):
        """S_xx along a mode in x gives chi = -S / k^2."""
        S = _mode_field(lattice, 2)
        S.data[0, 1, 0, 0] = 3.0
        chi = _mode_field(lattice)
        solvers.project_scalar(S, chi)
        k2 = (2.0 * np.sin(np.pi / 8)) ** 2
        assert chi.data[0, 1, 0, 0] == pytest.approx(-3.0 / k2)

    def test_dc_is_zero(self, lattice):
        """The DC mode of chi vanishes."""
        S = _mode_field(lattice, 2)
        S.data[:, 0, 0, 0] = 1.0
        S.data[1, 0, 0, 0] = 5.0
        chi = _mode_field(lattice)
        solvers.project_scalar(S, chi)
        assert chi.data[0, 0, 0, 0] == 0.0

    def test_wrong_components(self, lattice):
        """A vector source is rejected."""
        with pytest.raises(ValueError, match="component"):
            solvers.project_scalar(_mode_field(lattice, 1), _mode_field(lattice))


# ====================================================
# Vector projection (Bi)
# ====================================================


class TestProjectVector:
    def test_longitudinal_input_gives_zero(self, lattice):
        """A source parallel to k has no transverse part."""
        rng = np.random.default_rng(4)
        k = solvers.lattice_wavenumbers(lattice.transform_lattice())
        amp = rng.standard_normal((8, 8, 5)) + 1j * rng.standard_normal((8, 8, 5))
        S = _mode_field(lattice, 1)
        for c in range(3):
            S.data[c] = k[c] * amp
        B = _mode_field(lattice, 1)
        solvers.project_vector(S, B)
        np.testing.assert_allclose(B.data, 0.0, atol=1e-12)

    def test_result_is_transverse(self, lattice):
        """k . B vanishes for an arbitrary source."""
        rng = np.random.default_rng(8)
        S = _mode_field(lattice, 1)
        S.data[...] = rng.standard_normal((3, 8, 8, 5)) + 1j * rng.standard_normal((3, 8, 8, 5))
        B = _mode_field(lattice, 1)
        solvers.project_vector(S, B, coeff=2.0)
        k = solvers.lattice_wavenumbers(lattice.transform_lattice())
        div = k[0] * B.data[0] + k[1] * B.data[1] + k[2] * B.data[2]
        np.testing.assert_allclose(div, 0.0, atol=1e-12)

    def test_transverse_input_scaled(self, lattice):
        """A transverse source is divided by k^2 + modif and scaled."""
        S = _mode_field(lattice, 1)
        S.data[1, 2, 0, 0] = 1.0  # y-component of a mode along x
        B = _mode_field(lattice, 1)
        solvers.project_vector(S, B, coeff=3.0, modif=1.0)
        k2 = (2.0 * np.sin(2.0 * np.pi / 8)) ** 2
        assert B.data[1, 2, 0, 0] == pytest.approx(3.0 / (k2 + 1.0))
        assert B.data[0, 2, 0, 0] == 0.0

    def test_dc_is_zero(self, lattice):
        """The DC mode of Bi vanishes."""
        S = _mode_field(lattice, 1)
        S.data[:, 0, 0, 0] = 1.0
        B = _mode_field(lattice, 1)
        solvers.project_vector(S, B)
        np.testing.assert_allclose(B.data[:, 0, 0, 0], 0.0)

    def test_wrong_components(self, lattice):
        """A scalar target is rejected."""
        with pytest.raises(ValueError, match="component"):
            solvers.project_vector(_mode_field(lattice, 1), _mode_field(lattice))


# ====================================================
# Source construction
# ====================================================


class TestPhiSource:
    def _fields(self, lattice, phi=0.1, chi=0.02, T00=3.0):
        out = []
        for value, name in ((phi, "phi"), (chi, "chi"), (T00, "T00")):
            f = Field(lattice, 0, name=name)
            f.fill(value)
            out.append(f)
        return out

    def test_linear_combination(self, lattice):
        """The composite source combines matter, friction and mass terms."""
        phi, chi, T00 = self._fields(lattice)
        out = Field(lattice, 0, name="source")
        solvers.prepare_phi_source(phi, chi, T00, 1.0, out, 0.5, 2.0, 0.25)
        expected = 2.0 * (3.0 - 1.0) + (0.25 - 0.5) * 0.1 - 0.25 * 0.02
        np.testing.assert_allclose(out.interior, expected)
        assert not out.halo_clean

    def test_nonlinear_matter_term(self, lattice):
        """The nonlinear source suppresses the matter term by (1 - 4 phi)."""
        phi, chi, T00 = self._fields(lattice, chi=0.0)
        out = Field(lattice, 0)
        solvers.prepare_phi_source(phi, chi, T00, 1.0, out, 0.0, 1.0, 0.0, nonlinear=True)
        np.testing.assert_allclose(out.interior, 2.0 * (1.0 - 0.4))

    def test_inputs_unchanged(self, lattice):
        """phi, chi and T00 are only read."""
        phi, chi, T00 = self._fields(lattice)
        solvers.prepare_phi_source(phi, chi, T00, 1.0, Field(lattice, 0), 1.0, 1.0, 1.0)
        np.testing.assert_allclose(phi.data, 0.1)
        np.testing.assert_allclose(T00.data, 3.0)

    def test_in_place_over_phi_rejected(self, lattice):
        """The source may not overwrite phi."""
        phi, chi, T00 = self._fields(lattice)
        with pytest.raises(ValueError, match="in place"):
            solvers.prepare_phi_source(phi, chi, T00, 1.0, phi, 1.0, 1.0, 1.0)

    def test_component_mismatch(self, lattice):
        """A vector T00 is rejected."""
        phi, chi, _ = self._fields(lattice)
        with pytest.raises(ValueError, match="component"):
            solvers.prepare_phi_source(
                phi, chi, Field(lattice, 1), 0.0, Field(lattice, 0), 1.0, 1.0, 1.0
            )


class TestStressSource:
    def test_scaled_copy(self, lattice):
        """Without the nonlinear term the source is coeff * Tij."""
        Tij = Field(lattice, 2)
        for c in range(6):
            Tij.interior[c] = c + 1.0
        out = Field(lattice, 2)
        solvers.prepare_stress_source(Field(lattice, 0), Tij, out, 2.0)
        for c in range(6):
            np.testing.assert_allclose(out.interior[c], 2.0 * (c + 1.0))

    def test_nonlinear_gradient_term(self, lattice):
        """The nonlinear term adds 2 (d_x phi)^2 to the xx component only."""
        theta = 2.0 * np.pi / 8
        phi = Field(lattice, 0)
        phi.interior[0] = np.sin(theta * np.arange(8))[:, None, None]
        phi.update_halo()
        out = Field(lattice, 2)
        solvers.prepare_stress_source(phi, Field(lattice, 2), out, 1.0, nonlinear=True)
        grad = np.sin(theta) * np.cos(theta * np.arange(8))[:, None, None]
        np.testing.assert_allclose(out.interior[0], np.broadcast_to(2.0 * grad**2, (8, 8, 8)), atol=1e-14)
        np.testing.assert_allclose(out.interior[1:], 0.0, atol=1e-14)

    def test_nonlinear_needs_clean_halo(self, lattice):
        """The gradient term reads the phi halo."""
        phi = Field(lattice, 0)
        phi.mark_dirty()
        with pytest.raises(RuntimeError):
            solvers.prepare_stress_source(phi, Field(lattice, 2), Field(lattice, 2), 1.0, nonlinear=True)

    def test_full_tensor_rejected(self, lattice):
        """Only symmetric six-component stress is accepted."""
        with pytest.raises(ValueError, match="component"):
            solvers.prepare_stress_source(
                Field(lattice, 0), Field(lattice, 2, symmetric=False), Field(lattice, 2), 1.0
            )


# ====================================================
# Gradient stencil and filters
# ====================================================


class TestGradient:
    def test_fourth_order_on_sine(self, lattice):
        """The stencil reproduces its exact response to a sine mode."""
        theta = 2.0 * np.pi / 8
        i = np.arange(8)
        phi = Field(lattice, 0)
        phi.interior[0] = np.sin(theta * i)[None, :, None]
        phi.update_halo()
        out = Field(lattice, 0)
        solvers.fourth_order_gradient(phi, 1, out)
        factor = 8.0 * (4.0 / 3.0 * np.sin(theta) - 1.0 / 6.0 * np.sin(2.0 * theta))
        expected = factor * np.cos(theta * i)[None, :, None]
        np.testing.assert_allclose(out.interior[0], np.broadcast_to(expected, (8, 8, 8)), atol=1e-12)
        assert out.halo_clean

    def test_constant_gives_zero(self, lattice):
        """A uniform potential has no gradient."""
        phi = Field(lattice, 0)
        phi.fill(2.0)
        out = Field(lattice, 0)
        for axis in range(3):
            solvers.fourth_order_gradient(phi, axis, out)
            np.testing.assert_allclose(out.interior, 0.0, atol=1e-13)

    def test_dirty_halo_raises(self, lattice):
        """The stencil refuses a stale halo."""
        phi = Field(lattice, 0)
        phi.mark_dirty()
        with pytest.raises(RuntimeError):
            solvers.fourth_order_gradient(phi, 0, Field(lattice, 0))

    def test_bad_axis(self, lattice):
        """Only axes 0, 1 and 2 exist."""
        with pytest.raises(ValueError, match="axis"):
            solvers.fourth_order_gradient(Field(lattice, 0), 3, Field(lattice, 0))


class TestFilters:
    def test_kspace_filter_keeps_dc(self, lattice):
        """A filter that vanishes away from k = 0 leaves only the DC mode."""
        f = _mode_field(lattice)
        f.data[...] = 1.0
        solvers.apply_filter_kspace(f, lambda nx, ny, nz: ((nx == 0) & (ny == 0) & (nz == 0)) * 1.0)
        assert f.data[0, 0, 0, 0] == 1.0
        assert np.count_nonzero(f.data) == 1

    def test_kspace_filter_uses_signed_modes(self, lattice):
        """Negative mode numbers are seen by the filter."""
        f = _mode_field(lattice)
        f.data[...] = 1.0
        solvers.apply_filter_kspace(f, lambda nx, ny, nz: (nx < 0) * 1.0)
        assert f.data[0, 5, 0, 0] == 1.0
        assert f.data[0, 3, 0, 0] == 0.0

    def test_rspace_filter_refreshes_halo(self, lattice):
        """The position-space filter scales cells and refreshes the halo."""
        f = Field(lattice, 0)
        f.fill(1.0)
        solvers.apply_filter_rspace(f, lambda i, j, k: 1.0 + i)
        np.testing.assert_allclose(f.interior[0, 3], 4.0)
        assert f.halo_clean
        assert f.data[0, 0, 2, 2] == pytest.approx(7.0)
