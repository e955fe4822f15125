# -*- coding: utf-8 -*-
"""
Stokes Disc: Polarized X-ray reflection from axially symmetric surfaces
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: Polarization Superposition & Derived-Quantity Engine

Basis Layout:
─────────────
  The nine sampled table responses are held in a single (9, n_bins) matrix,
  row = 3·basis + channel:

        rows 0-2   UNPOL  (unpolarized illumination)      I, Q, U
        rows 3-5   HRPOL  (horizontally polarized, 0°)    I, Q, U
        rows 6-8   DEG45  (diagonally polarized, 45°)     I, Q, U

  After differencing, rows 3-8 hold responses relative to the UNPOL rows.

Superposition (linearity of radiative transfer in Stokes space):
        S(p, χ) = S_unpol + p · ( −ΔS_hrpol · cos 2χ + ΔS_deg45 · sin 2χ )

  Any linear incident state (p, χ) is spanned by the three bases. All angle
  dependence enters through 2χ, so χ and χ + 180° give identical results.

Sky Rotation (doubled-angle Stokes plane):
        Q' = Q cos 2θ − U sin 2θ
        U' = U cos 2θ + Q sin 2θ

Derived Quantities:
        PD   = √(Q'² + U'² + V²) / (I + ε)
        ψ    = ½ atan2(U', Q')
        β    = ½ asin(V / √(Q'² + U'² + V² + ε))

  ψ and β are unwrapped from the highest energy bin downwards so adjacent
  bins never differ by more than 90°, then the whole sequence is shifted
  by ±180° when (max + min) leaves [−180°, 180°].
"""

import numpy as np
from numba import njit, float64, int32
from typing import Tuple

# ═══════════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════════

N_BASIS: int32 = 3
N_CHANNELS: int32 = 3
STOKES_EPS: float64 = 1e-99

# Half-angle in degrees is (x / π)·90; dividing first keeps x = ±π, ±π/2
# exactly on ±90°, ±45°.
HALF_TURN_DEG: float64 = 90.0

UNWRAP_LIMIT: float64 = 90.0
BRANCH_SHIFT: float64 = 180.0


# ═══════════════════════════════════════════════════════════════════════════════
# Basis Differencing
# ═══════════════════════════════════════════════════════════════════════════════

@njit(cache=True)
def difference_bases(basis_matrix):
    """
    Converts the polarized basis rows into differential responses.

    Args:
        basis_matrix (float64[9, n_bins]): Raw table responses, see module
            docstring for the row layout.

    Returns:
        float64[9, n_bins]: New matrix. Rows 0-2 are copied unchanged, rows
        3-5 and 6-8 hold (basis − unpolarized) for the matching channel.
    """
    out = basis_matrix.copy()
    n_bins = basis_matrix.shape[1]
    for ch in range(N_CHANNELS):
        for ie in range(n_bins):
            base = basis_matrix[ch, ie]
            out[N_CHANNELS + ch, ie] -= base
            out[2 * N_CHANNELS + ch, ie] -= base
    return out


# ═══════════════════════════════════════════════════════════════════════════════
# Polarization Superposition
# ═══════════════════════════════════════════════════════════════════════════════

@njit(cache=True)
def superpose_stokes(diff_matrix, pol_deg, chi):
    """
    Combines the baseline and differential responses for an incident state
    of degree ``pol_deg`` and angle ``chi`` (radians).

    Returns:
        (I, Q, U, V): float64[n_bins] arrays. V is identically zero; the
        tables carry no circular-polarization basis.
    """
    n_bins = diff_matrix.shape[1]
    w_h = -pol_deg * np.cos(2.0 * chi)
    w_d = pol_deg * np.sin(2.0 * chi)

    far = np.empty(n_bins, dtype=float64)
    qar = np.empty(n_bins, dtype=float64)
    uar = np.empty(n_bins, dtype=float64)
    var = np.zeros(n_bins, dtype=float64)

    for ie in range(n_bins):
        far[ie] = diff_matrix[0, ie] + (w_h * diff_matrix[3, ie] +
                                        w_d * diff_matrix[6, ie])
        qar[ie] = diff_matrix[1, ie] + (w_h * diff_matrix[4, ie] +
                                        w_d * diff_matrix[7, ie])
        uar[ie] = diff_matrix[2, ie] + (w_h * diff_matrix[5, ie] +
                                        w_d * diff_matrix[8, ie])
    return far, qar, uar, var


# ═══════════════════════════════════════════════════════════════════════════════
# Frame Rotation
# ═══════════════════════════════════════════════════════════════════════════════

@njit(cache=True)
def rotate_frame(qar, uar, pos_ang):
    """
    Rotates (Q, U) into the sky frame by the position angle ``pos_ang``
    (radians). A zero angle returns plain copies.
    """
    if pos_ang == 0.0:
        return qar.copy(), uar.copy()

    c2 = np.cos(2.0 * pos_ang)
    s2 = np.sin(2.0 * pos_ang)
    n_bins = qar.shape[0]
    q_out = np.empty(n_bins, dtype=float64)
    u_out = np.empty(n_bins, dtype=float64)
    for ie in range(n_bins):
        q_out[ie] = qar[ie] * c2 - uar[ie] * s2
        u_out[ie] = uar[ie] * c2 + qar[ie] * s2
    return q_out, u_out


# ═══════════════════════════════════════════════════════════════════════════════
# Derived Quantities & Angle Continuity
# ═══════════════════════════════════════════════════════════════════════════════

@njit(cache=True, fastmath=False)
def unwrap_against(angle, upper):
    """Moves ``angle`` by multiples of 180° until it is within 90° of ``upper``."""
    while angle - upper > UNWRAP_LIMIT:
        angle -= BRANCH_SHIFT
    while upper - angle > UNWRAP_LIMIT:
        angle += BRANCH_SHIFT
    return angle


@njit(cache=True, fastmath=False)
def canonicalize_branch(angles, a_min, a_max):
    """
    Shifts the whole unwrapped sequence by one branch when its extrema are
    centred outside [−180°, 180°]. Operates in place.
    """
    centre = a_max + a_min
    if centre > BRANCH_SHIFT:
        shift = -BRANCH_SHIFT
    elif centre < -BRANCH_SHIFT:
        shift = BRANCH_SHIFT
    else:
        return
    for ie in range(angles.shape[0]):
        angles[ie] += shift


@njit(cache=True, fastmath=False)
def derive_quantities(far, qar, uar, var, eps):
    """
    Per-bin polarization degree, polarization angle ψ and Stokes angle β.

    The sweep runs from the last (highest energy) bin to the first; every
    bin is unwrapped against its already processed upper neighbour while
    the extrema of both angle sequences are tracked. The branch shift is
    applied once the sweep is complete.

    Args:
        far, qar, uar, var (float64[n_bins]): Stokes I and sky-frame Q, U, V.
        eps (float64): Additive guard for every denominator.

    Returns:
        (pd, psi, beta): float64[n_bins] arrays, angles in degrees.
    """
    n_bins = far.shape[0]
    pd = np.empty(n_bins, dtype=float64)
    psi = np.empty(n_bins, dtype=float64)
    beta = np.empty(n_bins, dtype=float64)

    psi_min, psi_max = 1e30, -1e30
    beta_min, beta_max = 1e30, -1e30

    for ie in range(n_bins - 1, -1, -1):
        pol_sq = qar[ie] * qar[ie] + uar[ie] * uar[ie] + var[ie] * var[ie]
        pd[ie] = np.sqrt(pol_sq) / (far[ie] + eps)

        a = np.arctan2(uar[ie], qar[ie]) / np.pi * HALF_TURN_DEG
        b = np.arcsin(var[ie] / np.sqrt(pol_sq + eps)) / np.pi * HALF_TURN_DEG
        if ie < n_bins - 1:
            a = unwrap_against(a, psi[ie + 1])
            b = unwrap_against(b, beta[ie + 1])
        psi[ie] = a
        beta[ie] = b

        if a < psi_min:
            psi_min = a
        if a > psi_max:
            psi_max = a
        if b < beta_min:
            beta_min = b
        if b > beta_max:
            beta_max = b

    if n_bins > 0:
        canonicalize_branch(psi, psi_min, psi_max)
        canonicalize_branch(beta, beta_min, beta_max)

    return pd, psi, beta


# ═══════════════════════════════════════════════════════════════════════════════
# Python Class Wrapper
# ═══════════════════════════════════════════════════════════════════════════════

class StokesSuperposition:
    """
    Runs the full polarized chain on one set of sampled basis responses:
    differencing → superposition → sky rotation → derived quantities.

    Parameters:
        basis_matrix: float ndarray (9 × n_bins)
            Sampled table responses in the row layout of this module.
        pol_deg: float
            Incident polarization degree in [0, 1].
        chi: float
            Incident polarization angle.
        pos_ang: float
            Position angle of the system axis on the sky.
        angles_are_radians: bool
            If True, ``chi`` and ``pos_ang`` are in radians. Default: False
            (degrees).
        eps: float
            Denominator guard, default ``STOKES_EPS``.
    """

    def __init__(self, basis_matrix, pol_deg, chi, pos_ang,
                 angles_are_radians=False, eps=STOKES_EPS):
        matrix = np.ascontiguousarray(basis_matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != N_BASIS * N_CHANNELS:
            raise ValueError(
                f"basis_matrix must have shape (9, n_bins), got {matrix.shape}"
            )
        self.basis_matrix = matrix
        self.pol_deg = float(pol_deg)
        if angles_are_radians:
            self.chi = float(chi)
            self.pos_ang = float(pos_ang)
        else:
            self.chi = float(np.radians(chi))
            self.pos_ang = float(np.radians(pos_ang))
        self.eps = float(eps)

    def stokes(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Sky-frame (I, Q, U, V) per bin."""
        diff = difference_bases(self.basis_matrix)
        far, qar, uar, var = superpose_stokes(diff, self.pol_deg, self.chi)
        q_sky, u_sky = rotate_frame(qar, uar, self.pos_ang)
        return far, q_sky, u_sky, var

    def compute(self):
        """
        Full chain.

        Returns:
            dict with keys 'I', 'Q', 'U', 'V' (sky frame, per bin) and
            'PD', 'PSI', 'BETA' (angles in degrees, canonicalized).
        """
        far, qar, uar, var = self.stokes()
        pd, psi, beta = derive_quantities(far, qar, uar, var, self.eps)
        return {
            'I': far, 'Q': qar, 'U': uar, 'V': var,
            'PD': pd, 'PSI': psi, 'BETA': beta,
        }
