# Copyright (C) 2025 EchemSim authors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
# =============================================================================
"""Butler-Volmer interfacial kinetics."""

import jax
import jax.numpy as np
import numpy as onp

from scipy.optimize import brentq

from .para import F, R

jax.config.update("jax_enable_x64", True)


# keeps i0 finite at an empty or full particle surface
STO_EPS = 1e-6

# bound of the exponent arguments
EXP_CLIP = 150.


def calcJ0(i0_ref, ce_ratio, sto, alpha_a, alpha_c):
    '''
    Exchange current density (A/m^2), equal to i0_ref at sto = 0.5, c_e = c_e0

    i0 = i0_ref * (c_e/c_e0)^alpha_a * ((1-sto)/0.5)^alpha_a * (sto/0.5)^alpha_c
    '''

    sto = np.clip(sto, STO_EPS, 1. - STO_EPS)

    j0 = i0_ref * ce_ratio**alpha_a * ((1. - sto) / 0.5)**alpha_a * (sto / 0.5)**alpha_c

    return j0


def butler_volmer(i0, eta, alpha_a, alpha_c, T):
    '''
    j = i0 * [exp(alpha_a*F*eta/RT) - exp(-alpha_c*F*eta/RT)]

    Positive j is oxidation (lithium leaves the particle).
    '''

    f = F / (R * T)

    BV = (np.exp(np.clip(alpha_a * f * eta, -EXP_CLIP, EXP_CLIP))
          - np.exp(np.clip(-alpha_c * f * eta, -EXP_CLIP, EXP_CLIP)))

    return i0 * BV


def inverse_butler_volmer(j, i0, alpha_a, alpha_c, T):
    '''
    Overpotential that carries the reaction current density j (host side, scalar)
    '''

    f = F / (R * T)

    if alpha_a == alpha_c:
        return float(onp.arcsinh(j / (2. * i0)) / (alpha_a * f))

    if j == 0:
        return 0.

    def residual(eta):
        return float(butler_volmer(i0, eta, alpha_a, alpha_c, T)) - j

    # bracket from the dominant branch and widen until the sign changes
    guess = onp.log(abs(j) / i0 + 1.) / (min(alpha_a, alpha_c) * f)
    lo, hi = -2. * guess - 1e-3, 2. * guess + 1e-3
    for _ in range(40):
        if residual(lo) * residual(hi) <= 0:
            break
        lo, hi = 2. * lo, 2. * hi
    else:
        raise ValueError(f"no overpotential carries j={j} with i0={i0}")

    return brentq(residual, lo, hi, xtol=1e-12)
