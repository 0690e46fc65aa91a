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
"""Preparation."""

import numpy as onp

from .mesh import CATHODE


def assign_init_sol(cell, layout, soc):
    '''
    Equilibrium state at the given cell SOC: uniform particles, c_e = c_e0,
    phi_e = -U_a so that the anode is grounded, phi_s = U_c - U_a in the cathode.
    '''

    cathode, anode = cell.cathode.material, cell.anode.material

    sto_ca = cathode.stoichiometry_at(soc)
    sto_an = anode.stoichiometry_at(soc)

    phi0_ca = float(cathode.ocp(sto_ca))
    phi0_an = float(anode.ocp(sto_an))

    is_ca = layout.particle_region == CATHODE

    c_s = onp.where(is_ca, sto_ca * cathode.c_max, sto_an * anode.c_max)
    c_s = onp.repeat(c_s[:, None], layout.n_r, axis=1)

    c_e = onp.full(layout.n_x, cell.electrolyte.initial_concentration)
    phi_e = onp.full(layout.n_x, -phi0_an)

    phi_s = onp.where(is_ca, phi0_ca - phi0_an, 0.)

    return layout.pack(c_s, c_e, phi_s, phi_e)


def open_circuit_voltage(cell, soc):
    cathode, anode = cell.cathode.material, cell.anode.material
    return float(cathode.ocp(cathode.stoichiometry_at(soc)) - anode.ocp(anode.stoichiometry_at(soc)))
