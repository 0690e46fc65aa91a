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
"""Reference material set (LG M50, NMC811 / graphite)."""

import numpy as onp

from .materials import MaterialSpec, Role, InMemoryCatalog


NMC811 = 'nmc811_lgm50'
GRAPHITE = 'graphite_lgm50'
LIPF6 = 'lipf6_ec_emc'
LIPF6_TABULATED = 'lipf6_ec_emc_tabulated'
SEPARATOR = 'pe_separator'

# number of OCP samples taken from the fits
NUM_OCP_SAMPLES = 101

# (mol/m^3) concentration range of the electrolyte transport tables
CE_TABLE_RANGE = (50., 3000.)
NUM_TRANSPORT_SAMPLES = 60


def calcUoc_pos(sto):

    tanh = onp.tanh

    Uoc_ca = (-0.8090 * sto + 4.4875
              - 0.0428 * tanh(18.5138 * (sto - 0.5542))
              - 17.7326 * tanh(15.7890 * (sto - 0.3117))
              + 17.5842 * tanh(15.9308 * (sto - 0.3120)))

    return Uoc_ca


def calcUoc_neg(sto):

    exp = onp.exp
    tanh = onp.tanh

    Uoc_an = (1.9793 * exp(-39.3631 * sto) + 0.2482
              - 0.0909 * tanh(29.8538 * (sto - 0.1234))
              - 0.04478 * tanh(14.9159 * (sto - 0.2769))
              - 0.0205 * tanh(30.4444 * (sto - 0.6103)))

    return Uoc_an


def sample_ocp(fn, num=NUM_OCP_SAMPLES):
    sto = onp.linspace(0., 1., num)
    return tuple(zip(sto.tolist(), fn(sto).tolist()))


def calcKappa(c_e):
    '''
    LiPF6 in EC:EMC conductivity (S/m), c_e in mol/m^3
    '''
    c = c_e / 1000.
    return 0.1297 * c**3 - 2.51 * c**1.5 + 3.329 * c


def calcDf(c_e):
    c = c_e / 1000.
    return 8.794e-11 * c**2 - 3.972e-10 * c + 4.862e-10


def sample_transport(fn, num=NUM_TRANSPORT_SAMPLES):
    c_e = onp.linspace(*CE_TABLE_RANGE, num)
    return tuple(zip(c_e.tolist(), fn(c_e).tolist()))


def exchange_current(k, c_e, c_max):
    '''
    i0 = k * c_e^0.5 * c_s^0.5 * (c_max - c_s)^0.5 evaluated at c_s = c_max/2
    '''
    return k * onp.sqrt(c_e) * (0.5 * c_max)


def reference_materials():

    c_e0 = 1000.

    cathode = MaterialSpec(name=NMC811,
                           role=Role.CATHODE,
                           diffusivity=4e-15,
                           conductivity=0.18,
                           particle_radius=5.22e-6,
                           c_max=63104.,
                           exchange_current=exchange_current(3.42e-6, c_e0, 63104.),
                           activation_energy=17800.,
                           ocp=sample_ocp(calcUoc_pos),
                           stoichiometry=(0.9084, 0.2661))

    anode = MaterialSpec(name=GRAPHITE,
                         role=Role.ANODE,
                         diffusivity=3.3e-14,
                         conductivity=215.,
                         particle_radius=5.86e-6,
                         c_max=33133.,
                         exchange_current=exchange_current(6.48e-7, c_e0, 33133.),
                         activation_energy=35000.,
                         ocp=sample_ocp(calcUoc_neg),
                         stoichiometry=(0.0279, 0.9014))

    electrolyte = MaterialSpec(name=LIPF6,
                               role=Role.ELECTROLYTE,
                               diffusivity=1.769e-10,
                               conductivity=0.9487,
                               transference_number=0.2594,
                               initial_concentration=c_e0,
                               activation_energy=17000.)

    # same electrolyte with the concentration dependence of kappa and D kept
    tabulated = MaterialSpec(name=LIPF6_TABULATED,
                             role=Role.ELECTROLYTE,
                             conductivity_table=sample_transport(calcKappa),
                             diffusivity_table=sample_transport(calcDf),
                             transference_number=0.2594,
                             initial_concentration=c_e0,
                             activation_energy=17000.)

    separator = MaterialSpec(name=SEPARATOR, role=Role.SEPARATOR)

    return [cathode, anode, electrolyte, tabulated, separator]


def reference_catalog():
    return InMemoryCatalog(reference_materials())
