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
"""Implementation of the full-order P2D (Newman) model."""

import jax
import jax.numpy as np
import numpy as onp

from .errors import AssemblyError
from .kinetics import calcJ0, butler_volmer
from .mesh import CATHODE, ANODE
from .para import F, R

jax.config.update("jax_enable_x64", True)


# (V) largest |phi| of a physical state, potentials are referenced to the anode collector
PHI_MAX = 50.


def transport_fns(curve, value):
    '''
    (X(c_e), dX/dc_e) of an electrolyte property, constant when no curve is given
    '''
    if curve is not None:
        return curve, curve.derivative
    return (lambda ce: value * np.ones_like(ce)), (lambda ce: np.zeros_like(ce))


def harmonic_faces(dx, k):
    '''
    Harmonic-mean transmissibilities of the inner faces of a 1D mesh
    '''
    return 1. / (dx[:-1] / (2 * k[:-1]) + dx[1:] / (2 * k[1:]))


# -------------------- Cathode + Separator + Anode --------------------

class P2DKernel:
    '''
    Implicit-Euler residual of the P2D model on a finite-volume mesh.

    Unknowns are kept in SI units (mol/m^3, V). Residual rows are scaled:
    concentration balances by c_max / c_e0, charge balances by the 1C
    current density, so every family is O(1).

    Sign convention: x=0 at the cathode collector, i_app > 0 is discharge,
    j > 0 is oxidation. phi_s = 0 at the anode collector.
    '''

    def __init__(self, cell, layout):

        self.cell = cell
        self.layout = layout

        T = cell.temperature
        elyte = cell.electrolyte
        regions = cell.regions

        rc = layout.region_of_cv
        dx = layout.dx
        n_r = layout.n_r

        # ---- electrolyte (per control volume) ----

        eps = onp.array([r.porosity for r in regions])[rc]
        brug = onp.array([r.bruggeman for r in regions])[rc]
        ratio_epsl = eps**brug

        self.eps = eps
        self.dx = dx
        self.ratio_epsl = ratio_epsl

        # kappa(c_e) and D(c_e) when the electrolyte tabulates them, bulk constants otherwise
        self.calcKappa, self.calcKappa_slope = transport_fns(elyte.conductivity_curve, elyte.conductivity)
        self.calcDf, self.calcDf_slope = transport_fns(elyte.diffusivity_curve, elyte.diffusivity)
        self.variable_transport = elyte.has_variable_transport

        self.ce0 = elyte.initial_concentration

        # transmissibilities at the initial concentration
        self.tD, self.tK = self.transmissibilities(onp.full(layout.n_x, self.ce0))

        self.tp = elyte.transference_number
        self.kD = 2 * R * T * (1 - self.tp) / F
        self.T = T

        # ---- particles ----

        pcv = layout.particle_cv
        preg = layout.particle_region

        def per_particle(fn):
            return onp.array([fn(regions[k]) for k in preg], dtype=onp.float64)

        self.r_p = per_particle(lambda r: r.particle_radius)
        self.cs_max = per_particle(lambda r: r.material.c_max)
        self.ds = per_particle(lambda r: r.material.diffusivity)
        self.i0_ref = per_particle(lambda r: r.material.exchange_current)
        self.alpha_a = per_particle(lambda r: r.material.alpha_a)
        self.alpha_c = per_particle(lambda r: r.material.alpha_c)
        self.svr = per_particle(lambda r: r.specific_area)
        self.sigma_eff = per_particle(lambda r: r.material.conductivity * r.solid_factor())
        self.epss = per_particle(lambda r: r.solid_fraction)

        self.dx_p = dx[pcv]
        self.eps_p = eps[pcv]
        self.is_cathode = preg == CATHODE

        # radial finite volumes
        self.vol = layout.shell_volume
        self.g_face = layout.r_face_weight
        self.ds_hat = self.ds / (self.r_p**2 / n_r)

        # solid faces join neighbouring control volumes of the same electrode
        same = (preg[1:] == preg[:-1]) & (pcv[1:] == pcv[:-1] + 1)
        self.solid_a = onp.flatnonzero(same)
        self.solid_b = self.solid_a + 1
        sa, sb = self.solid_a, self.solid_b
        self.tS = 1. / (self.dx_p[sa] / (2 * self.sigma_eff[sa]) + self.dx_p[sb] / (2 * self.sigma_eff[sb]))

        # applied current enters the first cathode volume, the last anode volume is grounded
        self.p_collector = 0
        self.p_ground = layout.num_particles - 1
        self.ground_coeff = 2 * self.sigma_eff[-1] / self.dx_p[-1]

        # 1C current density scales the charge balances
        self.i_s = cell.current_density_1c

        # typical magnitude of every unknown
        scales = onp.ones(layout.size)
        scales[layout.idx_cs] = self.cs_max[:, None]
        scales[layout.idx_ce] = self.ce0
        self.scales = scales

        self.ocp_ca = cell.cathode.material.ocp
        self.ocp_an = cell.anode.material.ocp

        self._kinetics = jax.jit(self.get_kinetics_fn())
        self._residual = jax.jit(self.get_residual_fn())


    def get_kinetics_fn(self):

        cs_max = np.asarray(self.cs_max)
        i0_ref = np.asarray(self.i0_ref)
        alpha_a = np.asarray(self.alpha_a)
        alpha_c = np.asarray(self.alpha_c)
        is_cathode = np.asarray(self.is_cathode)
        ce0, T = self.ce0, self.T
        ocp_ca, ocp_an = self.ocp_ca, self.ocp_an

        def kinetics(cs_last, cs_prev, phis, phie, ce):
            '''
            Pore-wall flux j (A/m^2) of every particle from its local unknowns
            '''
            # surface concentration, linear extrapolation of the two outer shells
            css = 1.5 * cs_last - 0.5 * cs_prev
            sto = css / cs_max

            Uoc = np.where(is_cathode, ocp_ca(sto), ocp_an(sto))
            eta = phis - phie - Uoc

            j0 = calcJ0(i0_ref, ce / ce0, sto, alpha_a, alpha_c)

            return butler_volmer(j0, eta, alpha_a, alpha_c, T)

        return kinetics


    def get_transport_fn(self):

        dx = np.asarray(self.dx)
        ratio_epsl = np.asarray(self.ratio_epsl)
        calcKappa, calcDf = self.calcKappa, self.calcDf

        def transport(ce):
            '''
            Face transmissibilities (tD, tK) of the electrolyte at concentration ce
            '''
            df_eff = calcDf(ce) * ratio_epsl
            ka_eff = calcKappa(ce) * ratio_epsl
            return harmonic_faces(dx, df_eff), harmonic_faces(dx, ka_eff)

        return transport


    def get_residual_fn(self):

        layout = self.layout
        n_x = layout.n_x
        n_p = layout.num_particles
        size = layout.size

        idx_cs = np.asarray(layout.idx_cs)
        idx_ce = np.asarray(layout.idx_ce)
        idx_phis = np.asarray(layout.idx_phis)
        idx_phie = np.asarray(layout.idx_phie)
        pcv = np.asarray(layout.particle_cv)

        dx, eps = np.asarray(self.dx), np.asarray(self.eps)
        tS = np.asarray(self.tS)
        sa, sb = np.asarray(self.solid_a), np.asarray(self.solid_b)

        cs_max = np.asarray(self.cs_max)
        r_p = np.asarray(self.r_p)
        svr = np.asarray(self.svr)
        dx_p = np.asarray(self.dx_p)
        vol = np.asarray(self.vol)
        g_face = np.asarray(self.g_face)
        ds_hat = np.asarray(self.ds_hat)

        ce0, tp, kD, i_s = self.ce0, self.tp, self.kD, self.i_s
        p_collector, p_ground, ground_coeff = self.p_collector, self.p_ground, self.ground_coeff

        kinetics = self.get_kinetics_fn()
        transport = self.get_transport_fn()

        def residual(sol, sol_old, i_app, dt):

            # ---- Split the packed vector ----

            cs, cs_old = sol[idx_cs], sol_old[idx_cs]      # (n_p, n_r)
            ce, ce_old = sol[idx_ce], sol_old[idx_ce]      # (n_x,)
            phis = sol[idx_phis]                           # (n_p,)
            phie = sol[idx_phie]                           # (n_x,)

            # ---- interfacial kinetics ----

            j = kinetics(cs[:, -1], cs[:, -2], phis, phie[pcv], ce[pcv])   # (n_p,)
            jv = svr * j                                                   # (A/m^3)
            jv_x = np.zeros(n_x).at[pcv].set(jv)

            # ---- solid diffusion (spherical finite volumes) ----

            flux_r = ds_hat[:, None] * g_face[None, :] * (cs[:, 1:] - cs[:, :-1])
            net_r = np.zeros_like(cs).at[:, :-1].add(flux_r).at[:, 1:].add(-flux_r)
            net_r = net_r.at[:, -1].add(-j / (F * r_p))

            Rcs = (cs - cs_old) / cs_max[:, None] - dt / (vol[None, :] * cs_max[:, None]) * net_r

            # ---- diffusion of Li+ in electrolyte ----

            tD, tK = transport(ce)
            flux_c = -tD * (ce[1:] - ce[:-1])              # (mol/m^2/s) along +x
            net_c = np.zeros(n_x).at[:-1].add(-flux_c).at[1:].add(flux_c)

            Rc = (ce - ce_old) / ce0 - dt / (eps * dx * ce0) * (net_c + (1 - tp) * jv_x * dx / F)

            # ---- conduction of potential in electrolyte ----

            log_ce = np.log(ce)
            cur_e = -tK * (phie[1:] - phie[:-1]) + tK * kD * (log_ce[1:] - log_ce[:-1])
            net_e = np.zeros(n_x).at[:-1].add(cur_e).at[1:].add(-cur_e)

            Rp = (net_e - jv_x * dx) / i_s

            # ---- conduction of potential in electrode ----

            cur_s = -tS * (phis[sb] - phis[sa])
            net_s = np.zeros(n_p).at[sa].add(cur_s).at[sb].add(-cur_s)
            net_s = net_s.at[p_collector].add(i_app)
            net_s = net_s.at[p_ground].add(ground_coeff * phis[p_ground])

            Rs = (net_s + jv * dx_p) / i_s

            res = np.zeros(size)
            res = res.at[idx_cs].set(Rcs)
            res = res.at[idx_ce].set(Rc)
            res = res.at[idx_phis].set(Rs)
            res = res.at[idx_phie].set(Rp)

            return res

        return residual


    # -------------------- host-side helpers --------------------

    def check_state(self, y):

        if not onp.all(onp.isfinite(y)):
            raise AssemblyError("non-finite value in the trial state")

        cs = y[self.layout.idx_cs]
        if cs.min() < 0:
            raise AssemblyError(f"negative solid concentration ({cs.min():.3e} mol/m^3)")

        ce = y[self.layout.idx_ce]
        if ce.min() <= 0:
            raise AssemblyError(f"electrolyte depleted (c_e = {ce.min():.3e} mol/m^3)")

        phi = onp.abs(onp.concatenate([y[self.layout.idx_phis], y[self.layout.idx_phie]]))
        if phi.max() > PHI_MAX:
            raise AssemblyError(f"potential of {phi.max():.3e} V outside the physical range")


    def residual(self, y, y_old, i_app, dt):
        '''
        Scaled residual in packed order; i_app is the current density (A/m^2)
        '''

        self.check_state(y)

        res = onp.asarray(self._residual(y, y_old, float(i_app), float(dt)))

        if not onp.all(onp.isfinite(res)):
            raise AssemblyError("non-finite residual")

        return res


    def transmissibilities(self, ce):
        df_eff = onp.asarray(self.calcDf(ce)) * self.ratio_epsl
        ka_eff = onp.asarray(self.calcKappa(ce)) * self.ratio_epsl
        return harmonic_faces(self.dx, df_eff), harmonic_faces(self.dx, ka_eff)


    def transmissibility_slopes(self, ce):
        '''
        d(tD)/d(c_e) and d(tK)/d(c_e) of every inner face with respect to its
        left (a) and right (b) control volume: (dtD_a, dtD_b, dtK_a, dtK_b)
        '''
        dx = self.dx
        slopes = []

        for fn, slope in ((self.calcDf, self.calcDf_slope), (self.calcKappa, self.calcKappa_slope)):
            k = onp.asarray(fn(ce)) * self.ratio_epsl
            dk = onp.asarray(slope(ce)) * self.ratio_epsl
            t = harmonic_faces(dx, k)
            slopes.append(t**2 * dx[:-1] / (2 * k[:-1]**2) * dk[:-1])
            slopes.append(t**2 * dx[1:] / (2 * k[1:]**2) * dk[1:])

        return tuple(slopes)


    def kinetics(self, cs_last, cs_prev, phis, phie, ce):
        return onp.asarray(self._kinetics(cs_last, cs_prev, phis, phie, ce))


    def local_unknowns(self, y):
        '''
        Columns of the kinetics block: (cs_last, cs_prev, phis, phie, ce) per particle
        '''
        layout = self.layout
        pcv = layout.particle_cv
        return (y[layout.idx_cs[:, -1]], y[layout.idx_cs[:, -2]], y[layout.idx_phis],
                y[layout.idx_phie[pcv]], y[layout.idx_ce[pcv]])


    def reaction_flux(self, y):
        return self.kinetics(*self.local_unknowns(y))


    def clamp(self, y):
        '''
        Clamp c_s to [0, c_max] and c_e to >= 0 in place, return the number of clamped entries
        '''
        layout = self.layout

        cs = y[layout.idx_cs]
        cs_clamped = onp.clip(cs, 0., self.cs_max[:, None])

        ce = y[layout.idx_ce]
        ce_clamped = onp.maximum(ce, 0.)

        count = int(onp.count_nonzero(cs_clamped != cs) + onp.count_nonzero(ce_clamped != ce))

        y[layout.idx_cs] = cs_clamped
        y[layout.idx_ce] = ce_clamped

        return count


    def terminal_voltage(self, y, i_app):
        '''
        phi_s at the cathode collector face minus phi_s at the grounded anode face
        '''
        phis0 = y[self.layout.idx_phis[self.p_collector]]
        return float(phis0 - i_app * self.dx_p[0] / (2 * self.sigma_eff[0]))


    def surface_stoichiometry(self, y):
        cs = y[self.layout.idx_cs]
        return (1.5 * cs[:, -1] - 0.5 * cs[:, -2]) / self.cs_max


    def lithium_content(self, y, region):
        '''
        Lithium (mol per m^2 of plate) in 'cathode', 'anode' or 'electrolyte'
        '''
        layout = self.layout

        if region == 'electrolyte':
            return float(onp.sum(self.eps * self.dx * y[layout.idx_ce]))

        tag = {'cathode': CATHODE, 'anode': ANODE}[region]
        mask = layout.particle_region == tag

        # particle average 3 * sum(vol_k c_k) since sum(vol_k) = 1/3
        cs = y[layout.idx_cs][mask]
        c_avg = 3. * cs @ self.vol

        return float(onp.sum(self.epss[mask] * self.dx_p[mask] * c_avg))
