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
"""Sparse Jacobian of the P2D residual."""

import numpy as onp
import scipy.sparse

from .para import F


# relative perturbation of the kinetics columns
FD_EPS = onp.sqrt(onp.finfo(onp.float64).eps)


class JacobianBuilder:
    '''
    dR/dy in CSC form with a pattern fixed for the lifetime of the layout.

    Entries are collected as (row, col) triplets once; a slot map sends every
    triplet to its position in `data`, so each build only sums new values.
    Solid diffusion and conduction are linear (stored as m + dt*k). The
    electrolyte transport block is analytic and rebuilt from c_e every time,
    since kappa and D may depend on it. The Butler-Volmer block is
    differenced.
    '''

    def __init__(self, kernel):

        self.kernel = kernel
        layout = kernel.layout
        n = layout.size
        self.n = n

        pcv = layout.particle_cv

        # ---- linear entries ----

        lin_rows, lin_cols, lin_const, lin_dt = self.get_linear_entries()

        # ---- electrolyte transport: 12 entries per inner face ----

        pa, pb = layout.idx_phie[:-1], layout.idx_phie[1:]
        ca, cb = layout.idx_ce[:-1], layout.idx_ce[1:]
        el_rows = onp.concatenate([ca, ca, cb, cb,
                                   pa, pa, pb, pb,
                                   pa, pa, pb, pb])
        el_cols = onp.concatenate([ca, cb, cb, ca,
                                   pa, pb, pb, pa,
                                   ca, cb, ca, cb])

        # ---- kinetics block: 4 rows x 5 columns per particle ----

        bv_row_idx = onp.stack([layout.idx_cs[:, -1],
                                layout.idx_ce[pcv],
                                layout.idx_phie[pcv],
                                layout.idx_phis], axis=1)          # (n_p, 4)
        bv_col_idx = onp.stack([layout.idx_cs[:, -1],
                                layout.idx_cs[:, -2],
                                layout.idx_phis,
                                layout.idx_phie[pcv],
                                layout.idx_ce[pcv]], axis=1)       # (n_p, 5)

        bv_rows = onp.repeat(bv_row_idx[:, :, None], 5, axis=2).reshape(-1)
        bv_cols = onp.repeat(bv_col_idx[:, None, :], 4, axis=1).reshape(-1)

        self.lin_const = lin_const
        self.lin_dt = lin_dt

        rows = onp.concatenate([lin_rows, el_rows, bv_rows]).astype(onp.int64)
        cols = onp.concatenate([lin_cols, el_cols, bv_cols]).astype(onp.int64)

        # ---- pattern & slot map (CSC: sorted by column, then row) ----

        keys = cols * n + rows
        uniq = onp.unique(keys)

        self.indices = (uniq % n).astype(onp.int32)
        self.indptr = onp.searchsorted(uniq // n, onp.arange(n + 1), side='left').astype(onp.int32)
        self.slots = onp.searchsorted(uniq, keys)
        self.nnz = len(uniq)

        # column scales for the difference steps
        self.bv_scales = onp.stack([kernel.cs_max, kernel.cs_max,
                                    onp.ones(layout.num_particles),
                                    onp.ones(layout.num_particles),
                                    onp.full(layout.num_particles, kernel.ce0)], axis=0)


    def get_linear_entries(self):
        '''
        Triplets of the entries that do not depend on the state.

        Returns rows, cols, the constant part and the part proportional to dt.
        '''

        k = self.kernel
        layout = k.layout

        rows, cols, const, per_dt = [], [], [], []

        def add(r, c, m, kdt):
            shape = onp.shape(r)
            rows.append(onp.asarray(r).reshape(-1))
            cols.append(onp.asarray(c).reshape(-1))
            const.append(onp.broadcast_to(onp.asarray(m, dtype=onp.float64), shape).reshape(-1))
            per_dt.append(onp.broadcast_to(onp.asarray(kdt, dtype=onp.float64), shape).reshape(-1))

        def add_pair(ia, ib, w, coef_a, coef_b):
            '''
            Flux w*(u_b - u_a) leaving b into a, rows scaled by coef
            '''
            add(ia, ia, 0., coef_a * w)
            add(ia, ib, 0., -coef_a * w)
            add(ib, ib, 0., coef_b * w)
            add(ib, ia, 0., -coef_b * w)

        # ---- solid diffusion ----

        idx_cs = layout.idx_cs
        coef = 1. / (k.vol[None, :] * k.cs_max[:, None])       # (n_p, n_r)
        w = k.ds_hat[:, None] * k.g_face[None, :]               # (n_p, n_r-1)

        add(idx_cs, idx_cs, onp.ones_like(coef) / k.cs_max[:, None], 0.)
        add_pair(idx_cs[:, :-1], idx_cs[:, 1:], w, coef[:, :-1], coef[:, 1:])

        # ---- electrolyte mass ----

        idx_ce = layout.idx_ce
        add(idx_ce, idx_ce, onp.full(layout.n_x, 1. / k.ce0), 0.)

        # ---- electrode potential ----

        sa = layout.idx_phis[k.solid_a]
        sb = layout.idx_phis[k.solid_b]
        g = k.tS / k.i_s
        add(sa, sa, g, 0.)
        add(sa, sb, -g, 0.)
        add(sb, sb, g, 0.)
        add(sb, sa, -g, 0.)

        ground = layout.idx_phis[k.p_ground]
        add(ground, ground, k.ground_coeff / k.i_s, 0.)

        return (onp.concatenate(rows), onp.concatenate(cols),
                onp.concatenate(const), onp.concatenate(per_dt))


    def get_transport_values(self, y, dt):
        '''
        Electrolyte mass and current rows of every inner face, in the order
        of the pattern built in __init__
        '''

        k = self.kernel
        layout = k.layout

        ce = y[layout.idx_ce]
        phie = y[layout.idx_phie]
        ce_a, ce_b = ce[:-1], ce[1:]

        tD, tK = k.transmissibilities(ce)
        dtD_a, dtD_b, dtK_a, dtK_b = k.transmissibility_slopes(ce)

        # mass rows, scaled by dt / (eps dx c_e0)
        coef = dt / (k.eps * k.dx * k.ce0)
        co_a, co_b = coef[:-1], coef[1:]
        dce = ce_b - ce_a

        mass = [co_a * (tD - dce * dtD_a),
                -co_a * (tD + dce * dtD_b),
                co_b * (tD + dce * dtD_b),
                -co_b * (tD - dce * dtD_a)]

        # current rows: cur_e = tK * drive, rows a and b carry +cur_e and -cur_e
        drive = -(phie[1:] - phie[:-1]) + k.kD * (onp.log(ce_b) - onp.log(ce_a))
        g = tK / k.i_s
        dcur_a = (-tK * k.kD / ce_a + dtK_a * drive) / k.i_s
        dcur_b = (tK * k.kD / ce_b + dtK_b * drive) / k.i_s

        current = [g, -g, g, -g,
                   dcur_a, dcur_b, -dcur_a, -dcur_b]

        return onp.concatenate(mass + current)


    def get_kinetics_values(self, y, dt):
        '''
        4x5 kinetics block per particle from one-sided differences of j
        '''

        k = self.kernel
        cols = list(k.local_unknowns(y))
        j0 = k.kinetics(*cols)

        dj = []
        for c in range(5):
            base = cols[c]
            h = FD_EPS * onp.maximum(onp.abs(base), self.bv_scales[c])
            bumped = base + h
            h = bumped - base
            trial = list(cols)
            trial[c] = bumped
            dj.append((k.kinetics(*trial) - j0) / h)
        dj = onp.stack(dj, axis=1)                                          # (n_p, 5)

        coef_rows = onp.stack([dt / (k.vol[-1] * k.cs_max * F * k.r_p),
                               -dt * (1 - k.tp) * k.svr / (F * k.eps_p * k.ce0),
                               -k.svr * k.dx_p / k.i_s,
                               k.svr * k.dx_p / k.i_s], axis=1)             # (n_p, 4)

        return (coef_rows[:, :, None] * dj[:, None, :]).reshape(-1)


    def build(self, y, dt):

        weights = onp.concatenate([self.lin_const + dt * self.lin_dt,
                                   self.get_transport_values(y, dt),
                                   self.get_kinetics_values(y, dt)])

        data = onp.bincount(self.slots, weights=weights, minlength=self.nnz)

        return scipy.sparse.csc_matrix((data, self.indices, self.indptr), shape=(self.n, self.n))
