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
"""Mesh and packed state layout."""

from dataclasses import dataclass

import numpy as onp


# region tags along x
CATHODE, SEPARATOR, ANODE = 0, 1, 2
REGION_NAMES = ('cathode', 'separator', 'anode')


@dataclass
class StateLayout:
    '''
    Finite-volume mesh along the stack plus the packed unknown layout.

    Each electrode control volume stores [c_s shell 0..n_r-1, c_e, phi_s, phi_e],
    each separator control volume stores [c_e, phi_e].
    '''

    name:str

    def split(self, y):
        '''
        Packed vector -> fields (c_s[particle, shell], c_e[x], phi_s[particle], phi_e[x])
        '''
        y = onp.asarray(y)
        return {'c_s': y[self.idx_cs],
                'c_e': y[self.idx_ce],
                'phi_s': y[self.idx_phis],
                'phi_e': y[self.idx_phie]}

    def pack(self, c_s, c_e, phi_s, phi_e):
        y = onp.zeros(self.size)
        y[self.idx_cs] = c_s
        y[self.idx_ce] = c_e
        y[self.idx_phis] = phi_s
        y[self.idx_phie] = phi_e
        return y

    def region_particles(self, region):
        return onp.flatnonzero(self.particle_region == region)

    def region_cvs(self, region):
        return onp.flatnonzero(self.region_of_cv == region)


def allocate_nodes(thicknesses, n_x):
    '''
    Distribute n_x control volumes over (cathode, separator, anode) in
    proportion to thickness, at least one per region.
    '''

    thick = onp.asarray(thicknesses, dtype=onp.float64)

    if n_x < len(thick):
        raise ValueError(f"n_x={n_x} is smaller than the number of regions")

    raw = n_x * thick / thick.sum()
    counts = onp.maximum(1, onp.floor(raw).astype(onp.int64))

    while counts.sum() < n_x:
        counts[onp.argmax(raw - counts)] += 1

    while counts.sum() > n_x:
        surplus = onp.where(counts > 1, counts - raw, -onp.inf)
        counts[onp.argmax(surplus)] -= 1

    return counts


def radial_mesh(n_r):
    '''
    Normalised radial mesh rho in [0, 1] with n_r equal-width shells

    Returns face positions, shell volumes (rho_out^3 - rho_in^3)/3 and
    the face area weights rho_f^2 of the n_r-1 inner faces.
    '''

    faces = onp.linspace(0., 1., n_r + 1)
    vol = (faces[1:]**3 - faces[:-1]**3) / 3.
    g_face = faces[1:-1]**2

    return faces, vol, g_face


def generate_mesh(cell, config, name='p2d_layout'):

    n_x, n_r = config.n_x, config.n_r

    counts = allocate_nodes([r.thickness for r in cell.regions], n_x)

    layout = StateLayout(name)

    layout.n_x = n_x
    layout.n_r = n_r
    layout.counts = counts

    # ---- x mesh (x=0 at the cathode current collector) ----

    region_of_cv = onp.repeat(onp.arange(3), counts)
    dx = onp.concatenate([onp.full(n, r.thickness / n) for n, r in zip(counts, cell.regions)])
    x_faces = onp.concatenate([[0.], onp.cumsum(dx)])

    layout.region_of_cv = region_of_cv
    layout.dx = dx
    layout.x_faces = x_faces
    layout.x_centers = 0.5 * (x_faces[1:] + x_faces[:-1])

    # ---- radial mesh ----

    layout.r_faces, layout.shell_volume, layout.r_face_weight = radial_mesh(n_r)

    # ---- packed layout ----

    has_particle = region_of_cv != SEPARATOR
    node_size = onp.where(has_particle, n_r + 3, 2)
    node_start = onp.concatenate([[0], onp.cumsum(node_size)[:-1]])

    particle_cv = onp.flatnonzero(has_particle)

    layout.has_particle = has_particle
    layout.particle_cv = particle_cv
    layout.particle_region = region_of_cv[particle_cv]
    layout.num_particles = len(particle_cv)
    layout.node_start = node_start
    layout.size = int(node_size.sum())

    # (num_particles, n_r)
    layout.idx_cs = node_start[particle_cv][:, None] + onp.arange(n_r)[None, :]
    layout.idx_ce = node_start + onp.where(has_particle, n_r, 0)
    layout.idx_phis = node_start[particle_cv] + n_r + 1
    layout.idx_phie = node_start + onp.where(has_particle, n_r + 2, 1)

    return layout


def estimate_unknowns(thicknesses, n_x, n_r):
    counts = allocate_nodes(thicknesses, n_x)
    return int((counts[CATHODE] + counts[ANODE]) * (n_r + 3) + 2 * counts[SEPARATOR])
