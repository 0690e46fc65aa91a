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
"""Pre-defined models."""

from enum import Enum

from .integrator import P2DIntegrator
from .spm import SPMIntegrator


class ModelKind(str, Enum):
    '''
    Solution strategy, chosen once per run
    '''
    P2D = 'p2d'
    SPM = 'spm'


INTEGRATORS = {ModelKind.P2D: P2DIntegrator,
               ModelKind.SPM: SPMIntegrator}


def build_integrator(kind, cell, protocol, config, progress=None, cancel=None, metadata=None):
    '''
    Integrator of model `kind` for an already resolved cell
    '''
    return INTEGRATORS[ModelKind(kind)](cell, protocol, config, progress=progress, cancel=cancel,
                                        metadata=metadata)
