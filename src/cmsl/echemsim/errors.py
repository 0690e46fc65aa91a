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
"""Exceptions."""


class EchemSimError(Exception):
    pass


class InvalidMaterialError(EchemSimError, ValueError):
    '''
    Catalog data that cannot be turned into solver parameters
    '''
    pass


class InvalidDesignError(EchemSimError, ValueError):
    '''
    Non-physical cell geometry
    '''
    pass


class AssemblyError(EchemSimError):
    '''
    Non-physical trial state met during residual assembly.

    The Newton corrector treats it as a rejection of the current step.
    '''
    pass


class SolverError(EchemSimError):
    '''
    A run that ended without reaching its protocol end or a cutoff.

    The partial result (trajectory up to the last committed step) is
    attached as `result`.
    '''

    def __init__(self, message, reason=None, result=None):
        super().__init__(message)
        self.reason = reason
        self.result = result


class ConvergenceError(SolverError):
    pass


class SolverTimeoutError(SolverError):
    pass


class QueueFullError(EchemSimError):
    pass
