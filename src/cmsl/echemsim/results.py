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
"""Simulation results."""

from dataclasses import dataclass, field
from types import MappingProxyType
from enum import Enum
from typing import Optional, Tuple

import numpy as onp

from .errors import SolverError, ConvergenceError, SolverTimeoutError


class Status(str, Enum):
    RUNNING = 'running'
    SUCCESS = 'success'
    CUTOFF = 'cutoff'
    FAILED = 'failed'


class TerminationReason(str, Enum):
    COMPLETED = 'completed'
    CURRENT_TAPER = 'current_taper'
    VOLTAGE_CUTOFF = 'voltage_cutoff'
    TEMPERATURE_CUTOFF = 'temperature_cutoff'
    CONVERGENCE = 'convergence'
    TIMEOUT = 'timeout'
    CANCELLED = 'cancelled'


STATUS_OF_REASON = {
    TerminationReason.COMPLETED: Status.SUCCESS,
    TerminationReason.CURRENT_TAPER: Status.SUCCESS,
    TerminationReason.VOLTAGE_CUTOFF: Status.CUTOFF,
    TerminationReason.TEMPERATURE_CUTOFF: Status.CUTOFF,
    TerminationReason.CONVERGENCE: Status.FAILED,
    TerminationReason.TIMEOUT: Status.FAILED,
    TerminationReason.CANCELLED: Status.FAILED,
}


@dataclass(frozen=True)
class Sample:

    time:float                  # (s)
    voltage:float               # (V)
    current:float               # (A), positive = discharge
    capacity:float              # (Ah) discharged since t=0
    state:Optional[Tuple[float, ...]] = None


@dataclass(frozen=True)
class ProgressEvent:

    time:float                  # simulated time (s)
    iterations:int
    residual_norm:float


@dataclass
class SimulationResult:
    '''
    Time series of one run. Appended to while RUNNING, immutable once finalized.
    '''

    samples:list = field(default_factory=list)          # tuple once finalized
    status:Status = Status.RUNNING
    reason:Optional[TerminationReason] = None
    message:str = ''
    metadata:dict = field(default_factory=dict)          # read-only mapping once finalized
    snapshots:dict = field(default_factory=dict)        # time -> fields, read-only once finalized
    final_state:Optional[list] = None

    @property
    def finalized(self):
        return self.status != Status.RUNNING

    @property
    def times(self):
        return onp.array([s.time for s in self.samples])

    @property
    def voltages(self):
        return onp.array([s.voltage for s in self.samples])

    @property
    def currents(self):
        return onp.array([s.current for s in self.samples])

    @property
    def capacities(self):
        return onp.array([s.capacity for s in self.samples])

    def raise_for_status(self):
        '''
        Raise ConvergenceError, SolverTimeoutError or SolverError for a failed run
        '''
        if self.reason == TerminationReason.CONVERGENCE:
            raise ConvergenceError(self.message, reason=self.reason, result=self)
        if self.reason == TerminationReason.TIMEOUT:
            raise SolverTimeoutError(self.message, reason=self.reason, result=self)
        if self.reason == TerminationReason.CANCELLED:
            raise SolverError(self.message, reason=self.reason, result=self)
        return self

    def to_dict(self):
        return {'samples': [[s.time, s.voltage, s.current, s.capacity,
                             None if s.state is None else list(s.state)] for s in self.samples],
                'status': self.status.value,
                'reason': None if self.reason is None else self.reason.value,
                'message': self.message,
                'metadata': dict(self.metadata),
                'snapshots': [[t, fields] for t, fields in self.snapshots.items()],
                'final_state': self.final_state}

    @classmethod
    def from_dict(cls, data):
        samples = tuple(Sample(t, v, i, q, None if y is None else tuple(y)) for t, v, i, q, y in data['samples'])
        return cls(samples=samples,
                   status=Status(data['status']),
                   reason=None if data['reason'] is None else TerminationReason(data['reason']),
                   message=data['message'],
                   metadata=MappingProxyType(dict(data['metadata'])),
                   snapshots=MappingProxyType({float(t): fields for t, fields in data['snapshots']}),
                   final_state=data['final_state'])


class ResultRecorder:
    '''
    Builds a SimulationResult step by step and finalizes it exactly once.

    `split` maps a state vector to named fields for snapshots.
    '''

    def __init__(self, split=None, metadata=None, snapshot_times=(), record_states=False):

        self.result = SimulationResult(metadata=dict(metadata or {}))
        self.split = split
        self.snapshot_times = list(snapshot_times)
        self.record_states = record_states
        self.capacity = 0.

    def check_open(self):
        if self.result.finalized:
            raise RuntimeError("result is finalized")

    def start(self, t, voltage, y):
        '''
        Initial sample (rest voltage, zero current)
        '''
        self.check_open()
        self.append(t, voltage, 0., y)

    def commit(self, t, dt, voltage, current, y):
        '''
        Append the sample of an accepted step; current was held over [t-dt, t]
        '''
        self.check_open()
        self.capacity += current * dt / 3600.
        self.append(t, voltage, current, y)

    def append(self, t, voltage, current, y):

        state = tuple(onp.asarray(y).tolist()) if self.record_states else None
        self.result.samples.append(Sample(float(t), float(voltage), float(current), self.capacity, state))
        self.result.final_state = onp.asarray(y).tolist()

        while self.snapshot_times and self.snapshot_times[0] <= t + 1e-9:
            t_snap = self.snapshot_times.pop(0)
            if self.split is not None:
                fields = {k: onp.asarray(v).tolist() for k, v in self.split(y).items()}
                self.result.snapshots[float(t_snap)] = fields

    def finalize(self, reason, message=''):

        self.check_open()

        result = self.result
        result.reason = reason
        result.status = STATUS_OF_REASON[reason]
        result.message = message
        result.samples = tuple(result.samples)
        result.metadata = MappingProxyType(dict(result.metadata))
        result.snapshots = MappingProxyType(dict(result.snapshots))

        return result
