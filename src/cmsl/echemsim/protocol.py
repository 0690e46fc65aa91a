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
"""Operating protocols and the protocol driver shared by all models."""

import time

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

import numpy as onp

from .para import T_REF
from .results import TerminationReason


# (V) accepted residual of the voltage hold
HOLD_TOL = 1e-4
HOLD_MAX_ITER = 20

# time comparisons (s)
TIME_EPS = 1e-9


# -------------------- protocol modes --------------------

@dataclass(frozen=True)
class ConstantCurrent:

    rate:float                  # C-rate, positive = discharge

    kind = 'cc'


@dataclass(frozen=True)
class ConstantCurrentConstantVoltage:
    '''
    Charge at |rate| until v_hold, then hold v_hold until |I| < taper_cutoff * I_1C
    '''

    rate:float
    v_hold:float
    taper_cutoff:float = 0.05   # C-rate

    kind = 'cccv'


@dataclass(frozen=True)
class PulseStep:

    current:float               # (A), positive = discharge
    duration:float              # (s)


@dataclass(frozen=True)
class Pulse:

    steps:Tuple[PulseStep, ...]

    kind = 'pulse'

    def __post_init__(self):
        steps = tuple(s if isinstance(s, PulseStep) else PulseStep(**s) for s in self.steps)
        object.__setattr__(self, 'steps', steps)


MODES = {cls.kind: cls for cls in (ConstantCurrent, ConstantCurrentConstantVoltage, Pulse)}


@dataclass(frozen=True)
class OperatingProtocol:
    '''
    temperature, min_temperature and max_temperature in K. initial_soc
    defaults to a full cell for discharges and an empty one for charges.
    duration (s) caps the simulated time.
    '''

    mode:Union[ConstantCurrent, ConstantCurrentConstantVoltage, Pulse]
    v_min:float = 2.5
    v_max:float = 4.2
    temperature:float = T_REF
    min_temperature:Optional[float] = None
    max_temperature:Optional[float] = None
    initial_soc:Optional[float] = None
    duration:Optional[float] = None

    def __post_init__(self):

        mode = self.mode

        if not self.v_min < self.v_max:
            raise ValueError(f"v_min ({self.v_min}) must be below v_max ({self.v_max})")
        if not self.temperature > 0:
            raise ValueError("temperature must be positive (K)")
        if self.initial_soc is not None and not 0 <= self.initial_soc <= 1:
            raise ValueError(f"initial_soc must be in [0, 1], got {self.initial_soc}")
        if self.duration is not None and not self.duration > 0:
            raise ValueError("duration must be positive")

        if isinstance(mode, ConstantCurrent):
            if mode.rate == 0 and self.duration is None:
                raise ValueError("a rest (rate 0) needs a duration")

        elif isinstance(mode, ConstantCurrentConstantVoltage):
            if mode.rate == 0:
                raise ValueError("CCCV rate must be non-zero")
            if not self.v_min < mode.v_hold <= self.v_max:
                raise ValueError(f"v_hold ({mode.v_hold}) must lie in (v_min, v_max]")
            if not mode.taper_cutoff > 0:
                raise ValueError("taper_cutoff must be positive")

        elif isinstance(mode, Pulse):
            if not mode.steps:
                raise ValueError("pulse sequence is empty")
            if any(not s.duration > 0 for s in mode.steps):
                raise ValueError("pulse durations must be positive")

        else:
            raise ValueError(f"unknown protocol mode {mode!r}")

    @property
    def soc0(self):
        if self.initial_soc is not None:
            return self.initial_soc
        mode = self.mode
        if isinstance(mode, ConstantCurrentConstantVoltage):
            return 0.
        if isinstance(mode, ConstantCurrent) and mode.rate < 0:
            return 0.
        return 1.

    def to_dict(self):
        data = {k: getattr(self, k) for k in ('v_min', 'v_max', 'temperature', 'min_temperature',
                                               'max_temperature', 'initial_soc', 'duration')}
        mode = self.mode
        if isinstance(mode, Pulse):
            mode_data = {'steps': [{'current': s.current, 'duration': s.duration} for s in mode.steps]}
        else:
            mode_data = dict(mode.__dict__)
        data['mode'] = dict(mode_data, kind=mode.kind)
        return data

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        mode_data = dict(data['mode'])
        mode_cls = MODES[mode_data.pop('kind')]
        data['mode'] = mode_cls(**mode_data)
        return cls(**data)


# -------------------- driver --------------------

@dataclass(frozen=True)
class Control:

    mode:str                    # 'current' or 'voltage'
    value:float                 # (A) or (V)


class ProtocolDriver:
    '''
    Turns an OperatingProtocol into per-step control, segment boundaries and
    cutoff checks. Holds the CC/CV phase of a CCCV run.
    '''

    def __init__(self, protocol, current_1c):

        self.protocol = protocol
        self.current_1c = current_1c
        self.phase = 'cc'

        mode = protocol.mode
        self.boundaries = onp.array([])

        if isinstance(mode, ConstantCurrent):
            end = 1.5 * 3600. / abs(mode.rate) if mode.rate != 0 else onp.inf
        elif isinstance(mode, ConstantCurrentConstantVoltage):
            end = 3600. / abs(mode.rate) + 3 * 3600.
        else:
            self.boundaries = onp.cumsum([s.duration for s in mode.steps])
            self.currents = onp.array([s.current for s in mode.steps])
            end = self.boundaries[-1]

        if protocol.duration is not None:
            end = min(end, protocol.duration)

        self.end_time = float(end)

    # ---- control ----

    def control(self, t):

        mode = self.protocol.mode

        if isinstance(mode, ConstantCurrent):
            return Control('current', mode.rate * self.current_1c)

        if isinstance(mode, ConstantCurrentConstantVoltage):
            if self.phase == 'cv':
                return Control('voltage', mode.v_hold)
            return Control('current', -abs(mode.rate) * self.current_1c)

        k = min(int(onp.searchsorted(self.boundaries, t + TIME_EPS, side='right')), len(self.currents) - 1)
        return Control('current', float(self.currents[k]))

    def next_time(self, t, dt, stops=()):
        '''
        End time of a step of size dt from t, pulled back onto the next pulse
        boundary, requested stop time (snapshots) or the protocol end so that
        those times are hit exactly.
        '''

        t_next = t + dt

        for t_stop in (*self.boundaries, *stops, self.end_time):
            if t + TIME_EPS < t_stop < t_next + TIME_EPS:
                t_next = float(t_stop)

        return t_next

    def finished(self, t):
        return t >= self.end_time - TIME_EPS

    # ---- cutoffs ----

    def voltage_limit(self, current):
        '''
        (limit, direction): the run stops once direction*(V - limit) >= 0
        '''

        mode = self.protocol.mode

        if isinstance(mode, ConstantCurrentConstantVoltage) and self.phase == 'cv':
            return None, 0.
        if current > 0:
            return self.protocol.v_min, -1.
        if current < 0:
            if isinstance(mode, ConstantCurrentConstantVoltage) and self.phase == 'cc':
                return mode.v_hold, 1.
            return self.protocol.v_max, 1.
        return None, 0.

    def overshoot(self, voltage, current):
        limit, direction = self.voltage_limit(current)
        if limit is None:
            return -onp.inf
        return direction * (voltage - limit)

    def cutoff_fraction(self, v_old, v_new, current):
        '''
        Secant estimate of the fraction of the step that reaches the limit
        '''
        limit, _ = self.voltage_limit(current)
        if v_new == v_old:
            return 0.5
        return float(onp.clip((v_old - limit) / (v_old - v_new), 0.05, 0.9))

    def on_limit(self):
        '''
        Called when a step lands on the voltage limit; returns the
        termination reason, or None when the run continues in CV.
        '''

        mode = self.protocol.mode

        if isinstance(mode, ConstantCurrentConstantVoltage) and self.phase == 'cc':
            self.phase = 'cv'
            return None

        return TerminationReason.VOLTAGE_CUTOFF

    def taper_reached(self, current):
        mode = self.protocol.mode
        return (isinstance(mode, ConstantCurrentConstantVoltage) and self.phase == 'cv'
                and abs(current) < mode.taper_cutoff * self.current_1c)

    def temperature_ok(self):
        p = self.protocol
        if p.min_temperature is not None and p.temperature < p.min_temperature:
            return False
        if p.max_temperature is not None and p.temperature > p.max_temperature:
            return False
        return True

    @property
    def max_rate(self):
        '''
        Largest |I| of the protocol in C
        '''
        mode = self.protocol.mode
        if isinstance(mode, Pulse):
            return float(onp.max(onp.abs(self.currents))) / self.current_1c
        return abs(mode.rate)


def solve_hold_current(evaluate, target, i_guess, i_scale, tol=HOLD_TOL, max_iterations=HOLD_MAX_ITER):
    '''
    Secant iteration on the current that makes the step end at `target` volts.

    evaluate(I) attempts the step at current I and returns (voltage, payload),
    or None when the step fails. Returns (I, payload) or None.
    '''

    i0 = i_guess
    out0 = evaluate(i0)
    if out0 is None:
        return None
    f0 = out0[0] - target
    if abs(f0) < tol:
        return i0, out0[1]

    i1 = 0.95 * i0 if i0 != 0 else -0.01 * i_scale

    for _ in range(max_iterations):

        out1 = evaluate(i1)
        if out1 is None:
            return None
        f1 = out1[0] - target
        if abs(f1) < tol:
            return i1, out1[1]

        if f1 == f0:
            return None

        i0, f0, i1 = i1, f1, i1 - f1 * (i1 - i0) / (f1 - f0)

    return None


# -------------------- budgets --------------------

@dataclass
class RunBudget:
    '''
    Wall-clock, simulated-time and step budgets plus the cooperative cancel flag
    '''

    max_wall_time:Optional[float] = None
    max_simulated_time:Optional[float] = None
    max_steps:Optional[int] = None
    cancel:Optional[object] = None          # threading.Event-like, polled between steps
    started:float = field(default_factory=time.monotonic)

    @classmethod
    def from_config(cls, config, cancel=None):
        return cls(config.max_wall_time, config.max_simulated_time, config.max_steps, cancel)

    def start(self):
        '''
        Restart the wall clock when stepping begins
        '''
        self.started = time.monotonic()

    def check(self, t, steps):

        if self.cancel is not None and self.cancel.is_set():
            return TerminationReason.CANCELLED, "cancelled by caller"

        if self.max_wall_time is not None and time.monotonic() - self.started > self.max_wall_time:
            return TerminationReason.TIMEOUT, f"wall-time budget of {self.max_wall_time} s exceeded"

        if self.max_simulated_time is not None and t >= self.max_simulated_time - TIME_EPS:
            return TerminationReason.TIMEOUT, f"simulated-time budget of {self.max_simulated_time} s reached"

        if self.max_steps is not None and steps >= self.max_steps:
            return TerminationReason.TIMEOUT, f"step budget of {self.max_steps} steps reached"

        return None
