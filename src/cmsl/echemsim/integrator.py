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
"""Adaptive time integration of the P2D model."""

import time

from dataclasses import dataclass
from typing import Optional

import numpy as onp

from .core import P2DKernel
from .jacobian import JacobianBuilder
from .log import logger
from .mesh import generate_mesh
from .prep import assign_init_sol
from .protocol import ProtocolDriver, RunBudget, solve_hold_current
from .results import ResultRecorder, ProgressEvent, TerminationReason
from .solver import NewtonResult, newton_solve


# -------------------- step outcomes --------------------

@dataclass(frozen=True)
class Accepted:

    y:onp.ndarray
    voltage:float
    current:float               # (A)
    newton:NewtonResult


@dataclass(frozen=True)
class Rejected:

    reason:str
    newton:Optional[NewtonResult] = None


@dataclass(frozen=True)
class Fatal:

    reason:TerminationReason
    message:str


class P2DIntegrator:
    '''
    Drives the Newton corrector through an operating protocol.

    `steps()` yields a ProgressEvent after every accepted step, `run()`
    exhausts it. The final SimulationResult is available as `result`.
    '''

    def __init__(self, cell, protocol, config, progress=None, cancel=None, metadata=None):

        self.cell = cell
        self.protocol = protocol
        self.config = config
        self.progress = progress

        self.layout = generate_mesh(cell, config)
        self.kernel = P2DKernel(cell, self.layout)
        self.jacobian = JacobianBuilder(self.kernel)
        self.driver = ProtocolDriver(protocol, cell.current_1c)
        self.budget = RunBudget.from_config(config, cancel)

        self.recorder = ResultRecorder(split=self.layout.split,
                                       metadata=dict(self.get_metadata(), **(metadata or {})),
                                       snapshot_times=config.snapshot_times,
                                       record_states=config.record_states)
        self.result = self.recorder.result

        self.y = assign_init_sol(cell, self.layout, protocol.soc0)
        self.t = 0.
        self.dt = config.dt_init
        self.voltage = self.kernel.terminal_voltage(self.y, 0.)
        self.current = 0.
        self.num_steps = 0


    def get_metadata(self):

        cell, layout = self.cell, self.layout

        return {'model': 'p2d',
                'fidelity': 'full',
                'n_x': layout.n_x,
                'n_r': layout.n_r,
                'unknowns': layout.size,
                'nodes': layout.counts.tolist(),
                'capacity_ah': cell.capacity,
                'np_ratio': cell.np_ratio,
                'current_1c': cell.current_1c,
                'temperature': cell.temperature}


    # -------------------- one step --------------------

    def attempt_current_step(self, y_old, current, dt):

        cfg = self.config
        i_app = current / self.cell.plate_area

        newton = newton_solve(self.kernel, self.jacobian, y_old, i_app, dt, cfg)

        if not newton.converged:
            return Rejected(newton.reason, newton)

        if newton.iterations > cfg.slow_iterations and dt > cfg.dt_min:
            return Rejected(f"slow convergence ({newton.iterations} iterations)", newton)

        return Accepted(newton.y, self.kernel.terminal_voltage(newton.y, i_app), current, newton)


    def attempt_step(self, y_old, control, dt):
        '''
        Solve one step from the committed state. Returns Accepted or Rejected.
        '''

        if control.mode == 'current':
            return self.attempt_current_step(y_old, control.value, dt)

        # voltage hold: the current is the unknown of an outer secant iteration
        def evaluate(current):
            outcome = self.attempt_current_step(y_old, current, dt)
            if isinstance(outcome, Rejected):
                return None
            return outcome.voltage, outcome

        solved = solve_hold_current(evaluate, control.value, self.current, self.cell.current_1c)

        if solved is None:
            return Rejected(f"voltage hold at {control.value} V did not converge")

        return solved[1]


    # -------------------- stepping loop --------------------

    def finish(self, reason, message=''):

        self.recorder.finalize(reason, message)

        log = logger.warning if reason in (TerminationReason.CONVERGENCE, TerminationReason.TIMEOUT) else logger.info
        log(f"P2D run finished: {reason.value} at t={self.t:.2f} s after {self.num_steps} steps "
            f"({time.monotonic() - self.budget.started:.2f} s wall) {message}")


    def steps(self):

        cfg = self.config
        driver = self.driver
        recorder = self.recorder

        self.budget.start()

        logger.info(f"P2D run: {self.layout.size} unknowns (n_x={cfg.n_x}, n_r={cfg.n_r}), "
                    f"1C = {self.cell.current_1c:.3f} A")

        recorder.start(self.t, self.voltage, self.y)

        if not driver.temperature_ok():
            self.finish(TerminationReason.TEMPERATURE_CUTOFF,
                        f"temperature {self.protocol.temperature} K outside the allowed window")
            return

        stops = list(cfg.snapshot_times)
        if cfg.max_simulated_time is not None:
            stops.append(cfg.max_simulated_time)

        rejections = 0

        try:
            while True:

                stop = self.budget.check(self.t, self.num_steps)
                if stop is not None:
                    self.finish(*stop)
                    return

                if driver.finished(self.t):
                    self.finish(TerminationReason.COMPLETED, "protocol end reached")
                    return

                control = driver.control(self.t)
                t_next = driver.next_time(self.t, self.dt, stops)
                dt = t_next - self.t

                outcome = self.attempt_step(self.y, control, dt)

                # ---- rejection: retry from the committed state ----

                if isinstance(outcome, Rejected):

                    rejections += 1
                    logger.warning(f"Step rejected at t={self.t:.3f} s, dt={dt:.3g} s: {outcome.reason}")

                    if dt > cfg.dt_min * (1 + 1e-12) and rejections <= cfg.max_rejections:
                        self.dt = max(dt * cfg.shrink_factor, cfg.dt_min)
                        continue

                    outcome = Fatal(TerminationReason.CONVERGENCE,
                                    f"no convergence at t={self.t:.3f} s with dt={dt:.3g} s ({outcome.reason})")

                if isinstance(outcome, Fatal):
                    self.finish(outcome.reason, outcome.message)
                    return

                # ---- voltage limit crossed: shorten the step ----

                overshoot = driver.overshoot(outcome.voltage, outcome.current)

                if overshoot > cfg.cutoff_tol and dt > cfg.dt_min:
                    frac = driver.cutoff_fraction(self.voltage, outcome.voltage, outcome.current)
                    self.dt = max(dt * frac, cfg.dt_min)
                    logger.debug(f"Cutoff overshoot of {overshoot*1e3:.2f} mV, retry with dt={self.dt:.3g} s")
                    continue

                # ---- commit ----

                rejections = 0
                newton = outcome.newton

                self.t = t_next
                self.y = outcome.y
                self.voltage = outcome.voltage
                self.current = outcome.current
                self.num_steps += 1

                recorder.commit(self.t, dt, self.voltage, self.current, self.y)

                event = ProgressEvent(self.t, newton.iterations, newton.residual_norm)
                if self.progress is not None:
                    self.progress(event)

                logger.debug(f"Step {self.num_steps}: t={self.t:.3f}, dt={dt:.3g}, "
                             f"iters={newton.iterations}, |R|={newton.residual_norm:.2e}")

                if newton.iterations <= cfg.fast_iterations:
                    self.dt = min(self.dt * cfg.grow_factor, cfg.dt_max)

                reason = None
                if overshoot >= 0:
                    reason = driver.on_limit()
                    if reason is None:
                        logger.info(f"Voltage hold from t={self.t:.2f} s")
                if reason is None and driver.taper_reached(self.current):
                    reason = TerminationReason.CURRENT_TAPER

                if reason is not None:
                    self.finish(reason, f"V={self.voltage:.4f} V, I={self.current:.4f} A")

                yield event

                if reason is not None:
                    return

        except GeneratorExit:
            if not self.result.finalized:
                self.finish(TerminationReason.CANCELLED, "stepping abandoned by caller")
            raise


    def run(self):
        for _ in self.steps():
            pass
        return self.result
