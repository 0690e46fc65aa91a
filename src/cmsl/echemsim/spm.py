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
"""Single particle model for fast screening."""

import time

import numpy as onp
from scipy.linalg import solve_banded

from .integrator import Accepted, Rejected, Fatal
from .kinetics import calcJ0, inverse_butler_volmer
from .log import logger
from .mesh import radial_mesh
from .para import F
from .protocol import ProtocolDriver, RunBudget, solve_hold_current
from .results import ResultRecorder, ProgressEvent, TerminationReason
from .solver import NewtonResult


class SPMKernel:
    '''
    One representative particle per electrode, uniform reaction along each
    electrode, electrolyte at c_e0 with a lumped ohmic resistance.

    The particles use the radial finite volumes of the P2D model, so both
    models share the same solid-diffusion discretization.
    '''

    def __init__(self, cell, n_r):

        self.cell = cell
        self.n_r = n_r
        self.T = cell.temperature

        _, self.vol, self.g_face = radial_mesh(n_r)

        self.electrodes = (cell.cathode, cell.anode)

        self.r_p = onp.array([e.particle_radius for e in self.electrodes])
        self.cs_max = onp.array([e.material.c_max for e in self.electrodes])
        self.ds_hat = onp.array([e.material.diffusivity for e in self.electrodes]) / (self.r_p**2 / n_r)

        # (1/m) * (m): particle surface per plate area
        self.surface = onp.array([e.specific_area * e.thickness for e in self.electrodes])

        self.resistance = self.get_resistance()


    def get_resistance(self):
        '''
        (Ohm m^2) L_c/3 (1/kappa_c + 1/sigma_c) + L_s/kappa_s + L_a/3 (1/kappa_a + 1/sigma_a)
        '''

        kappa = self.cell.electrolyte.conductivity
        res = 0.

        for region in self.cell.regions:
            ka_eff = kappa * region.transport_factor()
            if region.has_particle:
                sigma_eff = region.material.conductivity * region.solid_factor()
                res += region.thickness / 3. * (1. / ka_eff + 1. / sigma_eff)
            else:
                res += region.thickness / ka_eff

        return res


    def initial_state(self, soc):
        sto = [e.material.stoichiometry_at(soc) for e in self.electrodes]
        return onp.concatenate([onp.full(self.n_r, s * cmax) for s, cmax in zip(sto, self.cs_max)])


    def split(self, y):
        return {'c_s_cathode': y[:self.n_r], 'c_s_anode': y[self.n_r:]}


    def reaction_flux(self, current):
        '''
        (A/m^2) uniform pore-wall flux; cathode reduces, anode oxidizes on discharge
        '''
        i_app = current / self.cell.plate_area
        return onp.array([-1., 1.]) * i_app / self.surface


    def step(self, y_old, current, dt):
        '''
        Implicit-Euler radial diffusion of both particles (tridiagonal solve)
        '''

        n_r = self.n_r
        vol, g = self.vol, self.g_face
        j = self.reaction_flux(current)

        y = onp.empty_like(y_old)

        for e in range(2):

            w = self.ds_hat[e] * g                      # (n_r-1,)

            ab = onp.zeros((3, n_r))
            ab[1] = vol / dt
            ab[1, :-1] += w
            ab[1, 1:] += w
            ab[0, 1:] = -w
            ab[2, :-1] = -w

            rhs = vol / dt * y_old[e*n_r:(e+1)*n_r]
            rhs[-1] -= j[e] / (F * self.r_p[e])

            y[e*n_r:(e+1)*n_r] = solve_banded((1, 1), ab, rhs)

        return y


    def surface_stoichiometry(self, y):
        cs = y.reshape(2, self.n_r)
        return (1.5 * cs[:, -1] - 0.5 * cs[:, -2]) / self.cs_max


    def terminal_voltage(self, y, current):

        sto = self.surface_stoichiometry(y)
        j = self.reaction_flux(current)

        eta = []
        for e, electrode in enumerate(self.electrodes):
            mat = electrode.material
            j0 = float(calcJ0(mat.exchange_current, 1., sto[e], mat.alpha_a, mat.alpha_c))
            eta.append(inverse_butler_volmer(j[e], j0, mat.alpha_a, mat.alpha_c, self.T))

        cathode, anode = self.cell.cathode.material, self.cell.anode.material
        Uoc = float(cathode.ocp(sto[0])) - float(anode.ocp(sto[1]))

        return Uoc + eta[0] - eta[1] - current / self.cell.plate_area * self.resistance


    def lithium_content(self, y, region):
        '''
        Lithium (mol per m^2 of plate) in 'cathode' or 'anode'
        '''
        e = {'cathode': 0, 'anode': 1}[region]
        electrode = self.electrodes[e]
        c_avg = 3. * y[e*self.n_r:(e+1)*self.n_r] @ self.vol
        return float(electrode.solid_fraction * electrode.thickness * c_avg)


class SPMIntegrator:
    '''
    Stepping loop of the SPM; same driver, recorder and outcomes as the P2D loop
    '''

    def __init__(self, cell, protocol, config, progress=None, cancel=None, metadata=None):

        self.cell = cell
        self.protocol = protocol
        self.config = config
        self.progress = progress

        self.kernel = SPMKernel(cell, config.n_r)
        self.driver = ProtocolDriver(protocol, cell.current_1c)
        self.budget = RunBudget.from_config(config, cancel)

        self.recorder = ResultRecorder(split=self.kernel.split,
                                       metadata=dict(self.get_metadata(), **(metadata or {})),
                                       snapshot_times=config.snapshot_times,
                                       record_states=config.record_states)
        self.result = self.recorder.result

        self.y = self.kernel.initial_state(protocol.soc0)
        self.t = 0.
        self.dt = config.dt_init
        self.voltage = self.kernel.terminal_voltage(self.y, 0.)
        self.current = 0.
        self.num_steps = 0


    def get_metadata(self):

        cell = self.cell

        return {'model': 'spm',
                'fidelity': 'reduced',
                'high_rate': self.driver.max_rate > 1.,
                'n_r': self.config.n_r,
                'resistance': self.kernel.resistance,
                'capacity_ah': cell.capacity,
                'np_ratio': cell.np_ratio,
                'current_1c': cell.current_1c,
                'temperature': cell.temperature}


    def attempt_current_step(self, y_old, current, dt):

        y = self.kernel.step(y_old, current, dt)

        sto = self.kernel.surface_stoichiometry(y)
        if onp.any(sto < 0) or onp.any(sto > 1):
            return Rejected(f"particle surface outside [0, 1] (sto={sto})")

        try:
            voltage = self.kernel.terminal_voltage(y, current)
        except ValueError as e:
            return Rejected(str(e))

        return Accepted(y, voltage, current, NewtonResult(True, y, 1, 0., 0., 0))


    def attempt_step(self, y_old, control, dt):

        if control.mode == 'current':
            return self.attempt_current_step(y_old, control.value, dt)

        def evaluate(current):
            outcome = self.attempt_current_step(y_old, current, dt)
            if isinstance(outcome, Rejected):
                return None
            return outcome.voltage, outcome

        solved = solve_hold_current(evaluate, control.value, self.current, self.cell.current_1c)

        if solved is None:
            return Rejected(f"voltage hold at {control.value} V did not converge")

        return solved[1]


    def finish(self, reason, message=''):

        self.recorder.finalize(reason, message)

        logger.info(f"SPM run finished: {reason.value} at t={self.t:.2f} s after {self.num_steps} steps "
                    f"({time.monotonic() - self.budget.started:.3f} s wall) {message}")


    def steps(self):

        cfg = self.config
        driver = self.driver
        recorder = self.recorder

        self.budget.start()

        logger.info(f"SPM run: n_r={cfg.n_r}, R_ohm={self.kernel.resistance:.3e} Ohm m^2")

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

                if isinstance(outcome, Rejected):
                    rejections += 1
                    if dt > cfg.dt_min * (1 + 1e-12) and rejections <= cfg.max_rejections:
                        self.dt = max(dt * cfg.shrink_factor, cfg.dt_min)
                        continue
                    outcome = Fatal(TerminationReason.CONVERGENCE,
                                    f"no valid step at t={self.t:.3f} s ({outcome.reason})")

                if isinstance(outcome, Fatal):
                    self.finish(outcome.reason, outcome.message)
                    return

                overshoot = driver.overshoot(outcome.voltage, outcome.current)

                if overshoot > cfg.cutoff_tol and dt > cfg.dt_min:
                    self.dt = max(dt * driver.cutoff_fraction(self.voltage, outcome.voltage, outcome.current),
                                  cfg.dt_min)
                    continue

                rejections = 0

                self.t = t_next
                self.y = outcome.y
                self.voltage = outcome.voltage
                self.current = outcome.current
                self.num_steps += 1

                recorder.commit(self.t, dt, self.voltage, self.current, self.y)

                event = ProgressEvent(self.t, outcome.newton.iterations, outcome.newton.residual_norm)
                if self.progress is not None:
                    self.progress(event)

                self.dt = min(self.dt * cfg.grow_factor, cfg.dt_max)

                reason = None
                if overshoot >= 0:
                    reason = driver.on_limit()
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
