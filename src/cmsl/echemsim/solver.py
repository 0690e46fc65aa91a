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
"""Damped Newton corrector for one implicit time step."""

from dataclasses import dataclass
from typing import Optional

import numpy as onp
from scipy.sparse.linalg import splu

from .errors import AssemblyError
from .log import logger


# Armijo sufficient-decrease constant
ARMIJO_C = 1e-4

# clamped iterations within one solve before a warning is logged
CLAMP_WARN = 3


@dataclass
class NewtonResult:

    converged:bool
    y:onp.ndarray
    iterations:int
    residual_norm:float         # inf-norm of the scaled residual
    step_norm:float             # relative inf-norm of the last update
    clamp_events:int            # iterations whose update had to be clamped
    reason:Optional[str] = None


def newton_solve(kernel, jacobian, y_old, i_app, dt, config, y_guess=None):
    '''
    Solve R(y; y_old, i_app, dt) = 0 starting from y_guess (default y_old).

    Each iteration factorizes J with SuperLU, then backtracks along the Newton
    direction d: lambda = 1, 1/2, 1/4, ... until
    ||R(y + lambda*d)||_2 <= (1 - ARMIJO_C*lambda) * ||R(y)||_2. A trial state
    the kernel refuses (AssemblyError) counts as a failed trial. Failures are
    reported in the result, never raised.
    '''

    y = onp.array(y_old if y_guess is None else y_guess, dtype=onp.float64)
    scales = kernel.scales

    def fail(reason, iterations, res_inf, step_norm, clamp_events):
        return NewtonResult(False, y, iterations, res_inf, step_norm, clamp_events, reason)

    try:
        res = kernel.residual(y, y_old, i_app, dt)
    except AssemblyError as e:
        return fail(f"invalid initial guess: {e}", 0, onp.inf, onp.inf, 0)

    res_inf = onp.max(onp.abs(res))
    res_l2 = onp.linalg.norm(res)

    if res_inf < config.abstol:
        return NewtonResult(True, y, 0, res_inf, 0., 0)

    clamp_events = 0
    step_norm = onp.inf

    for it in range(1, config.max_iterations + 1):

        J = jacobian.build(y, dt)

        try:
            delta = -splu(J).solve(res)
        except RuntimeError as e:
            return fail(f"singular Jacobian: {e}", it, res_inf, step_norm, clamp_events)

        if not onp.all(onp.isfinite(delta)):
            return fail("singular Jacobian: non-finite update", it, res_inf, step_norm, clamp_events)

        # ---- backtracking line search ----

        lam = 1.
        while True:

            trial = y + lam * delta
            num_clamped = kernel.clamp(trial)

            try:
                res_trial = kernel.residual(trial, y_old, i_app, dt)
                res_trial_inf = onp.max(onp.abs(res_trial))
                res_trial_l2 = onp.linalg.norm(res_trial)
                if res_trial_l2 <= (1. - ARMIJO_C * lam) * res_l2 or res_trial_inf < config.abstol:
                    break
            except AssemblyError as e:
                logger.debug(f"Trial state rejected (lambda={lam}): {e}")

            lam *= 0.5
            if lam < config.min_damping:
                return fail("line search exhausted", it, res_inf, step_norm, clamp_events)

        if num_clamped:
            clamp_events += 1
            if clamp_events == CLAMP_WARN:
                logger.warning(f"Concentrations clamped in {clamp_events} Newton iterations (dt={dt:.3g} s)")

        step_norm = float(onp.max(onp.abs(trial - y) / onp.maximum(onp.abs(y), scales)))

        y, res, res_inf, res_l2 = trial, res_trial, res_trial_inf, res_trial_l2

        if res_inf < config.abstol and step_norm < config.reltol:
            return NewtonResult(True, y, it, res_inf, step_norm, clamp_events)

    return fail("maximum iterations reached", config.max_iterations, res_inf, step_norm, clamp_events)
