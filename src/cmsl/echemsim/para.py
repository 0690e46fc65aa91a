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
"""Physical constants and discretization settings."""

from dataclasses import dataclass, field, asdict
from typing import Optional, Tuple


# ---- physical constants ----

F = 96485.33212         # Faraday's constant (C/mol)
R = 8.314462618         # Gas constant (J/mol/K)
T_REF = 298.15          # Reference temperature 25 celsius


@dataclass
class DiscretizationConfig:

    # ---- mesh ----
    n_x:int = 20                    # control volumes along the stack
    n_r:int = 10                    # radial shells per particle

    # ---- time step (s) ----
    dt_init:float = 1.0
    dt_min:float = 1e-4
    dt_max:float = 20.0

    # ---- Newton ----
    abstol:float = 1e-6             # on the scaled residual (inf-norm)
    reltol:float = 1e-3             # on the relative update
    max_iterations:int = 50
    min_damping:float = 1./64

    # ---- step control ----
    grow_factor:float = 1.5
    shrink_factor:float = 0.5
    fast_iterations:int = 5         # grow dt when converged within this
    slow_iterations:int = 15        # reject the step above this
    max_rejections:int = 40         # consecutive rejections before giving up
    cutoff_tol:float = 1e-3         # (V) accepted overshoot of a voltage limit

    # ---- run budgets ----
    max_wall_time:Optional[float] = None        # (s) wall clock
    max_simulated_time:Optional[float] = None   # (s) simulated
    max_steps:Optional[int] = None

    # ---- output ----
    snapshot_times:Tuple[float, ...] = field(default_factory=tuple)
    record_states:bool = False

    def __post_init__(self):

        self.snapshot_times = tuple(sorted(float(t) for t in self.snapshot_times))

        if self.n_x < 3:
            raise ValueError(f"n_x must be at least 3 (one CV per region), got {self.n_x}")
        if self.n_r < 2:
            raise ValueError(f"n_r must be at least 2, got {self.n_r}")
        if not 0 < self.dt_min <= self.dt_init <= self.dt_max:
            raise ValueError("time steps must satisfy 0 < dt_min <= dt_init <= dt_max")
        if self.abstol <= 0 or self.reltol <= 0:
            raise ValueError("tolerances must be positive")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be positive")
        if not 0 < self.min_damping <= 1:
            raise ValueError("min_damping must be in (0, 1]")
        if self.grow_factor < 1 or not 0 < self.shrink_factor < 1:
            raise ValueError("grow_factor must be >= 1 and shrink_factor in (0, 1)")
        if self.fast_iterations > self.slow_iterations:
            raise ValueError("fast_iterations must not exceed slow_iterations")
        if any(t < 0 for t in self.snapshot_times):
            raise ValueError("snapshot times must be non-negative")

    def to_dict(self):
        data = asdict(self)
        data['snapshot_times'] = list(self.snapshot_times)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(**data)
