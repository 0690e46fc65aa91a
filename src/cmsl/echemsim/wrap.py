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
"""Simulation requests and the entry points that run them."""

import asyncio

from dataclasses import dataclass, field
from typing import Optional

from .catalog import reference_catalog
from .design import CellDesign, resolve_cell
from .dispatch import Fidelity, plan_request
from .log import logger
from .models import ModelKind, build_integrator
from .para import DiscretizationConfig
from .protocol import OperatingProtocol


@dataclass(frozen=True)
class SimulationRequest:

    design:CellDesign
    protocol:OperatingProtocol
    config:DiscretizationConfig = field(default_factory=DiscretizationConfig)
    fidelity:Fidelity = Fidelity.AUTO
    model:Optional[ModelKind] = None        # bypasses the model choice of the dispatcher

    def __post_init__(self):
        object.__setattr__(self, 'fidelity', Fidelity(self.fidelity))
        if self.model is not None:
            object.__setattr__(self, 'model', ModelKind(self.model))

    def to_dict(self):
        return {'design': self.design.to_dict(),
                'protocol': self.protocol.to_dict(),
                'config': self.config.to_dict(),
                'fidelity': self.fidelity.value,
                'model': None if self.model is None else self.model.value}

    @classmethod
    def from_dict(cls, data):
        return cls(design=CellDesign.from_dict(data['design']),
                   protocol=OperatingProtocol.from_dict(data['protocol']),
                   config=DiscretizationConfig.from_dict(data['config']),
                   fidelity=data['fidelity'],
                   model=data['model'])


def build_simulation(request, catalog=None, model=None, progress=None, cancel=None, metadata=None):
    '''
    Resolve the materials of the request once and return the integrator of
    the chosen model (P2DIntegrator or SPMIntegrator), ready to step.
    '''

    if catalog is None:
        catalog = reference_catalog()

    cell = resolve_cell(request.design, catalog, request.protocol.temperature)

    if model is None:
        model = plan_request(request).model

    logger.debug(f"Resolved cell: {cell.capacity:.4f} Ah, N/P {cell.np_ratio:.3f}, model {ModelKind(model).value}")

    return build_integrator(model, cell, request.protocol, request.config, progress, cancel, metadata)


def run_request(request, catalog=None, model=None, progress=None, cancel=None, metadata=None):
    return build_simulation(request, catalog, model, progress, cancel, metadata).run()


def simulate(request, catalog=None, progress=None, cancel=None):
    '''
    Run a request to completion in this process.

    Solver failures end the run with a FAILED result; call
    `result.raise_for_status()` to turn them into exceptions.
    '''
    return run_request(request, catalog, progress=progress, cancel=cancel)


def iter_simulation(request, catalog=None, cancel=None):
    '''
    Generator over the accepted steps of a run (one ProgressEvent per step).

    The finalized SimulationResult is the return value of the generator.
    Closing it early finalizes the run as cancelled.
    '''
    integrator = build_simulation(request, catalog, cancel=cancel)
    yield from integrator.steps()
    return integrator.result


async def simulate_async(request, catalog=None, progress=None, cancel=None):
    '''
    Run a request inside an event loop, yielding control between steps.
    '''

    integrator = build_simulation(request, catalog, progress=progress, cancel=cancel)
    steps = integrator.steps()

    try:
        for _ in steps:
            await asyncio.sleep(0)
    finally:
        steps.close()

    return integrator.result
