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
"""Routing of simulation requests to the lightweight or accelerated path."""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from .log import logger
from .mesh import estimate_unknowns
from .models import ModelKind
from .protocol import ConstantCurrentConstantVoltage


# largest P2D system solved in the calling process
LIGHTWEIGHT_MAX_UNKNOWNS = 4000


class Fidelity(str, Enum):
    AUTO = 'auto'
    SCREENING = 'screening'
    FULL = 'full'


class Target(str, Enum):
    LIGHTWEIGHT = 'lightweight'     # in-process, synchronous
    ACCELERATED = 'accelerated'     # worker pool


@dataclass(frozen=True)
class ExecutionPlan:

    target:Target
    model:ModelKind
    reasons:Tuple[str, ...] = ()


def classify(design, protocol, config, fidelity=Fidelity.AUTO, batch_size=1, model=None):
    '''
    Pick the model and the execution target of a request.

    The SPM is used for screening requests (explicit, or AUTO within a batch)
    unless the protocol holds a voltage or the design stacks several layers.
    P2D runs go to the worker pool when the system is large, when several
    are requested at once, or for multi-layer stacks. `model` overrides the
    model choice; the target rules still apply.
    '''

    fidelity = Fidelity(fidelity)
    reasons = []

    screening = fidelity == Fidelity.SCREENING or (fidelity == Fidelity.AUTO and batch_size > 1)

    if model is not None:
        model = ModelKind(model)
        reasons.append(f"model {model.value} requested")
    elif not screening:
        model = ModelKind.P2D
        reasons.append(f"{fidelity.value} fidelity")
    elif isinstance(protocol.mode, ConstantCurrentConstantVoltage):
        model = ModelKind.P2D
        reasons.append("voltage hold needs the full model")
    elif design.layers > 1:
        model = ModelKind.P2D
        reasons.append("multi-layer stack needs the full model")
    else:
        model = ModelKind.SPM
        reasons.append("screening request")

    target = Target.LIGHTWEIGHT

    if model == ModelKind.P2D:

        unknowns = estimate_unknowns(design.thicknesses, config.n_x, config.n_r)

        if unknowns > LIGHTWEIGHT_MAX_UNKNOWNS:
            target = Target.ACCELERATED
            reasons.append(f"{unknowns} unknowns > {LIGHTWEIGHT_MAX_UNKNOWNS}")
        if batch_size > 1:
            target = Target.ACCELERATED
            reasons.append(f"batch of {batch_size} P2D runs")
        if design.layers > 1:
            target = Target.ACCELERATED
            reasons.append(f"{design.layers} layers")

    return ExecutionPlan(target, model, tuple(reasons))


def plan_request(request, batch_size=1):
    return classify(request.design, request.protocol, request.config,
                    request.fidelity, batch_size, request.model)


def execute(plan, request, catalog, pool=None, progress=None, cancel=None):
    '''
    Run one request according to its plan and return the SimulationResult.

    LIGHTWEIGHT plans run here, ACCELERATED plans are submitted to `pool`
    (a throw-away WorkerPool when none is given). `progress` and `cancel`
    only reach in-process runs.
    '''

    from .wrap import run_request
    from .worker import WorkerPool

    logger.info(f"Executing {plan.model.value} on {plan.target.value} ({'; '.join(plan.reasons)})")

    target = {'target': plan.target.value}

    if plan.target == Target.LIGHTWEIGHT:
        result = run_request(request, catalog, model=plan.model, progress=progress, cancel=cancel,
                             metadata=target)

    elif pool is not None:
        result = pool.submit(request, catalog, model=plan.model, metadata=target).result()

    else:
        with WorkerPool(max_workers=1) as own_pool:
            result = own_pool.submit(request, catalog, model=plan.model, metadata=target).result()

    return result


def execute_batch(requests, catalog, pool=None):
    '''
    Plan every request of a batch together, submit the accelerated ones to
    the pool first, then run the lightweight ones here. Results keep the
    order of `requests`.
    '''

    from .wrap import run_request

    plans = [plan_request(request, batch_size=len(requests)) for request in requests]
    results = [None] * len(requests)
    futures = {}

    for k, (plan, request) in enumerate(zip(plans, requests)):
        if plan.target == Target.ACCELERATED:
            if pool is None:
                raise ValueError("accelerated requests in the batch need a worker pool")
            futures[k] = pool.submit(request, catalog, model=plan.model, metadata={'target': plan.target.value})

    for k, (plan, request) in enumerate(zip(plans, requests)):
        if plan.target == Target.LIGHTWEIGHT:
            results[k] = run_request(request, catalog, model=plan.model, metadata={'target': plan.target.value})

    for k, future in futures.items():
        results[k] = future.result()

    return results
