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
"""Worker pool for accelerated runs."""

import threading

from concurrent.futures import Future, ProcessPoolExecutor

from .errors import QueueFullError
from .log import logger
from .materials import InMemoryCatalog, MaterialSpec
from .models import ModelKind
from .results import SimulationResult
from .wrap import SimulationRequest, run_request


def serialize_request(request, catalog, model=None, metadata=None):
    '''
    JSON-compatible job: the request plus the MaterialSpecs it references,
    so the worker never needs the catalog.
    '''

    design = request.design
    ids = (design.cathode_material, design.anode_material,
           design.electrolyte_material, design.separator_material)

    return {'request': request.to_dict(),
            'materials': [catalog.get(material_id).to_dict() for material_id in ids],
            'model': None if model is None else ModelKind(model).value,
            'metadata': dict(metadata or {})}


def deserialize_request(payload):
    '''
    Inverse of serialize_request: (request, catalog, model)
    '''
    request = SimulationRequest.from_dict(payload['request'])
    catalog = InMemoryCatalog([MaterialSpec.from_dict(m) for m in payload['materials']])
    model = None if payload['model'] is None else ModelKind(payload['model'])
    return request, catalog, model


def run_payload(payload):
    '''
    Worker entry point; returns SimulationResult.to_dict()
    '''
    request, catalog, model = deserialize_request(payload)
    return run_request(request, catalog, model=model, metadata=payload.get('metadata')).to_dict()


class WorkerPool:
    '''
    concurrent.futures executor with a bounded number of jobs in flight.

    `submit` never blocks: when `max_pending` jobs are queued or running it
    raises QueueFullError. The executor is injectable (e.g. a
    ThreadPoolExecutor); the default is a ProcessPoolExecutor owned and shut
    down by the pool.
    '''

    def __init__(self, max_workers=None, max_pending=None, executor=None):

        self._owns_executor = executor is None
        self.executor = ProcessPoolExecutor(max_workers) if executor is None else executor

        if max_pending is None:
            max_pending = 2 * (max_workers or 2)
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")

        self.max_pending = max_pending
        self._slots = threading.BoundedSemaphore(max_pending)
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def in_flight(self):
        return self._in_flight

    def submit(self, request, catalog, model=None, metadata=None):
        '''
        Future of the SimulationResult of `request`
        '''

        if not self._slots.acquire(blocking=False):
            logger.warning(f"Worker queue full ({self.max_pending} jobs in flight), request refused")
            raise QueueFullError(f"{self.max_pending} jobs already in flight")

        try:
            payload = serialize_request(request, catalog, model, metadata)
            job = self.executor.submit(run_payload, payload)
        except Exception:
            self._slots.release()
            raise

        with self._lock:
            self._in_flight += 1

        future = Future()

        def done(job):

            with self._lock:
                self._in_flight -= 1
            self._slots.release()

            if future.cancelled():
                return
            if job.cancelled():
                future.cancel()
                return

            exc = job.exception()
            if exc is not None:
                future.set_exception(exc)
            else:
                future.set_result(SimulationResult.from_dict(job.result()))

        job.add_done_callback(done)

        # a cancelled request gives its slot back unless the job already runs
        future.add_done_callback(lambda f: job.cancel() if f.cancelled() else None)

        return future

    def shutdown(self, wait=True):
        if self._owns_executor:
            self.executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
        return False
