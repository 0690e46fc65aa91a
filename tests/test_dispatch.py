import json
import unittest

from concurrent.futures import Future, ThreadPoolExecutor

import numpy as onp

from cmsl.echemsim.catalog import reference_catalog
from cmsl.echemsim.design import reference_design
from cmsl.echemsim.dispatch import (Fidelity, Target, LIGHTWEIGHT_MAX_UNKNOWNS, classify, execute,
                                    execute_batch, plan_request)
from cmsl.echemsim.errors import QueueFullError
from cmsl.echemsim.mesh import estimate_unknowns
from cmsl.echemsim.models import ModelKind
from cmsl.echemsim.para import DiscretizationConfig
from cmsl.echemsim.protocol import OperatingProtocol, ConstantCurrent, ConstantCurrentConstantVoltage
from cmsl.echemsim.worker import WorkerPool, serialize_request, deserialize_request, run_payload
from cmsl.echemsim.wrap import SimulationRequest


DESIGN = reference_design()
CC = OperatingProtocol(ConstantCurrent(1.), duration=120.)
CCCV = OperatingProtocol(ConstantCurrentConstantVoltage(1., 4.1))
SMALL = DiscretizationConfig(n_x=10, n_r=6)


class HeldExecutor:
    '''
    Executor whose jobs stay pending until released by the test
    '''

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args):
        job = Future()
        self.jobs.append((job, fn, args))
        return job

    def release(self):
        while self.jobs:
            job, fn, args = self.jobs.pop(0)
            if job.set_running_or_notify_cancel():
                job.set_result(fn(*args))
                return


class TestClassify(unittest.TestCase):

    def test_default_is_lightweight_p2d(self):
        plan = classify(DESIGN, CC, SMALL)
        self.assertEqual(plan.model, ModelKind.P2D)
        self.assertEqual(plan.target, Target.LIGHTWEIGHT)
        self.assertTrue(plan.reasons)

    def test_screening_uses_spm(self):
        self.assertEqual(classify(DESIGN, CC, SMALL, Fidelity.SCREENING).model, ModelKind.SPM)
        plan = classify(DESIGN, CC, SMALL, Fidelity.AUTO, batch_size=8)
        self.assertEqual(plan.model, ModelKind.SPM)
        self.assertEqual(plan.target, Target.LIGHTWEIGHT)

    def test_screening_falls_back_to_p2d(self):
        self.assertEqual(classify(DESIGN, CCCV, SMALL, Fidelity.SCREENING).model, ModelKind.P2D)
        plan = classify(reference_design(2), CC, SMALL, Fidelity.SCREENING)
        self.assertEqual(plan.model, ModelKind.P2D)
        self.assertEqual(plan.target, Target.ACCELERATED)

    def test_large_mesh_is_accelerated(self):
        config = DiscretizationConfig(n_x=200, n_r=30)
        self.assertGreater(estimate_unknowns(DESIGN.thicknesses, 200, 30), LIGHTWEIGHT_MAX_UNKNOWNS)
        plan = classify(DESIGN, CC, config, Fidelity.FULL)
        self.assertEqual(plan.target, Target.ACCELERATED)
        self.assertEqual(plan.model, ModelKind.P2D)

        # the SPM does not carry the P2D system
        plan = classify(DESIGN, CC, config, Fidelity.SCREENING)
        self.assertEqual(plan.target, Target.LIGHTWEIGHT)

    def test_full_batch_is_accelerated(self):
        plan = classify(DESIGN, CC, SMALL, Fidelity.FULL, batch_size=4)
        self.assertEqual((plan.model, plan.target), (ModelKind.P2D, Target.ACCELERATED))

    def test_explicit_model(self):
        plan = classify(DESIGN, CC, SMALL, Fidelity.FULL, model='spm')
        self.assertEqual(plan.model, ModelKind.SPM)
        request = SimulationRequest(DESIGN, CC, SMALL, model=ModelKind.SPM)
        self.assertEqual(plan_request(request).model, ModelKind.SPM)


class TestWorker(unittest.TestCase):

    def test_payload_is_json(self):
        request = SimulationRequest(DESIGN, CC, SMALL, Fidelity.FULL)
        payload = json.loads(json.dumps(serialize_request(request, reference_catalog(), ModelKind.SPM)))

        restored, catalog, model = deserialize_request(payload)
        self.assertEqual(restored, request)
        self.assertEqual(model, ModelKind.SPM)
        self.assertEqual(catalog.get(DESIGN.cathode_material), reference_catalog().get(DESIGN.cathode_material))

        data = run_payload(payload)
        self.assertEqual(data['reason'], 'completed')
        json.dumps(data)

    def test_back_pressure(self):
        executor = HeldExecutor()
        pool = WorkerPool(max_pending=2, executor=executor)
        request = SimulationRequest(DESIGN, CC, SMALL, model=ModelKind.SPM)
        catalog = reference_catalog()

        first = pool.submit(request, catalog)
        pool.submit(request, catalog)
        self.assertEqual(pool.in_flight, 2)

        with self.assertLogs('echemsim', level='WARNING'):
            with self.assertRaises(QueueFullError):
                pool.submit(request, catalog)

        executor.release()
        self.assertEqual(pool.in_flight, 1)
        self.assertTrue(first.done())
        self.assertEqual(first.result().reason.value, 'completed')

        pool.submit(request, catalog)
        self.assertEqual(pool.in_flight, 2)

    def test_cancel_pending_job(self):
        executor = HeldExecutor()
        pool = WorkerPool(max_pending=1, executor=executor)
        request = SimulationRequest(DESIGN, CC, SMALL, model=ModelKind.SPM)
        catalog = reference_catalog()

        future = pool.submit(request, catalog)
        job = executor.jobs[0][0]

        self.assertTrue(future.cancel())
        self.assertTrue(job.cancelled())
        self.assertEqual(pool.in_flight, 0)

        # the slot is free again and the cancelled job never runs
        second = pool.submit(request, catalog)
        executor.release()
        self.assertEqual(second.result().reason.value, 'completed')
        self.assertEqual(executor.jobs, [])

    def test_in_process_and_worker_agree(self):
        request = SimulationRequest(DESIGN, CC, SMALL, Fidelity.FULL)
        catalog = reference_catalog()

        plan = plan_request(request)
        self.assertEqual(plan.target, Target.LIGHTWEIGHT)
        local = execute(plan, request, catalog)

        with ThreadPoolExecutor(max_workers=1) as executor:
            pool = WorkerPool(executor=executor)
            remote = pool.submit(request, catalog, model=plan.model).result()

        onp.testing.assert_array_equal(local.times, remote.times)
        onp.testing.assert_array_equal(local.voltages, remote.voltages)
        self.assertEqual(local.reason, remote.reason)
        self.assertEqual(local.metadata['target'], 'lightweight')

    def test_batch(self):
        catalog = reference_catalog()
        requests = [SimulationRequest(DESIGN, OperatingProtocol(ConstantCurrent(rate), duration=120.), SMALL)
                    for rate in (0.5, 1., 2.)]

        with ThreadPoolExecutor(max_workers=2) as executor:
            results = execute_batch(requests, catalog, WorkerPool(executor=executor))

        self.assertEqual([r.metadata['model'] for r in results], ['spm'] * 3)
        for result in results:
            self.assertEqual(result.reason.value, 'completed')
        # higher rate, lower voltage
        v_end = [r.voltages[-1] for r in results]
        self.assertTrue(v_end[0] > v_end[1] > v_end[2])

        full = [SimulationRequest(DESIGN, CC, SMALL, Fidelity.FULL) for _ in range(2)]
        with ThreadPoolExecutor(max_workers=2) as executor:
            results = execute_batch(full, catalog, WorkerPool(executor=executor))
        self.assertEqual([r.metadata['target'] for r in results], ['accelerated'] * 2)
        self.assertEqual([r.metadata['model'] for r in results], ['p2d'] * 2)

        with self.assertRaises(ValueError):
            execute_batch(full, catalog)


if __name__ == "__main__":
    unittest.main()
