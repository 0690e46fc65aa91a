import unittest

import numpy as onp

from cmsl.echemsim.catalog import reference_catalog
from cmsl.echemsim.design import reference_design, resolve_cell
from cmsl.echemsim.integrator import P2DIntegrator
from cmsl.echemsim.para import DiscretizationConfig, F
from cmsl.echemsim.prep import open_circuit_voltage
from cmsl.echemsim.protocol import OperatingProtocol, ConstantCurrent, ConstantCurrentConstantVoltage
from cmsl.echemsim.results import Status, TerminationReason
from cmsl.echemsim.spm import SPMKernel, SPMIntegrator


CELL = resolve_cell(reference_design(), reference_catalog())


def relative_rms(spm, p2d):
    t_end = min(spm.times[-1], p2d.times[-1])
    t = spm.times[spm.times <= t_end]
    v_spm = spm.voltages[:len(t)]
    v_p2d = onp.interp(t, p2d.times, p2d.voltages)
    return float(onp.sqrt(onp.mean((v_spm - v_p2d)**2)) / onp.mean(v_p2d))


class TestSPMKernel(unittest.TestCase):

    def test_resistance(self):
        kernel = SPMKernel(CELL, 10)
        kappa = CELL.electrolyte.conductivity
        sep = CELL.separator
        self.assertGreater(kernel.resistance, sep.thickness / (kappa * sep.porosity**1.5))

    def test_open_circuit(self):
        kernel = SPMKernel(CELL, 10)
        y = kernel.initial_state(0.4)
        self.assertAlmostEqual(kernel.terminal_voltage(y, 0.), open_circuit_voltage(CELL, 0.4), places=12)

    def test_step_conserves_lithium(self):
        kernel = SPMKernel(CELL, 8)
        y0 = kernel.initial_state(0.9)
        current, dt = 2. * CELL.current_1c, 30.
        y1 = kernel.step(y0, current, dt)

        gained = (kernel.lithium_content(y1, 'cathode') - kernel.lithium_content(y0, 'cathode'))
        lost = (kernel.lithium_content(y0, 'anode') - kernel.lithium_content(y1, 'anode'))
        expected = current * dt / (F * CELL.plate_area)

        self.assertAlmostEqual(gained / expected, 1., places=9)
        self.assertAlmostEqual(lost / expected, 1., places=9)

        # lithium enters the cathode particle at its surface
        c_ca = y1[:8]
        self.assertTrue(onp.all(onp.diff(c_ca) > 0))


class TestSPMIntegrator(unittest.TestCase):

    def test_discharge_to_cutoff(self):
        protocol = OperatingProtocol(ConstantCurrent(1.), v_min=3.3)
        result = SPMIntegrator(CELL, protocol, DiscretizationConfig()).run()

        self.assertEqual(result.reason, TerminationReason.VOLTAGE_CUTOFF)
        self.assertEqual(result.status, Status.CUTOFF)
        self.assertLessEqual(result.voltages[-1], 3.3)
        self.assertGreater(result.capacities[-1], 0.5 * CELL.capacity)
        self.assertLess(result.capacities[-1], CELL.capacity)

    def test_metadata(self):
        low = SPMIntegrator(CELL, OperatingProtocol(ConstantCurrent(0.5)), DiscretizationConfig())
        high = SPMIntegrator(CELL, OperatingProtocol(ConstantCurrent(2.)), DiscretizationConfig())
        self.assertEqual(low.result.metadata['model'], 'spm')
        self.assertEqual(low.result.metadata['fidelity'], 'reduced')
        self.assertFalse(low.result.metadata['high_rate'])
        self.assertTrue(high.result.metadata['high_rate'])

    def test_cccv(self):
        protocol = OperatingProtocol(ConstantCurrentConstantVoltage(1., v_hold=4.1, taper_cutoff=0.1))
        integrator = SPMIntegrator(CELL, protocol, DiscretizationConfig())
        result = integrator.run()

        self.assertEqual(result.reason, TerminationReason.CURRENT_TAPER)
        self.assertLess(abs(result.currents[-1]), 0.1 * CELL.current_1c)
        self.assertAlmostEqual(result.voltages[-1], 4.1, delta=1e-3)

    def test_snapshots(self):
        config = DiscretizationConfig(n_r=6, snapshot_times=(100.,))
        result = SPMIntegrator(CELL, OperatingProtocol(ConstantCurrent(1.), duration=300.), config).run()
        self.assertEqual(len(result.snapshots[100.]['c_s_cathode']), 6)
        self.assertEqual(len(result.snapshots[100.]['c_s_anode']), 6)


class TestSPMAgainstP2D(unittest.TestCase):

    def run_pair(self, rate, duration):
        protocol = OperatingProtocol(ConstantCurrent(rate), duration=duration)
        config = DiscretizationConfig(n_x=20, n_r=10)
        spm = SPMIntegrator(CELL, protocol, config).run()
        p2d = P2DIntegrator(CELL, protocol, config).run()
        return spm, p2d

    def test_low_rate_agreement(self):
        spm, p2d = self.run_pair(0.5, 3600.)
        self.assertEqual(spm.status, Status.SUCCESS)
        self.assertEqual(p2d.status, Status.SUCCESS)
        self.assertLess(relative_rms(spm, p2d), 0.01)

        low = relative_rms(spm, p2d)
        spm, p2d = self.run_pair(3., 300.)
        self.assertGreater(relative_rms(spm, p2d), low)


if __name__ == "__main__":
    unittest.main()
