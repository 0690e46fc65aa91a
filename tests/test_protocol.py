import threading
import unittest

import numpy as onp

from cmsl.echemsim.para import DiscretizationConfig
from cmsl.echemsim.protocol import (OperatingProtocol, ConstantCurrent, ConstantCurrentConstantVoltage,
                                    Pulse, PulseStep, ProtocolDriver, RunBudget, solve_hold_current)
from cmsl.echemsim.results import TerminationReason


class TestOperatingProtocol(unittest.TestCase):

    def test_validation(self):
        with self.assertRaises(ValueError):
            OperatingProtocol(ConstantCurrent(1.), v_min=4.2, v_max=3.)
        with self.assertRaises(ValueError):
            OperatingProtocol(ConstantCurrent(0.))
        with self.assertRaises(ValueError):
            OperatingProtocol(ConstantCurrentConstantVoltage(1., v_hold=4.5))
        with self.assertRaises(ValueError):
            OperatingProtocol(Pulse([]))
        with self.assertRaises(ValueError):
            OperatingProtocol(Pulse([PulseStep(1., 0.)]))
        with self.assertRaises(ValueError):
            OperatingProtocol(ConstantCurrent(1.), initial_soc=1.5)

    def test_initial_soc(self):
        self.assertEqual(OperatingProtocol(ConstantCurrent(1.)).soc0, 1.)
        self.assertEqual(OperatingProtocol(ConstantCurrent(-1.)).soc0, 0.)
        self.assertEqual(OperatingProtocol(ConstantCurrentConstantVoltage(1., 4.1)).soc0, 0.)
        self.assertEqual(OperatingProtocol(ConstantCurrent(1.), initial_soc=0.3).soc0, 0.3)

    def test_round_trip(self):
        for mode in (ConstantCurrent(0.5),
                     ConstantCurrentConstantVoltage(1., 4.1, 0.1),
                     Pulse([{'current': 5., 'duration': 10.}, PulseStep(0., 20.)])):
            protocol = OperatingProtocol(mode, temperature=308.15, duration=600.)
            self.assertEqual(OperatingProtocol.from_dict(protocol.to_dict()), protocol)


class TestProtocolDriver(unittest.TestCase):

    def test_constant_current(self):
        driver = ProtocolDriver(OperatingProtocol(ConstantCurrent(2.)), 5.)
        control = driver.control(100.)
        self.assertEqual((control.mode, control.value), ('current', 10.))
        self.assertEqual(driver.end_time, 1.5 * 1800.)
        self.assertEqual(driver.voltage_limit(10.), (2.5, -1.))
        self.assertEqual(driver.on_limit(), TerminationReason.VOLTAGE_CUTOFF)

    def test_pulse_boundaries(self):
        protocol = OperatingProtocol(Pulse([PulseStep(5., 30.), PulseStep(0., 60.), PulseStep(-2., 30.)]))
        driver = ProtocolDriver(protocol, 5.)

        self.assertEqual(driver.end_time, 120.)
        self.assertEqual(driver.control(0.).value, 5.)
        self.assertEqual(driver.control(30.).value, 0.)
        self.assertEqual(driver.control(95.).value, -2.)

        self.assertEqual(driver.next_time(20., 20.), 30.)
        self.assertEqual(driver.next_time(30., 20.), 50.)
        self.assertEqual(driver.next_time(100., 50.), 120.)
        self.assertEqual(driver.next_time(30., 20., stops=(45.,)), 45.)
        self.assertAlmostEqual(driver.max_rate, 1.)

    def test_cccv_phases(self):
        protocol = OperatingProtocol(ConstantCurrentConstantVoltage(1., 4.1, 0.05))
        driver = ProtocolDriver(protocol, 5.)

        self.assertEqual(driver.control(0.).value, -5.)
        self.assertEqual(driver.voltage_limit(-5.), (4.1, 1.))
        self.assertIsNone(driver.on_limit())
        self.assertEqual(driver.phase, 'cv')

        control = driver.control(10.)
        self.assertEqual((control.mode, control.value), ('voltage', 4.1))
        self.assertEqual(driver.overshoot(4.3, -1.), -onp.inf)
        self.assertFalse(driver.taper_reached(-1.))
        self.assertTrue(driver.taper_reached(-0.2))

    def test_cutoff_fraction(self):
        driver = ProtocolDriver(OperatingProtocol(ConstantCurrent(1.), v_min=3.), 5.)
        self.assertAlmostEqual(driver.cutoff_fraction(3.2, 2.8, 5.), 0.5)
        self.assertAlmostEqual(driver.cutoff_fraction(3.01, 2.0, 5.), 0.05)

    def test_temperature_window(self):
        protocol = OperatingProtocol(ConstantCurrent(1.), temperature=330., max_temperature=318.15)
        self.assertFalse(ProtocolDriver(protocol, 5.).temperature_ok())
        protocol = OperatingProtocol(ConstantCurrent(1.), temperature=300., min_temperature=273.15)
        self.assertTrue(ProtocolDriver(protocol, 5.).temperature_ok())


class TestHoldCurrent(unittest.TestCase):

    def test_linear_cell(self):
        evaluate = lambda current: (4.0 - 0.1 * current, current)
        current, payload = solve_hold_current(evaluate, 3.9, 3., 5.)
        self.assertAlmostEqual(current, 1., places=3)
        self.assertEqual(current, payload)

    def test_failed_evaluation(self):
        self.assertIsNone(solve_hold_current(lambda current: None, 3.9, 3., 5.))


class TestRunBudget(unittest.TestCase):

    def test_limits(self):
        cancel = threading.Event()
        budget = RunBudget.from_config(DiscretizationConfig(max_steps=10, max_simulated_time=100.), cancel)

        self.assertIsNone(budget.check(50., 3))
        self.assertEqual(budget.check(50., 10)[0], TerminationReason.TIMEOUT)
        self.assertEqual(budget.check(100., 3)[0], TerminationReason.TIMEOUT)

        cancel.set()
        self.assertEqual(budget.check(50., 3)[0], TerminationReason.CANCELLED)

    def test_wall_time(self):
        budget = RunBudget(max_wall_time=1.)
        self.assertIsNone(budget.check(0., 0))
        budget.started -= 10.
        self.assertEqual(budget.check(0., 0)[0], TerminationReason.TIMEOUT)

        budget.start()
        self.assertIsNone(budget.check(0., 0))


if __name__ == "__main__":
    unittest.main()
