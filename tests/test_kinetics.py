import unittest

import numpy as onp

from cmsl.echemsim.kinetics import calcJ0, butler_volmer, inverse_butler_volmer
from cmsl.echemsim.para import T_REF


class TestButlerVolmer(unittest.TestCase):

    def test_antisymmetry(self):
        eta = onp.linspace(-0.3, 0.3, 61)
        j = onp.asarray(butler_volmer(2.5, eta, 0.5, 0.5, T_REF))
        onp.testing.assert_allclose(j, -j[::-1], rtol=1e-12, atol=1e-12)
        self.assertEqual(float(butler_volmer(2.5, 0., 0.5, 0.5, T_REF)), 0.)

    def test_sign(self):
        # anodic overpotential oxidizes
        self.assertGreater(float(butler_volmer(1., 0.05, 0.5, 0.5, T_REF)), 0.)
        self.assertLess(float(butler_volmer(1., -0.05, 0.3, 0.7, T_REF)), 0.)

    def test_exchange_current(self):
        self.assertAlmostEqual(float(calcJ0(3., 1., 0.5, 0.5, 0.5)), 3.)
        # finite at an empty surface
        self.assertGreater(float(calcJ0(3., 1., 0., 0.5, 0.5)), 0.)
        self.assertLess(float(calcJ0(3., 0.25, 0.5, 0.5, 0.5)), 3.)

    def test_inverse_symmetric(self):
        for j in (-20., -0.1, 0., 0.7, 35.):
            eta = inverse_butler_volmer(j, 1.3, 0.5, 0.5, T_REF)
            self.assertAlmostEqual(float(butler_volmer(1.3, eta, 0.5, 0.5, T_REF)), j, places=9)

    def test_inverse_asymmetric(self):
        for j in (-20., -0.1, 0.7, 35.):
            eta = inverse_butler_volmer(j, 1.3, 0.3, 0.7, T_REF)
            self.assertAlmostEqual(float(butler_volmer(1.3, eta, 0.3, 0.7, T_REF)), j, places=6)
        self.assertEqual(inverse_butler_volmer(0., 1.3, 0.3, 0.7, T_REF), 0.)


if __name__ == "__main__":
    unittest.main()
