import dataclasses
import unittest

import numpy as onp

from cmsl.echemsim.catalog import LIPF6, LIPF6_TABULATED, reference_catalog
from cmsl.echemsim.design import reference_design, resolve_cell
from cmsl.echemsim.integrator import P2DIntegrator
from cmsl.echemsim.para import DiscretizationConfig
from cmsl.echemsim.protocol import OperatingProtocol, ConstantCurrent


class TestJacobian(unittest.TestCase):

    electrolyte = LIPF6

    @classmethod
    def setUpClass(cls):
        design = dataclasses.replace(reference_design(), electrolyte_material=cls.electrolyte)
        cell = resolve_cell(design, reference_catalog())
        protocol = OperatingProtocol(ConstantCurrent(2.), initial_soc=0.8)
        config = DiscretizationConfig(n_x=6, n_r=4)
        integrator = P2DIntegrator(cell, protocol, config)

        cls.y_old = integrator.y.copy()
        steps = integrator.steps()
        for _ in range(4):
            next(steps)
        steps.close()

        cls.kernel = integrator.kernel
        cls.jacobian = integrator.jacobian
        cls.y = integrator.y.copy()
        cls.i_app = integrator.current / cell.plate_area
        cls.dt = 5.

    def fd_jacobian(self):
        kernel, y = self.kernel, self.y
        n = len(y)
        J = onp.zeros((n, n))
        for c in range(n):
            h = 1e-6 * max(abs(y[c]), kernel.scales[c])
            yp, ym = y.copy(), y.copy()
            yp[c] += h
            ym[c] -= h
            J[:, c] = (kernel.residual(yp, self.y_old, self.i_app, self.dt)
                       - kernel.residual(ym, self.y_old, self.i_app, self.dt)) / (2 * h)
        return J

    def test_matches_finite_differences(self):
        J = self.jacobian.build(self.y, self.dt).toarray()
        J_fd = self.fd_jacobian()
        scale = onp.abs(J_fd).max()
        onp.testing.assert_allclose(J, J_fd, rtol=1e-4, atol=1e-6 * scale)

    def test_fixed_pattern(self):
        A = self.jacobian.build(self.y, self.dt)
        B = self.jacobian.build(self.y_old, 0.5 * self.dt)
        self.assertEqual(A.nnz, self.jacobian.nnz)
        onp.testing.assert_array_equal(A.indices, B.indices)
        onp.testing.assert_array_equal(A.indptr, B.indptr)
        self.assertEqual(A.shape, (self.kernel.layout.size,) * 2)


class TestJacobianTabulatedElectrolyte(TestJacobian):

    electrolyte = LIPF6_TABULATED

    def test_transport_depends_on_concentration(self):
        ce = self.y[self.kernel.layout.idx_ce]
        self.assertGreater(ce.max() - ce.min(), 1.)
        self.assertTrue(self.kernel.variable_transport)
        for slope in self.kernel.transmissibility_slopes(ce):
            self.assertTrue(onp.any(slope != 0.))

        # reference transmissibilities are those of the bulk electrolyte
        tD, tK = self.kernel.transmissibilities(onp.full(len(ce), self.kernel.ce0))
        onp.testing.assert_allclose(tK, self.kernel.tK)
        self.assertFalse(onp.allclose(self.kernel.transmissibilities(ce)[1], tK))


if __name__ == "__main__":
    unittest.main()
