import unittest

import numpy as onp

from cmsl.echemsim.catalog import reference_catalog
from cmsl.echemsim.design import CellDesign, ElectrodeGeometry, SeparatorGeometry, reference_design, resolve_cell
from cmsl.echemsim.errors import InvalidDesignError
from cmsl.echemsim.mesh import (CATHODE, SEPARATOR, ANODE, allocate_nodes, estimate_unknowns,
                                generate_mesh, radial_mesh)
from cmsl.echemsim.para import DiscretizationConfig
from cmsl.echemsim.prep import assign_init_sol, open_circuit_voltage


def modified_design(**changes):
    data = reference_design().to_dict()
    for key, value in changes.items():
        if isinstance(value, dict):
            data[key] = dict(data[key], **value)
        else:
            data[key] = value
    return CellDesign.from_dict(data)


class TestCellDesign(unittest.TestCase):

    def test_reference_cell(self):
        cell = resolve_cell(reference_design(), reference_catalog())
        # LG M50 is anode limited at about 5.09 Ah
        self.assertAlmostEqual(cell.capacity, 5.09, delta=0.01)
        self.assertAlmostEqual(cell.np_ratio, 0.907, delta=0.005)
        self.assertAlmostEqual(cell.current_density_1c, cell.current_1c / 0.1027)

    def test_layers_scale_capacity(self):
        one = resolve_cell(reference_design(1), reference_catalog())
        two = resolve_cell(reference_design(2), reference_catalog())
        self.assertAlmostEqual(two.capacity, 2 * one.capacity)
        self.assertAlmostEqual(two.current_density_1c, one.current_density_1c)

    def test_invalid_geometry(self):
        with self.assertRaises(InvalidDesignError):
            modified_design(cathode={'porosity': 1.2})
        with self.assertRaises(InvalidDesignError):
            modified_design(anode={'thickness': 0.})
        with self.assertRaises(InvalidDesignError):
            modified_design(anode={'porosity': 0.4, 'active_fraction': 0.7})
        with self.assertRaises(InvalidDesignError):
            modified_design(separator={'porosity': 0.})
        with self.assertRaises(InvalidDesignError):
            modified_design(area=-1.)
        with self.assertRaises(InvalidDesignError):
            modified_design(layers=0)

    def test_invalid_design_is_value_error(self):
        with self.assertRaises(ValueError):
            modified_design(cathode={'porosity': 0.})

    def test_particle_radius_override(self):
        design = modified_design(cathode={'particle_radius': 2e-6})
        cell = resolve_cell(design, reference_catalog())
        self.assertEqual(cell.cathode.particle_radius, 2e-6)
        self.assertAlmostEqual(cell.cathode.specific_area, 3 * 0.665 / 2e-6)

    def test_design_round_trip(self):
        design = reference_design(3)
        self.assertEqual(CellDesign.from_dict(design.to_dict()), design)
        self.assertIsInstance(design.cathode, ElectrodeGeometry)
        self.assertIsInstance(design.separator, SeparatorGeometry)


class TestMesh(unittest.TestCase):

    def setUp(self):
        self.cell = resolve_cell(reference_design(), reference_catalog())

    def test_allocate_nodes(self):
        for n_x in (3, 7, 20, 51):
            counts = allocate_nodes([75.6e-6, 12e-6, 85.2e-6], n_x)
            self.assertEqual(counts.sum(), n_x)
            self.assertTrue(onp.all(counts >= 1))
        with self.assertRaises(ValueError):
            allocate_nodes([1., 1., 1.], 2)

    def test_radial_mesh(self):
        faces, vol, g_face = radial_mesh(8)
        self.assertAlmostEqual(vol.sum(), 1. / 3.)
        self.assertEqual(len(g_face), 7)
        self.assertEqual(faces[-1], 1.)

    def test_layout_indices(self):
        config = DiscretizationConfig(n_x=12, n_r=6)
        layout = generate_mesh(self.cell, config)

        idx = onp.concatenate([layout.idx_cs.ravel(), layout.idx_ce, layout.idx_phis, layout.idx_phie])
        onp.testing.assert_array_equal(onp.sort(idx), onp.arange(layout.size))

        self.assertEqual(layout.size, estimate_unknowns(self.cell.design.thicknesses, 12, 6))
        self.assertEqual(layout.num_particles, layout.counts[CATHODE] + layout.counts[ANODE])
        self.assertFalse(onp.any(layout.particle_region == SEPARATOR))
        self.assertAlmostEqual(layout.x_faces[-1], sum(self.cell.design.thicknesses))

        y = onp.arange(layout.size, dtype=float)
        fields = layout.split(y)
        onp.testing.assert_array_equal(layout.pack(**fields), y)

    def test_initial_state_is_equilibrium(self):
        config = DiscretizationConfig(n_x=12, n_r=6)
        layout = generate_mesh(self.cell, config)
        y = assign_init_sol(self.cell, layout, 0.5)
        fields = layout.split(y)

        self.assertTrue(onp.all(fields['c_e'] == self.cell.electrolyte.initial_concentration))
        anode = layout.particle_region == ANODE
        onp.testing.assert_array_equal(fields['phi_s'][anode], 0.)

        ocv = open_circuit_voltage(self.cell, 0.5)
        self.assertTrue(3.4 < ocv < 4.0)
        onp.testing.assert_allclose(fields['phi_s'][~anode], ocv, atol=1e-12)


if __name__ == "__main__":
    unittest.main()
