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
"""Cell design and its resolution against a material catalog."""

from dataclasses import dataclass, asdict
from typing import Optional

from .catalog import NMC811, GRAPHITE, LIPF6, SEPARATOR
from .errors import InvalidDesignError
from .materials import MaterialSpec, Role, ResolvedMaterial, resolve_catalog_material
from .para import F, T_REF


# tolerance on porosity + active fraction <= 1
FRACTION_TOL = 1e-9


@dataclass(frozen=True)
class ElectrodeGeometry:

    thickness:float                         # m
    porosity:float                          # electrolyte volume fraction
    active_fraction:Optional[float] = None  # defaults to 1 - porosity (no filler)
    particle_radius:Optional[float] = None  # overrides the material value

    @property
    def solid_fraction(self):
        if self.active_fraction is None:
            return 1. - self.porosity
        return self.active_fraction


@dataclass(frozen=True)
class SeparatorGeometry:

    thickness:float
    porosity:float


@dataclass(frozen=True)
class CellDesign:
    '''
    Geometry of one electrode stack plus the catalog ids of its materials.

    Stack order along x is cathode | separator | anode. `layers` identical
    stacks are connected in parallel.
    '''

    cathode:ElectrodeGeometry
    separator:SeparatorGeometry
    anode:ElectrodeGeometry
    area:float                              # m^2 per layer
    cathode_material:str
    anode_material:str
    electrolyte_material:str
    separator_material:str
    layers:int = 1

    def __post_init__(self):

        for name, geo in (('cathode', self.cathode), ('separator', self.separator), ('anode', self.anode)):

            if not geo.thickness > 0:
                raise InvalidDesignError(f"{name} thickness must be positive, got {geo.thickness}")
            if not 0 < geo.porosity < 1:
                raise InvalidDesignError(f"{name} porosity must be in (0, 1), got {geo.porosity}")

            if isinstance(geo, ElectrodeGeometry):
                if not 0 < geo.solid_fraction < 1:
                    raise InvalidDesignError(
                        f"{name} active fraction must be in (0, 1), got {geo.solid_fraction}")
                if geo.porosity + geo.solid_fraction > 1 + FRACTION_TOL:
                    raise InvalidDesignError(f"{name} porosity + active fraction exceeds 1")
                if geo.particle_radius is not None and not geo.particle_radius > 0:
                    raise InvalidDesignError(f"{name} particle radius must be positive")

        if not self.area > 0:
            raise InvalidDesignError(f"area must be positive, got {self.area}")
        if int(self.layers) != self.layers or self.layers < 1:
            raise InvalidDesignError(f"layers must be a positive integer, got {self.layers}")

    @property
    def thicknesses(self):
        return (self.cathode.thickness, self.separator.thickness, self.anode.thickness)

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        data['cathode'] = ElectrodeGeometry(**data['cathode'])
        data['separator'] = SeparatorGeometry(**data['separator'])
        data['anode'] = ElectrodeGeometry(**data['anode'])
        return cls(**data)


def reference_design(n_layers=1):
    '''
    LG M50 (Chen 2020) single-layer stack, coated with particles of half the
    Chen 2020 radii so that a 1C discharge to 2.5 V uses the full window
    '''
    return CellDesign(cathode=ElectrodeGeometry(75.6e-6, 0.335, 0.665, particle_radius=2.61e-6),
                      separator=SeparatorGeometry(12e-6, 0.47),
                      anode=ElectrodeGeometry(85.2e-6, 0.25, 0.75, particle_radius=2.93e-6),
                      area=0.1027,
                      cathode_material=NMC811,
                      anode_material=GRAPHITE,
                      electrolyte_material=LIPF6,
                      separator_material=SEPARATOR,
                      layers=n_layers)


# -------------------- resolved cell --------------------

@dataclass(frozen=True)
class Region:

    name:str
    thickness:float
    porosity:float
    bruggeman:float
    material:Optional[ResolvedMaterial] = None
    solid_fraction:float = 0.
    particle_radius:Optional[float] = None
    spec:Optional[MaterialSpec] = None      # catalog record of the host material

    @property
    def has_particle(self):
        return self.material is not None

    @property
    def specific_area(self):
        # (1/m) particle surface per electrode volume
        return 3 * self.solid_fraction / self.particle_radius if self.has_particle else 0.

    def transport_factor(self):
        return self.porosity**self.bruggeman

    def solid_factor(self):
        return self.solid_fraction**self.bruggeman

    def capacity(self, area):
        '''
        (Ah) lithium exchanged between the 0% and 100% stoichiometries
        '''
        mat = self.material
        window = abs(mat.theta_100 - mat.theta_0)
        return F * self.solid_fraction * self.thickness * area * mat.c_max * window / 3600.


@dataclass(frozen=True)
class ResolvedCell:
    '''
    Per-run parameter arena: a CellDesign evaluated against a catalog at one
    temperature. Shared read-only by every step of the run.
    '''

    design:CellDesign
    temperature:float
    cathode:Region
    separator:Region
    anode:Region
    electrolyte:ResolvedMaterial

    @property
    def regions(self):
        return (self.cathode, self.separator, self.anode)

    @property
    def plate_area(self):
        return self.design.area * self.design.layers

    @property
    def capacity(self):
        '''
        (Ah) theoretical capacity, limited by the smaller electrode
        '''
        return min(self.cathode.capacity(self.plate_area), self.anode.capacity(self.plate_area))

    @property
    def np_ratio(self):
        return self.anode.capacity(self.plate_area) / self.cathode.capacity(self.plate_area)

    @property
    def current_1c(self):
        # (A)
        return self.capacity

    @property
    def current_density_1c(self):
        # (A/m^2) per plate
        return self.current_1c / self.plate_area

    def material_specs(self):
        '''
        MaterialSpecs by catalog id, enough to rebuild the cell without the catalog
        '''
        specs = [region.spec for region in self.regions] + [self.electrolyte.spec]
        return {spec.name: spec for spec in specs}


def resolve_cell(design, catalog, temperature=T_REF):
    '''
    Resolve the four materials of a design once, at the operating temperature.

    Raises InvalidMaterialError for bad or mismatched catalog data.
    '''

    def electrode(name, geo, material_id, role):

        material = resolve_catalog_material(catalog, material_id, role, temperature,
                                            (geo.porosity, geo.solid_fraction))

        radius = geo.particle_radius if geo.particle_radius is not None else material.particle_radius

        return Region(name=name,
                      thickness=geo.thickness,
                      porosity=geo.porosity,
                      bruggeman=material.bruggeman,
                      material=material,
                      solid_fraction=geo.solid_fraction,
                      particle_radius=radius,
                      spec=material.spec)

    cathode = electrode('cathode', design.cathode, design.cathode_material, Role.CATHODE)
    anode = electrode('anode', design.anode, design.anode_material, Role.ANODE)

    sep_material = resolve_catalog_material(catalog, design.separator_material, Role.SEPARATOR,
                                            temperature, (design.separator.porosity,))
    separator = Region(name='separator',
                       thickness=design.separator.thickness,
                       porosity=design.separator.porosity,
                       bruggeman=sep_material.bruggeman,
                       spec=sep_material.spec)

    electrolyte = resolve_catalog_material(catalog, design.electrolyte_material, Role.ELECTROLYTE,
                                           temperature)

    return ResolvedCell(design=design,
                        temperature=float(temperature),
                        cathode=cathode,
                        separator=separator,
                        anode=anode,
                        electrolyte=electrolyte)
