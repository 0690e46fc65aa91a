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
"""Material parameters and their resolution to solver form."""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Tuple

import jax
import jax.numpy as np
import numpy as onp

from scipy.interpolate import PchipInterpolator

from .errors import InvalidMaterialError
from .para import R, T_REF

jax.config.update("jax_enable_x64", True)


# allowed reversal of an OCP table (V)
OCP_MONOTONIC_TOL = 1e-3


class Role(str, Enum):
    CATHODE = 'cathode'
    ANODE = 'anode'
    ELECTROLYTE = 'electrolyte'
    SEPARATOR = 'separator'


REQUIRED_FIELDS = {
    Role.CATHODE: ('diffusivity', 'conductivity', 'particle_radius', 'c_max', 'exchange_current'),
    Role.ANODE: ('diffusivity', 'conductivity', 'particle_radius', 'c_max', 'exchange_current'),
    Role.ELECTROLYTE: ('diffusivity', 'conductivity', 'transference_number', 'initial_concentration'),
    Role.SEPARATOR: (),
}

# tabulated properties, stored as ((x, y), ...)
TABLE_FIELDS = ('ocp', 'conductivity_table', 'diffusivity_table')

# electrolyte scalars a table can stand in for
TABLE_OF = {'conductivity': 'conductivity_table', 'diffusivity': 'diffusivity_table'}


@dataclass(frozen=True)
class MaterialSpec:
    '''
    Catalog record of one material.

    diffusivity and conductivity are the solid values for electrodes and the
    bulk values for an electrolyte. ocp is a sequence of (soc, voltage)
    samples with increasing soc, where soc is the particle lithiation
    c_s/c_max. stoichiometry is (theta at 0% cell SOC, theta at 100% cell
    SOC). bruggeman is the exponent of the porous region the material
    builds (electrodes and separator).

    An electrolyte may carry conductivity_table and diffusivity_table,
    (c_e, value) samples with increasing c_e in mol/m^3. They replace the
    scalar bulk values, which then only need to be given when no table is.
    '''

    name:str
    role:Role
    diffusivity:Optional[float] = None              # m^2/s
    conductivity:Optional[float] = None             # S/m
    particle_radius:Optional[float] = None          # m
    c_max:Optional[float] = None                    # mol/m^3
    exchange_current:Optional[float] = None         # A/m^2 at theta=0.5, c_e=c_e0
    alpha_a:float = 0.5
    alpha_c:float = 0.5
    activation_energy:float = 0.                    # J/mol
    ocp:Optional[Tuple[Tuple[float, float], ...]] = None
    conductivity_table:Optional[Tuple[Tuple[float, float], ...]] = None
    diffusivity_table:Optional[Tuple[Tuple[float, float], ...]] = None
    stoichiometry:Optional[Tuple[float, float]] = None
    transference_number:Optional[float] = None
    initial_concentration:Optional[float] = None    # mol/m^3
    bruggeman:float = 1.5
    reference_temperature:float = T_REF

    def __post_init__(self):
        # keep the record hashable whatever sequence type the catalog hands over
        object.__setattr__(self, 'role', Role(self.role))
        for field_name in TABLE_FIELDS:
            table = getattr(self, field_name)
            if table is not None:
                object.__setattr__(self, field_name, tuple((float(x), float(y)) for x, y in table))
        if self.stoichiometry is not None:
            object.__setattr__(self, 'stoichiometry', tuple(float(s) for s in self.stoichiometry))

    def to_dict(self):
        data = asdict(self)
        data['role'] = self.role.value
        for field_name in TABLE_FIELDS:
            if getattr(self, field_name) is not None:
                data[field_name] = [list(p) for p in getattr(self, field_name)]
        if self.stoichiometry is not None:
            data['stoichiometry'] = list(self.stoichiometry)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(**data)


class PchipCurve:
    '''
    Monotone piecewise-cubic (PCHIP) interpolant of tabulated samples.

    The coefficients are computed once with scipy and evaluated with
    jax.numpy so the curve can be used inside jitted kernels. Subclasses
    choose how the curve continues outside the table.
    '''

    def __init__(self, x, y):

        self.x = onp.asarray(x, dtype=onp.float64)
        self.y = onp.asarray(y, dtype=onp.float64)

        pchip = PchipInterpolator(self.x, self.y)
        # (4, num_intervals), highest power first
        coeffs = onp.asarray(pchip.c)
        h = self.x[-1] - self.x[-2]

        self._x = np.asarray(self.x)
        self._c = np.asarray(coeffs)
        self._y_lo = float(self.y[0])
        self._y_hi = float(self.y[-1])
        self._slope_lo = float(coeffs[2, 0])
        self._slope_hi = float(3*coeffs[0, -1]*h**2 + 2*coeffs[1, -1]*h + coeffs[2, -1])

    def locate(self, u):
        u = np.asarray(u, dtype=np.float64)
        k = np.clip(np.searchsorted(self._x, u, side='right') - 1, 0, self._x.shape[0] - 2)
        return u, k, u - self._x[k]

    def inside(self, u):
        u, k, d = self.locate(u)
        c = self._c
        return ((c[0, k]*d + c[1, k])*d + c[2, k])*d + c[3, k]

    def inside_slope(self, u):
        u, k, d = self.locate(u)
        c = self._c
        return (3*c[0, k]*d + 2*c[1, k])*d + c[2, k]


class OCPCurve(PchipCurve):
    '''
    Open-circuit potential U(soc); outside the table the end slopes are
    extended linearly.
    '''

    def __init__(self, soc, voltage):
        super().__init__(soc, voltage)
        self.soc = self.x
        self.voltage = self.y

    def __call__(self, sto):

        sto = np.asarray(sto, dtype=np.float64)
        x = self._x

        lo = self._y_lo + self._slope_lo * (sto - x[0])
        hi = self._y_hi + self._slope_hi * (sto - x[-1])

        return np.where(sto < x[0], lo, np.where(sto > x[-1], hi, self.inside(sto)))


class TransportCurve(PchipCurve):
    '''
    Electrolyte property X(c_e), e.g. conductivity or diffusivity; held at
    the end values outside the table.
    '''

    def __call__(self, ce):
        ce = np.clip(np.asarray(ce, dtype=np.float64), self._x[0], self._x[-1])
        return self.inside(ce)

    def derivative(self, ce):
        ce = np.asarray(ce, dtype=np.float64)
        out = (ce < self._x[0]) | (ce > self._x[-1])
        return np.where(out, 0., self.inside_slope(ce))


@dataclass(frozen=True)
class ResolvedMaterial:

    name:str
    role:Role
    temperature:float
    diffusivity:Optional[float]
    conductivity:Optional[float]
    particle_radius:Optional[float]
    c_max:Optional[float]
    exchange_current:Optional[float]
    alpha_a:float
    alpha_c:float
    bruggeman:float
    transference_number:Optional[float]
    initial_concentration:Optional[float]
    ocp:Optional[OCPCurve]
    theta_0:Optional[float]             # stoichiometry at 0% SOC
    theta_100:Optional[float]           # stoichiometry at 100% SOC
    spec:MaterialSpec
    conductivity_curve:Optional[TransportCurve] = None     # kappa(c_e), S/m
    diffusivity_curve:Optional[TransportCurve] = None      # D(c_e), m^2/s

    @property
    def is_electrode(self):
        return self.role in (Role.CATHODE, Role.ANODE)

    def stoichiometry_at(self, soc):
        return self.theta_0 + soc * (self.theta_100 - self.theta_0)


def arrhenius(value, activation_energy, temperature, reference_temperature=T_REF):
    '''
    X(T) = X_ref * exp(-E_a/R * (1/T - 1/T_ref))
    '''
    return value * onp.exp(-activation_energy / R * (1./temperature - 1./reference_temperature))


def check_ocp_table(name, table):

    if table is None or len(table) < 2:
        raise InvalidMaterialError(f"{name}: OCP table needs at least two samples")

    data = onp.asarray(table, dtype=onp.float64)
    soc, voltage = data[:, 0], data[:, 1]

    if not onp.all(onp.isfinite(data)):
        raise InvalidMaterialError(f"{name}: OCP table contains non-finite values")

    if not onp.all(onp.diff(soc) > 0):
        raise InvalidMaterialError(f"{name}: OCP state-of-charge samples must be strictly increasing")

    direction = onp.sign(voltage[-1] - voltage[0])
    if direction == 0:
        raise InvalidMaterialError(f"{name}: OCP curve is flat end to end")

    reversal = onp.max(-direction * onp.diff(voltage))
    if reversal > OCP_MONOTONIC_TOL:
        raise InvalidMaterialError(
            f"{name}: OCP curve is non-monotonic (reversal of {reversal*1e3:.2f} mV)")

    return soc, voltage


def check_transport_table(name, field_name, table):

    if len(table) < 2:
        raise InvalidMaterialError(f"{name}: {field_name} needs at least two samples")

    data = onp.asarray(table, dtype=onp.float64)
    ce, value = data[:, 0], data[:, 1]

    if not onp.all(onp.isfinite(data)):
        raise InvalidMaterialError(f"{name}: {field_name} contains non-finite values")
    if ce[0] < 0 or not onp.all(onp.diff(ce) > 0):
        raise InvalidMaterialError(f"{name}: {field_name} concentrations must be non-negative and strictly increasing")
    if not onp.all(value > 0):
        raise InvalidMaterialError(f"{name}: {field_name} values must be positive")

    return ce, value


def resolve_material(spec, temperature, volume_fractions=()):
    '''
    Validate a catalog record and evaluate it at the operating temperature.

    volume_fractions are the porosity/volume-fraction values the material
    is used with; each must lie in (0, 1).
    '''

    name = spec.name

    if temperature <= 0:
        raise ValueError(f"temperature must be positive, got {temperature}")

    for field_name in REQUIRED_FIELDS[spec.role]:
        value = getattr(spec, field_name)
        if value is None and field_name in TABLE_OF and getattr(spec, TABLE_OF[field_name]) is not None:
            continue
        if value is None:
            raise InvalidMaterialError(f"{name}: missing required property '{field_name}'")
        if not onp.isfinite(value) or value <= 0:
            raise InvalidMaterialError(f"{name}: property '{field_name}' must be positive, got {value}")

    for fraction in volume_fractions:
        if not 0 < fraction < 1:
            raise InvalidMaterialError(f"{name}: volume fraction {fraction} outside (0, 1)")

    if not (0 < spec.alpha_a <= 1 and 0 < spec.alpha_c <= 1):
        raise InvalidMaterialError(f"{name}: charge-transfer coefficients must be in (0, 1]")
    if spec.activation_energy < 0:
        raise InvalidMaterialError(f"{name}: activation energy must be non-negative")
    if spec.bruggeman < 0:
        raise InvalidMaterialError(f"{name}: Bruggeman exponent must be non-negative")
    if spec.reference_temperature <= 0:
        raise InvalidMaterialError(f"{name}: reference temperature must be positive")

    if spec.role == Role.ELECTROLYTE and not 0 < spec.transference_number < 1:
        raise InvalidMaterialError(f"{name}: transference number must be in (0, 1)")

    correct = lambda value: (None if value is None else
                             float(arrhenius(value, spec.activation_energy, temperature,
                                             spec.reference_temperature)))

    ocp = None
    theta_0 = theta_100 = None

    if spec.role in (Role.CATHODE, Role.ANODE):

        soc, voltage = check_ocp_table(name, spec.ocp)
        ocp = OCPCurve(soc, voltage)

        if spec.stoichiometry is None or len(spec.stoichiometry) != 2:
            raise InvalidMaterialError(f"{name}: missing stoichiometry window")
        theta_0, theta_100 = spec.stoichiometry
        if not (0 <= theta_0 <= 1 and 0 <= theta_100 <= 1) or theta_0 == theta_100:
            raise InvalidMaterialError(f"{name}: stoichiometry window {spec.stoichiometry} is invalid")

    curves = {}

    for field_name, table_name in TABLE_OF.items():
        table = getattr(spec, table_name)
        if table is None:
            continue
        if spec.role != Role.ELECTROLYTE:
            raise InvalidMaterialError(f"{name}: only an electrolyte can carry {table_name}")
        ce, value = check_transport_table(name, table_name, table)
        curves[field_name] = TransportCurve(ce, arrhenius(value, spec.activation_energy, temperature,
                                                          spec.reference_temperature))

    # bulk values at the initial concentration where a table is given
    bulk = {field_name: (float(curves[field_name](spec.initial_concentration)) if field_name in curves
                         else correct(getattr(spec, field_name)))
            for field_name in TABLE_OF}

    return ResolvedMaterial(name=name,
                            role=spec.role,
                            temperature=float(temperature),
                            diffusivity=bulk['diffusivity'],
                            conductivity=bulk['conductivity'],
                            particle_radius=spec.particle_radius,
                            c_max=spec.c_max,
                            exchange_current=correct(spec.exchange_current),
                            alpha_a=spec.alpha_a,
                            alpha_c=spec.alpha_c,
                            bruggeman=spec.bruggeman,
                            transference_number=spec.transference_number,
                            initial_concentration=spec.initial_concentration,
                            ocp=ocp,
                            theta_0=theta_0,
                            theta_100=theta_100,
                            spec=spec,
                            conductivity_curve=curves.get('conductivity'),
                            diffusivity_curve=curves.get('diffusivity'))


# -------------------- catalog --------------------

class MaterialCatalog:
    '''
    Read-only lookup of MaterialSpec by identifier
    '''

    def get(self, material_id):
        raise NotImplementedError


class InMemoryCatalog(MaterialCatalog):

    def __init__(self, specs=()):
        self._specs = {spec.name: spec for spec in specs}

    def get(self, material_id):
        try:
            return self._specs[material_id]
        except KeyError:
            raise InvalidMaterialError(f"unknown material '{material_id}'") from None

    def ids(self):
        return sorted(self._specs)

    def __contains__(self, material_id):
        return material_id in self._specs


def resolve_catalog_material(catalog, material_id, role, temperature, volume_fractions=()):

    spec = catalog.get(material_id)

    if spec.role != Role(role):
        raise InvalidMaterialError(
            f"material '{material_id}' has role '{spec.role.value}', expected '{Role(role).value}'")

    return resolve_material(spec, temperature, volume_fractions)
