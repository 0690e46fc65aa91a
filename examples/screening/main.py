"""Electrode thickness screening: SPM batch, with one P2D check of the best design"""

import os

import numpy as onp
import matplotlib.pyplot as plt
plt.rcParams.update({
    "font.family":'serif',
    "font.size": 25,
    "lines.linewidth": 2.5
})

from cmsl.echemsim.catalog import reference_catalog
from cmsl.echemsim.design import CellDesign, reference_design
from cmsl.echemsim.dispatch import Fidelity, execute_batch
from cmsl.echemsim.para import DiscretizationConfig
from cmsl.echemsim.protocol import OperatingProtocol, ConstantCurrent
from cmsl.echemsim.wrap import SimulationRequest, simulate


def scaled_design(factor):
    '''
    Reference stack with both electrodes scaled by factor (N/P ratio kept)
    '''
    data = reference_design().to_dict()
    for electrode in ('cathode', 'anode'):
        data[electrode] = dict(data[electrode], thickness=factor * data[electrode]['thickness'])
    return CellDesign.from_dict(data)


if __name__ == "__main__":

    catalog = reference_catalog()
    protocol = OperatingProtocol(ConstantCurrent(1.), v_min=3.0)
    config = DiscretizationConfig(n_r=12)

    factors = onp.linspace(0.5, 1.5, 11)
    requests = [SimulationRequest(scaled_design(f), protocol, config) for f in factors]

    # batch of AUTO requests -> SPM, in process
    results = execute_batch(requests, catalog)
    capacities = onp.array([r.capacities[-1] for r in results])

    best = int(onp.argmax(capacities))
    print(f"Best thickness factor {factors[best]:.2f}: {capacities[best]:.3f} Ah (SPM)")

    check = simulate(SimulationRequest(requests[best].design, protocol, config, Fidelity.FULL), catalog)
    print(f"P2D check: {check.capacities[-1]:.3f} Ah, {check.reason.value}")

    # Postprocessing
    script_dir = os.path.dirname(os.path.abspath(__file__))
    output_dir = os.path.join(script_dir, 'output')
    os.makedirs(output_dir, exist_ok=True)

    plt.figure(figsize=(10, 8))
    plt.plot(factors, capacities, marker='o')
    plt.scatter([factors[best]], [check.capacities[-1]], s=120, color='C1', label='P2D')
    plt.xlabel(r'Electrode thickness factor')
    plt.ylabel(r'1C capacity to 3.0 V $(\rm Ah)$')
    plt.legend(frameon=False, loc='lower right')
    plt.savefig(os.path.join(output_dir, 'screening.png'), dpi=300, format="png", bbox_inches='tight')
