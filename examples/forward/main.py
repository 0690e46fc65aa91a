"""Rate capability of the LG M50 reference cell with the full P2D model"""

import os

import numpy as onp
import matplotlib.pyplot as plt
plt.rcParams.update({
    "font.family":'serif',
    "font.size": 25,
    "lines.linewidth": 2.5
})

from cmsl.echemsim.catalog import reference_catalog
from cmsl.echemsim.design import reference_design
from cmsl.echemsim.dispatch import Fidelity
from cmsl.echemsim.para import DiscretizationConfig
from cmsl.echemsim.protocol import OperatingProtocol, ConstantCurrent
from cmsl.echemsim.wrap import SimulationRequest, simulate

# Cell & materials
design = reference_design()
catalog = reference_catalog()

# Mesh & time stepping
config = DiscretizationConfig(n_x=30, n_r=12, dt_max=20.)

if __name__ == "__main__":

    # Current loadings
    c_rates = [0.2, 0.5, 1.0, 1.5, 2.]

    results = []
    for c_rate in c_rates:
        protocol = OperatingProtocol(ConstantCurrent(c_rate), v_min=3.0)
        request = SimulationRequest(design, protocol, config, Fidelity.FULL)
        result = simulate(request, catalog)
        print(f"{c_rate} C: {result.reason.value} after {result.capacities[-1]:.3f} Ah")
        results.append(result)

    # Postprocessing
    script_dir = os.path.dirname(os.path.abspath(__file__))
    output_dir = os.path.join(script_dir, 'output')
    os.makedirs(output_dir, exist_ok=True)

    plt.figure(figsize=(10, 8))
    for c_rate, result in zip(c_rates, results):
        plt.plot(result.capacities, result.voltages, label=fr'${c_rate}\,\rm C$')
    plt.xlim([-0.2, 5.2])
    plt.ylim([2.9, 4.3])
    plt.xlabel(r'Discharge capacity $(\rm Ah)$')
    plt.ylabel(r'Terminal voltage $(\rm V)$')
    plt.legend(frameon=False, loc='lower left')
    output_path = os.path.join(output_dir, 'voltage.png')
    plt.savefig(output_path, dpi=300, format="png", bbox_inches='tight')

    onp.savez(os.path.join(output_dir, 'voltage.npz'),
              **{f'{c_rate}C': onp.stack([r.times, r.voltages, r.currents]) for c_rate, r in zip(c_rates, results)})
