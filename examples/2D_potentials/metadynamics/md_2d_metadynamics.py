#!/usr/bin/env python
from metad_bias.sampling_tools.metadynamics import MetaD
from metad_bias.interface.interfaceMD_2D import *
from metad_bias.units import *

################# Input Section ####################

# MD
seed = 42
nsteps = 500000  # number of MD steps
dt = 5.0e0  # stepsize in fs
target_temp = 300.0  # Kelvin
mass = 10.0  # a.u.

# CVs are the coordinates of the particle in the double well
cv_def = [["x", None], ["y", None]]

step_count = 0
coords = [80.0, 0]
the_md = MD(
    mass_in=mass,
    coords_in=coords,
    dt_in=dt,
    target_temp_in=target_temp,
    seed_in=seed,
)
the_bias = MetaD(
    the_md,
    cv_def,
    equil_temp=300.0,
    kb=kB_in_atomic,
    hill_height=1.0 / atomic_to_kJmol,
    hill_std=[2.5, 2.5],
    hill_drop_freq=500,
    bias_factor=10.0,
    grid_min=[50.0, -30.0],
    grid_max=[190.0, 30.0],
    grid_bin=[280, 120],
    grid_wstride=10000,
    grid_wfile="bias.grid",
    output_freq=100,
    restart=False,
)

the_md.calc_init()
the_bias.step_bias()
the_md.calc_etvp()


################# the MD loop ####################
print(
    "%11s\t%14s\t%14s\t%14s\t%14s\t%14s\t%14s"
    % ("time [fs]", "x", "y", "E_pot", "E_kin", "E_tot", "T")
)
print(
    "%11.2f\t%14.6f\t%14.6f\t%14.6f\t%14.6f\t%14.6f\t%14.6f"
    % (
        the_md.step * the_md.dt_fs,
        the_md.coords[0],
        the_md.coords[1],
        the_md.epot,
        the_md.ekin,
        the_md.epot + the_md.ekin,
        the_md.temp,
    )
)

while step_count < nsteps:
    the_md.step += 1
    step_count += 1

    the_md.propagate()
    the_md.calc()

    # forces of the MD are gradients of the potential
    the_md.forces -= the_bias.step_bias()

    the_md.up_momenta()
    the_md.calc_etvp()

    if the_md.step % 1000 == 0:
        print(
            "%11.2f\t%14.6f\t%14.6f\t%14.6f\t%14.6f\t%14.6f\t%14.6f"
            % (
                the_md.step * the_md.dt_fs,
                the_md.coords[0],
                the_md.coords[1],
                the_md.epot,
                the_md.ekin,
                the_md.epot + the_md.ekin,
                the_md.temp,
            )
        )

the_bias.close()
