# conversions
J_to_atomic = 1.0 / 4.359744e-18
atomic_to_kJmol = 2625.499639
atomic_to_K = 315775.04e0
atomic_to_fs = 1.0327503e0
atomic_to_fs_times_sqrt_amu2au = atomic_to_fs

# constants
kB_in_SI = 1.380648e-23
N_A = 6.02214076e23
kB_in_atomic = kB_in_SI * J_to_atomic
kB_in_kJmol = kB_in_SI * N_A / 1000.0
