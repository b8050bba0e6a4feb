"""
A quick run on a 4 x 4 element cubed sphere with 5 soil layers, for trying the
benchmark on a laptop. Write the synthetic datasets first:

    snowyland-synthetic-artifacts ./artifacts --resolution 10

then run from this folder:

    snowyland-benchmark --profiler flamegraph -i model_setup.py
"""

nelements = (4, 5)
tf = 2 * 3600.0
dt = 450.0
device = "cpu"
artifacts_dir = "./artifacts"
max_profiling_time = 60
max_profiling_samples = 5
