"""
Model setup script for the snowy land benchmark.
Any setup value left out of a script uses its default
(see snowyland.core.configuration.DEFAULTS). The template lists every value
explicitly, set to its default.
Since this is a Python script, values can be computed, e.g. with numpy or
math. Only the modules snowyland, numpy, math and datetime may be imported,
and only setup names (or names starting with an underscore) may be assigned.
"""

"""
Domain

    nelements : tuple of int
        (horizontal, vertical). The first entry is the number of spectral
        elements along each edge of each of the six cubed-sphere panels; the
        second is the number of soil layers.

    npolynomial : int
        Polynomial order of the spectral elements. At 0 every element holds a
        single node, so no node is shared between elements.
"""
nelements = (101, 15)
npolynomial = 0

"""
Time stepping

    t0, tf : float
        Start and end of the simulation, in seconds since 1 January of
        <start_year>.

    dt : float
        Time step in s. Also sets the snow runoff timescale.

    driver_update_interval : float
        Interval in s between refreshes of the atmospheric and radiative
        forcing. The refresh times are fixed in advance from t0, so they do
        not depend on <dt>.

    newton_max_iters : int
        Number of Newton iterations per implicit stage. The Jacobian is
        recomputed on every iteration.
"""
_hours = 6
t0 = 0.0
tf = _hours * 3600.0
dt = 450.0
driver_update_interval = 3 * 3600.0
newton_max_iters = 3

"""
Input data

    start_year : int
        Calendar year that t = 0 refers to. Selects the ERA5 and MODIS LAI
        files.

    lowres_forcing : bool
        Use the low resolution ERA5 file.

    artifacts_dir : str, or None
        Root of the dataset tree. If None, the SNOWYLAND_ARTIFACTS environment
        variable is used, and failing that ~/.snowyland/artifacts. A synthetic
        tree can be written with the snowyland-synthetic-artifacts command.
"""
start_year = 2008
lowres_forcing = True
artifacts_dir = None

"""
Hardware

    device : str
        "auto", "cpu" or "gpu". "auto" runs on the CPU. "gpu" needs CuPy and a
        CUDA device; the model arrays stay in host memory, so it only adds
        device synchronisation and a CUDA profile around the host work.

    disable_memory_pool : bool
        On a GPU, allocate directly from the driver rather than from CuPy's
        memory pool.

    use_numba : bool
        Compile the column kernels with Numba before running.

    cores : int, or "all"
        Number of threads for Numba.
"""
device = "auto"
disable_memory_pool = True
use_numba = False
cores = "all"

"""
Benchmark

    max_profiling_time : float
        Time budget in s for the timed solves in flamegraph mode.

    max_profiling_samples : int
        Maximum number of timed solves in flamegraph mode.

    previous_best_time : float
        Mean time in s of a solve in the best previous benchmark run. Only
        used inside the benchmark pipeline.

    benchmark_pipeline_slug : str
        The performance check runs when the BUILDKITE_PIPELINE_SLUG
        environment variable equals this.

    output_root : str
        Directory in which the snowy_land_benchmark_<device> output folder is
        created.
"""
max_profiling_time = 500
max_profiling_samples = 100
previous_best_time = 0.67
benchmark_pipeline_slug = "snowyland-benchmark"
output_root = "."
