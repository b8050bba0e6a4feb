"""
Run configuration for the snowy land benchmark: command line parsing, setup
defaults and validation, device/process startup, and the optional Numba
compilation of the column kernels.
"""

import argparse
import enum
import functools
import importlib.util
import os
import warnings
from dataclasses import dataclass
import numpy as np
import pathos
from snowyland.core.errors import ConfigurationError

MODULE_NAME = "snowyland.core.configuration"

# Values used for any setup name a model setup script does not define.
DEFAULTS = {
    "t0": 0.0,
    "tf": 21600.0,
    "dt": 450.0,
    "nelements": (101, 15),
    "npolynomial": 0,
    "start_year": 2008,
    "lowres_forcing": True,
    "driver_update_interval": 10800.0,
    "newton_max_iters": 3,
    "device": "auto",
    "disable_memory_pool": True,
    "use_numba": False,
    "cores": "all",
    "max_profiling_time": 500,
    "max_profiling_samples": 100,
    "previous_best_time": 0.67,
    "benchmark_pipeline_slug": "snowyland-benchmark",
    "output_root": ".",
    "artifacts_dir": None,
}


def parse_args(argv=None):
    """
    Parse the command line. ``--profiler`` is passed through unchecked, since
    the benchmark driver reports an unsupported choice itself.
    """
    parser = argparse.ArgumentParser(
        prog="snowyland-benchmark",
        description="Run and benchmark the global soil-canopy-snow land model.",
    )
    parser.add_argument(
        "--profiler",
        help="Profiler option: nsight or flamegraph",
        default="flamegraph",
    )
    parser.add_argument(
        "--input_path",
        "-i",
        help="Absolute or relative path to an optional model setup script, in the format of <model_setup.py>",
        default=None,
        required=False,
    )
    return parser.parse_args(argv)


def create_defaults_for_missing_flags(model_setup):
    """
    Set every setup value that ``model_setup`` does not define to its entry in
    ``DEFAULTS``, so that a setup script only needs to contain what it changes.

    Parameters
    ----------
    model_setup : ModelSetup
        Loaded model setup (see ``snowyland.core.load_model_setup``).

    Returns
    -------
    None
    """
    for key, value in DEFAULTS.items():
        if not hasattr(model_setup, key):
            setattr(model_setup, key, value)
            print(
                f"{MODULE_NAME}.create_defaults_for_missing_flags: Setting missing"
                f" model_setup attribute <{key}> to default value <{value}>"
            )


def handle_invalid_values(model_setup):
    """
    Raise ConfigurationError for setup values the model cannot run with.
    Call after ``create_defaults_for_missing_flags``.
    """
    func_name = f"{MODULE_NAME}.handle_invalid_values"
    if model_setup.dt <= 0:
        raise ConfigurationError(f"{func_name}: dt must be positive, not {model_setup.dt}")
    if model_setup.tf <= model_setup.t0:
        raise ConfigurationError(
            f"{func_name}: tf ({model_setup.tf}) must be later than t0 ({model_setup.t0})"
        )
    nelements = model_setup.nelements
    if (
        not isinstance(nelements, (tuple, list))
        or len(nelements) != 2
        or not all(isinstance(n, (int, np.integer)) and n > 0 for n in nelements)
    ):
        raise ConfigurationError(
            f"{func_name}: nelements must be a pair of positive integers"
            f" (horizontal, vertical), not {nelements}"
        )
    if model_setup.driver_update_interval <= 0:
        raise ConfigurationError(
            f"{func_name}: driver_update_interval must be positive, not"
            f" {model_setup.driver_update_interval}"
        )
    valid_devices = ["auto", "cpu", "gpu"]
    if str(model_setup.device).lower() not in valid_devices:
        raise ConfigurationError(
            f"{func_name}: device must be one of {valid_devices}, not {model_setup.device}"
        )
    for attr in ["max_profiling_time", "max_profiling_samples", "newton_max_iters"]:
        if getattr(model_setup, attr) <= 0:
            raise ConfigurationError(
                f"{func_name}: <{attr}> must be positive, not {getattr(model_setup, attr)}"
            )


class Device(enum.Enum):
    CPU = "cpu"
    GPU = "gpu"

    @property
    def suffix(self):
        return self.value


def gpu_available():
    """True if CuPy is installed and can see at least one CUDA device."""
    if importlib.util.find_spec("cupy") is None:
        return False
    import cupy

    try:
        return cupy.cuda.runtime.getDeviceCount() > 0
    except cupy.cuda.runtime.CUDARuntimeError:
        return False


def resolve_device(requested="auto"):
    """
    Pick the device once at startup. The model state lives in NumPy arrays,
    so ``"auto"`` always runs on the CPU. An explicit ``"gpu"`` request
    selects the GPU when one is usable, which only adds device
    synchronisation and a CUDA trace around host work; without a GPU it
    falls back to the CPU with a warning.
    """
    requested = str(requested).lower()
    if requested != "gpu":
        return Device.CPU
    if not gpu_available():
        warnings.warn(
            f"{MODULE_NAME}.resolve_device: A GPU was requested but CuPy or a CUDA"
            " device is not available. Running on the CPU instead."
        )
        return Device.CPU
    warnings.warn(
        f"{MODULE_NAME}.resolve_device: The model arrays stay in host memory on"
        " the GPU device; the CUDA profile only brackets host work."
    )
    return Device.GPU


@dataclass(frozen=True)
class StartupConfig:
    device: Device = Device.CPU
    disable_memory_pool: bool = True


def init_device(config):
    """
    Initialise the device runtime. On a GPU with ``disable_memory_pool``
    set, CuPy allocates directly from the driver instead of pooling.
    """
    if config.device is Device.GPU:
        import cupy

        if config.disable_memory_pool:
            cupy.cuda.set_allocator(None)
            cupy.cuda.set_pinned_memory_allocator(None)
        print(
            f"{MODULE_NAME}.init_device: Running on GPU"
            f" {cupy.cuda.runtime.getDevice()} (memory pool"
            f" {'disabled' if config.disable_memory_pool else 'enabled'})"
        )
    return config.device


@dataclass(frozen=True)
class CommsContext:
    """
    Process-level execution context, created once at startup and passed to
    everything that needs the device, the core count or the dataset root.
    """

    device: Device
    cores: int
    artifacts_dir: str = None


def get_num_cores(cores):
    if cores in ["all", False, None]:
        return pathos.helpers.cpu_count()
    return int(cores)


def get_context(model_setup):
    """Run the startup step and return the resulting CommsContext."""
    config = StartupConfig(
        device=resolve_device(model_setup.device),
        disable_memory_pool=model_setup.disable_memory_pool,
    )
    device = init_device(config)
    cores = get_num_cores(model_setup.cores)
    if model_setup.use_numba:
        from numba import config as numba_config, set_num_threads

        set_num_threads(min(cores, numba_config.NUMBA_NUM_THREADS))
    return CommsContext(device=device, cores=cores, artifacts_dir=model_setup.artifacts_dir)


def output_directory(output_root, device):
    return os.path.join(output_root, f"snowy_land_benchmark_{device.suffix}")


def create_output_folders(outdir):
    """Create the benchmark output directory if it does not already exist."""
    if not os.path.exists(outdir):
        os.makedirs(outdir)
    return outdir


def _plain_array_arguments(jitted_function):
    """Numba compiles for plain ndarrays, so strip the Field subclass first."""

    @functools.wraps(jitted_function.py_func)
    def wrapper(*args):
        return jitted_function(
            *[np.asarray(arg) if isinstance(arg, np.ndarray) else arg for arg in args]
        )

    return wrapper


def jit_modules():
    """
    Apply the ``numba.jit`` decorator to the column kernels in
    ``snowyland.core.column_operators``, replacing each function on the
    module with ``setattr``. Callers look the kernels up through the module,
    so the compiled versions are used from then on.

    Only called when ``use_numba`` is set, so Numba is only imported if
    needed.
    """
    from inspect import getmembers, isfunction
    from numba import jit
    from snowyland.core import column_operators

    for name, function in getmembers(column_operators, isfunction):
        if hasattr(function, "__wrapped__") or name.startswith("__"):
            continue
        print(f"Applying Numba jit decorator to {column_operators.__name__}.{name}")
        jitted_function = jit(function, nopython=True, fastmath=False)
        setattr(column_operators, name, _plain_array_arguments(jitted_function))
