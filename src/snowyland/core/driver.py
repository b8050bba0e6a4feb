"""
Entry point of the snowy land benchmark: parse the command line, load and
complete the model setup, and run the requested benchmark mode.
"""

import sys
from snowyland.core import benchmark, configuration
from snowyland.core.errors import InvalidModeError
from snowyland.core.load_model_setup import get_model_setup

MODULE_NAME = "snowyland.core.driver"


def snowy_land(argv=None, simulation=benchmark.setup_simulation):
    """
    Main function for running the benchmark.

    Parameters
    ----------
    argv : list of str, optional
        Command line arguments; ``sys.argv[1:]`` if not given.
    simulation : callable, optional
        Passed through to ``run_benchmark``.

    Returns
    -------
    int
        Exit status: 0 on success, 1 for an unsupported profiler choice.
    """
    func_name = f"{MODULE_NAME}.snowy_land"
    args = configuration.parse_args(argv)
    model_setup = get_model_setup(args.input_path)

    # Model configuration steps
    configuration.create_defaults_for_missing_flags(model_setup)
    configuration.handle_invalid_values(model_setup)

    try:
        benchmark.run_benchmark(args.profiler, model_setup, simulation=simulation)
    except InvalidModeError as error:
        print(f"{func_name}: {error}", file=sys.stderr)
        return 1
    print(f"{func_name}: Benchmark finished")
    return 0
