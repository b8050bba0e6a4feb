import os
import warnings
import pytest
from snowyland.core import configuration
from snowyland.core.errors import ConfigurationError
from snowyland.core.load_model_setup import ModelSetup, get_model_setup


def write_script(tmp_path, text):
    path = os.path.join(tmp_path, "model_setup.py")
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path


def test_valid_script_is_loaded(tmp_path):
    path = write_script(
        tmp_path,
        "import numpy as np\n"
        "_hours = 2\n"
        "tf = _hours * 3600.0\n"
        "nelements = (4, 5)\n"
        "device = 'cpu'\n",
    )
    model_setup = get_model_setup(path)
    assert model_setup.tf == 7200.0
    assert model_setup.nelements == (4, 5)
    # private helpers are not copied onto the setup
    assert not hasattr(model_setup, "_hours")
    configuration.create_defaults_for_missing_flags(model_setup)
    assert model_setup.dt == configuration.DEFAULTS["dt"]
    assert model_setup.tf == 7200.0


def test_unsafe_import_is_rejected(tmp_path):
    path = write_script(tmp_path, "import os\ntf = 10.0\n")
    with pytest.raises(ConfigurationError, match="Unsafe import 'os'"):
        ModelSetup(path)


def test_unsafe_from_import_is_rejected(tmp_path):
    path = write_script(tmp_path, "from subprocess import run\n")
    with pytest.raises(ConfigurationError, match="subprocess"):
        ModelSetup(path)


def test_unknown_name_is_rejected(tmp_path):
    path = write_script(tmp_path, "timestep = 10.0\n")
    with pytest.raises(ConfigurationError, match="timestep"):
        ModelSetup(path)


def test_missing_script(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        ModelSetup(os.path.join(tmp_path, "nope.py"))


def test_syntax_error(tmp_path):
    path = write_script(tmp_path, "tf = (\n")
    with pytest.raises(ConfigurationError, match="not valid Python"):
        ModelSetup(path)


def test_defaults_without_a_script(capsys):
    model_setup = get_model_setup(None)
    configuration.create_defaults_for_missing_flags(model_setup)
    for key, value in configuration.DEFAULTS.items():
        assert getattr(model_setup, key) == value
    assert "Setting missing model_setup attribute <tf>" in capsys.readouterr().out


@pytest.mark.parametrize(
    "name, value",
    [
        ("dt", 0.0),
        ("tf", -1.0),
        ("nelements", (10,)),
        ("nelements", (10, 0)),
        ("driver_update_interval", 0.0),
        ("device", "tpu"),
        ("max_profiling_samples", 0),
        ("newton_max_iters", 0),
    ],
)
def test_invalid_values(name, value):
    model_setup = ModelSetup()
    setattr(model_setup, name, value)
    configuration.create_defaults_for_missing_flags(model_setup)
    with pytest.raises(ConfigurationError):
        configuration.handle_invalid_values(model_setup)


def test_parse_args():
    args = configuration.parse_args([])
    assert args.profiler == "flamegraph"
    assert args.input_path is None
    args = configuration.parse_args(["--profiler", "nsight", "-i", "setup.py"])
    assert args.profiler == "nsight"
    assert args.input_path == "setup.py"
    # unknown modes are left for the benchmark driver to report
    assert configuration.parse_args(["--profiler", "other"]).profiler == "other"


def test_cpu_request_never_touches_the_gpu():
    assert configuration.resolve_device("cpu") is configuration.Device.CPU
    assert configuration.resolve_device("CPU") is configuration.Device.CPU


def test_gpu_request_without_gpu_falls_back(monkeypatch):
    monkeypatch.setattr(configuration, "gpu_available", lambda: False)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        assert configuration.resolve_device("gpu") is configuration.Device.CPU
    assert any("GPU was requested" in str(w.message) for w in caught)
    assert configuration.resolve_device("auto") is configuration.Device.CPU


def test_auto_stays_on_the_cpu_even_with_a_gpu(monkeypatch):
    monkeypatch.setattr(configuration, "gpu_available", lambda: True)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        assert configuration.resolve_device("auto") is configuration.Device.CPU
    assert not caught
    with pytest.warns(UserWarning, match="host memory"):
        assert configuration.resolve_device("gpu") is configuration.Device.GPU


def test_context_and_output_folder(tmp_path):
    model_setup = ModelSetup()
    model_setup.device = "cpu"
    model_setup.cores = 2
    model_setup.artifacts_dir = str(tmp_path)
    configuration.create_defaults_for_missing_flags(model_setup)
    context = configuration.get_context(model_setup)
    assert context.device is configuration.Device.CPU
    assert context.cores == 2
    assert context.artifacts_dir == str(tmp_path)
    outdir = configuration.output_directory(str(tmp_path), context.device)
    assert outdir.endswith("snowy_land_benchmark_cpu")
    configuration.create_output_folders(outdir)
    configuration.create_output_folders(outdir)
    assert os.path.isdir(outdir)
