import pytest
from snowyland.core.configuration import create_defaults_for_missing_flags
from snowyland.core.domain import global_domain
from snowyland.core.load_model_setup import ModelSetup
from snowyland.met_data.create_synthetic_artifacts import create_synthetic_artifacts


@pytest.fixture
def tiny_domain():
    """24 columns and 4 soil layers."""
    return global_domain(nelements=(2, 4))


@pytest.fixture(scope="session")
def synthetic_artifacts(tmp_path_factory):
    """A complete, coarse synthetic dataset tree, written once per session."""
    root = tmp_path_factory.mktemp("artifacts")
    return str(create_synthetic_artifacts(str(root), resolution=30.0, ndays=1))


@pytest.fixture
def tiny_model_setup(synthetic_artifacts, tmp_path, monkeypatch):
    """
    A model setup for a 30 minute run on the tiny domain, writing into a
    temporary directory. The CI pipeline variable is cleared so that the
    performance check only runs where a test asks for it.
    """
    monkeypatch.delenv("BUILDKITE_PIPELINE_SLUG", raising=False)
    model_setup = ModelSetup()
    model_setup.nelements = (2, 4)
    model_setup.t0 = 0.0
    model_setup.tf = 1800.0
    model_setup.dt = 450.0
    model_setup.driver_update_interval = 900.0
    model_setup.device = "cpu"
    model_setup.max_profiling_time = 30
    model_setup.max_profiling_samples = 2
    model_setup.artifacts_dir = synthetic_artifacts
    model_setup.output_root = str(tmp_path)
    create_defaults_for_missing_flags(model_setup)
    return model_setup
