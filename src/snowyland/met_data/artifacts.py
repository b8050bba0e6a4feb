"""
Path resolution for the external datasets used to build the land model.

All datasets live below a single artifact root. The root is taken from (in
order) the ``artifacts_dir`` attribute of the context passed in, the
``SNOWYLAND_ARTIFACTS`` environment variable, and ``~/.snowyland/artifacts``.
A path that does not exist raises ``DataAccessError``; nothing is downloaded.
``snowyland.met_data.create_synthetic_artifacts`` writes a complete tree of
synthetic stand-ins for every file listed here.
"""

import os
from snowyland.core.errors import DataAccessError

MODULE_NAME = "snowyland.met_data.artifacts"
ENV_VAR = "SNOWYLAND_ARTIFACTS"
DEFAULT_ROOT = os.path.join("~", ".snowyland", "artifacts")

ERA5_DIR = "era5_land_forcing_data2008"
MODIS_LAI_DIR = "modis_lai"
SOIL_PARAMS_DIR = "soil_params"
CLM_DIR = "clm_data"
TOPMODEL_DIR = "topmodel_data"


def artifacts_dir(context=None):
    """The root directory that all dataset paths are resolved against."""
    root = getattr(context, "artifacts_dir", None)
    if not root:
        root = os.environ.get(ENV_VAR, DEFAULT_ROOT)
    return os.path.expanduser(root)


def _resolve(func_name, context, *parts):
    path = os.path.join(artifacts_dir(context), *parts)
    if not os.path.exists(path):
        raise DataAccessError(
            f"{MODULE_NAME}.{func_name}: Dataset {path} not found. Either point"
            f" {ENV_VAR} (or <artifacts_dir> in the model setup) at a directory"
            " containing it, or generate synthetic data with"
            " snowyland.met_data.create_synthetic_artifacts."
        )
    return path


def era5_land_forcing_data2008_path(context=None, lowres=False):
    """
    Hourly ERA5 surface forcing for 2008. ``lowres`` selects the coarse
    (1 degree) version of the dataset.
    """
    filename = "era5_2008_1.0x1.0_lowres.nc" if lowres else "era5_2008_0.25x0.25.nc"
    return _resolve("era5_land_forcing_data2008_path", context, ERA5_DIR, filename)


def modis_lai_single_year_path(context=None, year=2008):
    """MODIS leaf area index for a single year, on a 1 degree grid."""
    return _resolve(
        "modis_lai_single_year_path",
        context,
        MODIS_LAI_DIR,
        f"Yuan_et_al_{int(year)}_1x1.nc",
    )


def soil_params_artifact_path(context=None):
    """van Genuchten parameters, porosity, residual water and K_sat."""
    return _resolve(
        "soil_params_artifact_path",
        context,
        SOIL_PARAMS_DIR,
        "soil_params_Gupta2020_2022.nc",
    )


def soil_grids_params_artifact_path(context=None):
    """Volumetric fractions of organic matter, quartz and gravel in solids."""
    return _resolve(
        "soil_grids_params_artifact_path",
        context,
        SOIL_PARAMS_DIR,
        "soil_solid_vol_fractions_soilgrids.nc",
    )


def clm_soil_properties_path(context=None):
    return _resolve(
        "clm_soil_properties_path", context, CLM_DIR, "soil_properties_map.nc"
    )


def clm_vegetation_properties_path(context=None):
    return _resolve(
        "clm_vegetation_properties_path",
        context,
        CLM_DIR,
        "vegetation_properties_map.nc",
    )


def topmodel_data_path(context=None):
    return _resolve("topmodel_data_path", context, TOPMODEL_DIR, "maxsat.nc")
