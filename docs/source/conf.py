# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

import os
import sys

sys.path.append(os.path.abspath("../../src"))

project = "SnowyLand"
copyright = "2026, SnowyLand developers"
author = "SnowyLand developers"

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.duration",
    "sphinx.ext.doctest",
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "sphinx.ext.napoleon",
    "sphinx.ext.coverage",
    "autoapi.extension",
]

# the package has no __init__.py files
autoapi_dirs = ["../../src/snowyland"]
autoapi_python_use_implicit_namespaces = True
autoapi_ignore = ["*venv*", "*conf.py*", "tests"]
autoapi_member_order = "groupwise"
autoapi_own_page_level = "function"
autoapi_python_class_content = "both"
napoleon_google_docstring = False
napoleon_use_param = False
napoleon_use_ivar = True

# -- Options for HTML output -------------------------------------------------

html_theme = "sphinx_rtd_theme"
html_static_path = []
