"""Sphinx configuration for the Discovery Service documentation."""

from __future__ import annotations

import os
import sys
from datetime import datetime

SERVICE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
LIBS_DIR = os.path.abspath(os.path.join(SERVICE_DIR, "..", "..", "libs", "python"))
sys.path[:0] = [SERVICE_DIR, LIBS_DIR]


project = "Discovery Service"
author = "Platform Team"
copyright = f"{datetime.now():%Y}, {author}"
release = "0.1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
    "sphinx_autodoc_typehints",
]

autodoc_typehints = "description"
autodoc_preserve_defaults = True
autodoc_member_order = "bysource"
autodoc_mock_imports = ["psycopg", "psycopg_pool", "redis", "openai"]
napoleon_google_docstring = True
napoleon_numpy_docstring = False

templates_path = ["_templates"]
exclude_patterns: list[str] = ["_build", "Thumbs.db", ".DS_Store"]

html_theme = "alabaster"
