import pathlib
import sys

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent.parent))

project = 'Map Viewer Core'
copyright = '2025, Mihovil Rak'
author = 'Mihovil Rak'
release = '0.1.0'

templates_path = ['_templates']
exclude_patterns = ['.venv', 'venv', '.pytest_cache', '.ruff_cache', '.mypy_cache']

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.autosummary',
    'sphinx.ext.viewcode',
    'sphinx_autodoc_typehints',
]

autosummary_generate = True

napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_include_init_with_doc = True
napoleon_use_param = True

html_theme = 'sphinx_rtd_theme'

autodoc_default_options = {
    'members': True,
    'undoc-members': False,
    'show-inheritance': True,
}

# GDAL bindings are heavy to install on documentation builders.
autodoc_mock_imports = [
    'rio_tiler',
    'rio_tiler.models',
    'rasterio',
    'rasterio.crs',
    'rasterio.errors',
    'rasterio.warp',
    'rasterio.windows',
]
