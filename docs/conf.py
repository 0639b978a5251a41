# Sphinx configuration file

import os
import sys
sys.path.insert(0, os.path.abspath('../src'))

from step_runner import __version__  # noqa: E402

project = 'Step Runner'
copyright = '2024, Step Runner contributors'
author = 'Step Runner contributors'
version = release = __version__

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

exclude_patterns = ['_build']

html_theme = 'sphinx_rtd_theme'
html_title = f'Step Runner {release}'

# Definition models are pydantic; keep their generated machinery out of the API pages.
autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'undoc-members': True,
    'exclude-members': 'model_config,model_fields,model_computed_fields,__weakref__',
}
autodoc_class_signature = 'separated'
typehints_fully_qualified = False
always_document_param_types = False

napoleon_google_docstring = True
napoleon_numpy_docstring = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
}
