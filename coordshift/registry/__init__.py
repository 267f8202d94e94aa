"""Registry of CRS definitions, operations, grids and aliases.

- base: the ``Registry`` interface
- records: pydantic records of the data file
- yaml_registry: the built-in YAML-backed registry
- factory: named registry lookup (``get_registry``)
"""
