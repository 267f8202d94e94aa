"""Data models.

- units, ellipsoid, datum: value types for units, ellipsoids, prime meridians and datums
- area: areas of use backed by shapely geometry
- coordinate_system: axes and coordinate systems
- crs: the closed CRS sum type and equivalence comparison
- operation: conversions, transformations and concatenations
- coordinate: the four-component coordinate tuple
- policy: resolution policy and its enums
"""
