"""Shared constants, kept in one place.

Centralises angle conversions, numeric tolerances and default endpoints
that are otherwise duplicated across the parsers, the resolver and the
pipeline steps.
"""

from __future__ import annotations

import math

# ---------------------------------------------------------------------------
# Angles
# ---------------------------------------------------------------------------

DEG_TO_RAD: float = math.pi / 180.0
RAD_TO_DEG: float = 180.0 / math.pi
ARCSEC_TO_RAD: float = DEG_TO_RAD / 3600.0

HALF_PI: float = math.pi / 2.0

# Latitude overshoot tolerated before a coordinate is rejected (radians).
LATITUDE_EPSILON: float = 1e-12

# ---------------------------------------------------------------------------
# Numeric failure marker
# ---------------------------------------------------------------------------

HUGE_VAL: float = math.inf
"""Value stored in every component of a failed coordinate."""

# ---------------------------------------------------------------------------
# Accuracy
# ---------------------------------------------------------------------------

UNKNOWN_ACCURACY: float = -1.0
"""Declared accuracy of an operation whose accuracy is not known."""

# ---------------------------------------------------------------------------
# Grid shift
# ---------------------------------------------------------------------------

GTX_NODATA: float = -88.8888
HGRID_INVERSE_MAX_ITERATIONS: int = 10
HGRID_INVERSE_TOLERANCE_RAD: float = 1e-12

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_ENDPOINT_URL: str = "https://cdn.proj.org"
DEFAULT_REGISTRY_NAME: str = "builtin"
DEFAULT_CACHE_MAX_SIZE_MB: int = 300
DEFAULT_CACHE_TTL_S: int = 86_400
DEFAULT_HTTP_TIMEOUT_S: float = 30.0
DEFAULT_DENSIFY_POINTS: int = 21

WGS84_IDENTIFIER: tuple[str, str] = ("EPSG", "4326")
