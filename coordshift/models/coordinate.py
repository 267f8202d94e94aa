"""The four-component coordinate tuple handed to and returned by the executor."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, NamedTuple

from coordshift.core.constants import HUGE_VAL

if TYPE_CHECKING:
    import numpy as np


class Coordinate(NamedTuple):
    """A coordinate whose meaning is fixed by the CRS it is expressed in.

    ``x``/``y`` carry longitude/latitude, latitude/longitude or
    easting/northing in the order of the CRS axes; ``z`` is a height and
    ``t`` a time.  A failed transformation yields every component set to
    infinity.
    """

    x: float
    y: float
    z: float = 0.0
    t: float = 0.0

    @classmethod
    def error(cls) -> Coordinate:
        return cls(HUGE_VAL, HUGE_VAL, HUGE_VAL, HUGE_VAL)

    @property
    def is_error(self) -> bool:
        return any(math.isinf(value) for value in self)

    # Aliases mirroring the usual component names.
    @property
    def lam(self) -> float:
        return self.x

    @property
    def phi(self) -> float:
        return self.y

    @property
    def e(self) -> float:
        return self.x

    @property
    def n(self) -> float:
        return self.y

    @property
    def u(self) -> float:
        return self.x

    @property
    def v(self) -> float:
        return self.y

    @property
    def w(self) -> float:
        return self.z

    def to_array(self) -> np.ndarray:
        import numpy as np

        return np.array(self, dtype=np.float64)

    @classmethod
    def from_array(cls, row: np.ndarray | list[float]) -> Coordinate:
        """Build from a row of 2 to 4 numbers; missing components are 0."""
        values = [float(v) for v in row]
        if not 2 <= len(values) <= 4:
            from coordshift.core.exceptions import ApiMisuseError

            raise ApiMisuseError(f"A coordinate needs 2 to 4 components, got {len(values)}")
        values.extend([0.0] * (4 - len(values)))
        return cls(*values)
