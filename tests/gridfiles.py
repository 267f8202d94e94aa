"""Builders for synthetic GTX and NTv2 grid files used across the tests."""

from __future__ import annotations

import struct

import numpy as np


def gtx_bytes(
    south: float, west: float, dlat: float, dlon: float, values: np.ndarray
) -> bytes:
    """Encode a GTX grid; ``values[row, col]`` with row 0 at the south edge."""
    rows, cols = values.shape
    header = struct.pack(">ddddii", south, west, dlat, dlon, rows, cols)
    return header + np.asarray(values, dtype=">f4").tobytes()


def _record(key: str, value: bytes) -> bytes:
    return key.encode("ascii").ljust(8) + value.ljust(8, b"\x00")


def _int_record(key: str, value: int) -> bytes:
    return _record(key, struct.pack("<i", value) + b"\x00" * 4)


def _float_record(key: str, value: float) -> bytes:
    return _record(key, struct.pack("<d", value))


def _text_record(key: str, value: str) -> bytes:
    return _record(key, value.encode("ascii").ljust(8)[:8])


def ntv2_bytes(
    south: float,
    west: float,
    north: float,
    east: float,
    step: float,
    dlat_seconds: float,
    dlon_seconds_east: float,
    name: str = "SUBGRID",
) -> bytes:
    """Encode a little-endian NTv2 file with one constant-shift sub-grid (degrees in)."""
    s_lat, n_lat = south * 3600.0, north * 3600.0
    e_long, w_long = -east * 3600.0, -west * 3600.0
    inc = step * 3600.0
    rows = int(round((n_lat - s_lat) / inc)) + 1
    cols = int(round((w_long - e_long) / inc)) + 1
    overview = b"".join(
        [
            _int_record("NUM_OREC", 11),
            _int_record("NUM_SREC", 11),
            _int_record("NUM_FILE", 1),
            _text_record("GS_TYPE", "SECONDS"),
            _text_record("VERSION", "NTv2.0"),
            _text_record("SYSTEM_F", "NAD27"),
            _text_record("SYSTEM_T", "NAD83"),
            _float_record("MAJOR_F", 6378206.4),
            _float_record("MINOR_F", 6356583.8),
            _float_record("MAJOR_T", 6378137.0),
            _float_record("MINOR_T", 6356752.314),
        ]
    )
    header = b"".join(
        [
            _text_record("SUB_NAME", name),
            _text_record("PARENT", "NONE"),
            _text_record("CREATED", "20240101"),
            _text_record("UPDATED", "20240101"),
            _float_record("S_LAT", s_lat),
            _float_record("N_LAT", n_lat),
            _float_record("E_LONG", e_long),
            _float_record("W_LONG", w_long),
            _float_record("LAT_INC", inc),
            _float_record("LONG_INC", inc),
            _int_record("GS_COUNT", rows * cols),
        ]
    )
    nodes = np.zeros((rows * cols, 4), dtype="<f4")
    nodes[:, 0] = dlat_seconds
    nodes[:, 1] = -dlon_seconds_east  # positive west on disk
    return overview + header + nodes.tobytes() + _record("END", b"")


# Constant shifts of the synthetic grids.
CONUS_DLAT_SECONDS = 1.0
CONUS_DLON_SECONDS = -1.5
GEOID_UNDULATION_M = 30.0
