"""Lightroom stores aperture and shutter speed as APEX values."""
from __future__ import annotations


def aperture_to_fnumber(a: float) -> float:
    return 2 ** (a / 2)


def shutter_speed_to_exposure_time(a: float) -> str:
    """APEX shutter speed -> conventional fraction of a second, e.g. '1/250'."""
    return "1/%.0f" % (2 ** a)
