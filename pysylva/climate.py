"""
Annual climate table and the per-iteration environment snapshot.

The climate is periodic: iteration i reads column i % iterperyear of every
driver. The snapshot is immutable and is handed to every tree of the step.

Notes
- Irradiance is given in W m^-2; Wmax is converted to micromol PAR m^-2 s^-1.
- Rainfall, wind speed, mean irradiance and the vapour-pressure drivers are
  carried for completeness; the photosynthesis model reads temperature, tmax,
  tnight, Wmax and VPDmax.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from . import constants as const
from .errors import ConfigurationError

_DRIVERS = (
    "temperature",
    "daily_max_temperature",
    "night_temperature",
    "rainfall",
    "wind_speed",
    "max_irradiance",
    "mean_irradiance",
    "saturated_vapour_pressure",
    "vapour_pressure",
    "vpd",
    "daily_vpd",
    "daily_max_vpd",
)


@dataclass(frozen=True)
class Environment:
    iteration: int
    temp: float  # mean temperature (C)
    tmax: float  # daily max temperature (C)
    tnight: float  # night temperature (C)
    precip: float  # rainfall (mm)
    wind_speed: float  # m/s
    Wmax: float  # max irradiance (micromol PAR m^-2 s^-1)
    Wmean: float  # mean irradiance (W m^-2)
    e_s: float  # saturated vapour pressure (kPa)
    e_a: float  # vapour pressure (kPa)
    VPDbasic: float  # kPa
    VPDday: float  # kPa
    VPDmax: float  # kPa


@dataclass
class ClimateTable:
    """Per-iteration climate drivers, one array of length iterperyear each."""

    temperature: np.ndarray
    daily_max_temperature: np.ndarray
    night_temperature: np.ndarray
    rainfall: np.ndarray
    wind_speed: np.ndarray
    max_irradiance: np.ndarray
    mean_irradiance: np.ndarray
    saturated_vapour_pressure: np.ndarray
    vapour_pressure: np.ndarray
    vpd: np.ndarray
    daily_vpd: np.ndarray
    daily_max_vpd: np.ndarray

    def __post_init__(self) -> None:
        lengths = set()
        for name in _DRIVERS:
            arr = np.asarray(getattr(self, name), dtype=np.float64).ravel()
            setattr(self, name, arr)
            lengths.add(arr.size)
        if len(lengths) != 1 or 0 in lengths:
            raise ConfigurationError(f"Climate drivers must share one non-zero length, got {sorted(lengths)}")

    @property
    def iterperyear(self) -> int:
        return int(self.temperature.size)

    def snapshot(self, iteration: int) -> Environment:
        i = int(iteration) % self.iterperyear
        return Environment(
            iteration=int(iteration),
            temp=float(self.temperature[i]),
            tmax=float(self.daily_max_temperature[i]),
            tnight=float(self.night_temperature[i]),
            precip=float(self.rainfall[i]),
            wind_speed=float(self.wind_speed[i]),
            Wmax=float(self.max_irradiance[i]) * const.IRRADIANCE_TO_PAR,
            Wmean=float(self.mean_irradiance[i]),
            e_s=float(self.saturated_vapour_pressure[i]),
            e_a=float(self.vapour_pressure[i]),
            VPDbasic=float(self.vpd[i]),
            VPDday=float(self.daily_vpd[i]),
            VPDmax=float(self.daily_max_vpd[i]),
        )

    @classmethod
    def constant(
        cls,
        iterperyear: int = 12,
        *,
        temperature: float = 25.0,
        tmax: float = 30.0,
        tnight: float = 22.0,
        rainfall: float = 250.0,
        wind_speed: float = 1.0,
        max_irradiance: float = 500.0,
        mean_irradiance: float = 200.0,
        e_s: float = 3.2,
        e_a: float = 2.6,
        vpd: float = 0.6,
        daily_vpd: float = 0.9,
        daily_max_vpd: float = 1.6,
    ) -> ClimateTable:
        """A climate that repeats the same values every iteration (tests, spin-up)."""
        n = int(iterperyear)

        def _f(v: float) -> np.ndarray:
            return np.full((n,), float(v), dtype=np.float64)

        return cls(
            temperature=_f(temperature),
            daily_max_temperature=_f(tmax),
            night_temperature=_f(tnight),
            rainfall=_f(rainfall),
            wind_speed=_f(wind_speed),
            max_irradiance=_f(max_irradiance),
            mean_irradiance=_f(mean_irradiance),
            saturated_vapour_pressure=_f(e_s),
            vapour_pressure=_f(e_a),
            vpd=_f(vpd),
            daily_vpd=_f(daily_vpd),
            daily_max_vpd=_f(daily_max_vpd),
        )
