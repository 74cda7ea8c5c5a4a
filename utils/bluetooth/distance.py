"""
Distance estimation for Bluetooth devices.

Provides path-loss based distance calculation and band classification.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from .constants import (
    DISTANCE_MAX_M,
    DISTANCE_MIN_M,
    DISTANCE_PATH_LOSS_EXPONENT,
)


class ProximityBand(str, Enum):
    """Proximity band classifications."""
    IMMEDIATE = 'immediate'  # < 1m
    NEAR = 'near'           # 1-3m
    FAR = 'far'             # 3-10m
    UNKNOWN = 'unknown'     # Cannot determine

    def __str__(self) -> str:
        return self.value


class DistanceEstimator:
    """
    Estimates distance to Bluetooth devices from RSSI and advertised TX power.

    Uses the log-distance path-loss model; without both inputs there is no
    estimate.
    """

    def __init__(self, path_loss_exponent: float = DISTANCE_PATH_LOSS_EXPONENT):
        """
        Initialize the distance estimator.

        Args:
            path_loss_exponent: Path-loss exponent (n), typically 2-4.
        """
        self.path_loss_exponent = path_loss_exponent

    def estimate_distance(
        self,
        rssi: Optional[int],
        tx_power: Optional[int],
    ) -> Optional[float]:
        """
        Estimate distance to a device.

        Formula: d = 10^((tx_power - rssi) / (10 * n))

        Args:
            rssi: Received signal strength (dBm).
            tx_power: Advertised transmit power at 1m (dBm).

        Returns:
            Distance in meters clamped to a plausible range, or None if
            either input is missing.
        """
        if rssi is None or tx_power is None:
            return None

        exponent = (tx_power - rssi) / (10 * self.path_loss_exponent)
        distance = 10 ** exponent
        return max(DISTANCE_MIN_M, min(DISTANCE_MAX_M, distance))

    def classify_proximity_band(self, distance_m: Optional[float]) -> ProximityBand:
        """Classify an estimated distance into a proximity band."""
        if distance_m is None:
            return ProximityBand.UNKNOWN
        if distance_m < 1.0:
            return ProximityBand.IMMEDIATE
        elif distance_m < 3.0:
            return ProximityBand.NEAR
        elif distance_m < 10.0:
            return ProximityBand.FAR
        return ProximityBand.UNKNOWN
