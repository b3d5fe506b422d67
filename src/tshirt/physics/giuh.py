"""
Geomorphologic instantaneous unit hydrograph (GIUH) convolution.
"""
import logging
from typing import Sequence

import numpy as np

from tshirt.core.exceptions import ErrorContext, ParameterError

logger = logging.getLogger(__name__)


class GiuhConvolution:
    """
    Converts instantaneous surface runoff into a time-lagged hydrograph.

    Each call spreads the new runoff over the queue with the GIUH ordinates,
    returns the head of the queue and shifts the queue by one timestep. The
    queue carries water between calls, so one instance belongs to one model
    instance.
    """

    def __init__(self, ordinates: Sequence[float], tolerance: float = 1e-6):
        context = ErrorContext(component="GiuhConvolution", operation="__init__")
        ordinates = np.asarray(ordinates, dtype=float)
        if ordinates.ndim != 1 or ordinates.size == 0:
            raise ParameterError("GIUH needs a non-empty 1-D sequence of ordinates", context)
        if np.any(ordinates < 0):
            raise ParameterError("GIUH ordinates must be non-negative", context)
        if abs(ordinates.sum() - 1.0) > tolerance:
            raise ParameterError(f"GIUH ordinates must sum to 1, got {ordinates.sum():.6f}", context)

        self.ordinates = ordinates
        self._runoff_queue = np.zeros(ordinates.size + 1)

    @classmethod
    def pass_through(cls) -> "GiuhConvolution":
        """Single ordinate: runoff leaves in the same timestep"""
        return cls([1.0])

    def convolve(self, dt: float, runoff_meters_per_second: float) -> float:
        """Add this step's runoff to the queue and release the head"""
        self._runoff_queue[:-1] += self.ordinates * runoff_meters_per_second
        output = float(self._runoff_queue[0])

        self._runoff_queue[:-1] = self._runoff_queue[1:]
        self._runoff_queue[-1] = 0.0

        return output

    def pending_runoff_meters(self, dt: float) -> float:
        """Depth still held in the queue"""
        return float(self._runoff_queue.sum() * dt)

    def reset(self):
        self._runoff_queue[:] = 0.0
