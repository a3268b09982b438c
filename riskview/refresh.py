from __future__ import annotations

import itertools
import logging
import threading

from riskview.models import DeviceRiskView

LOGGER = logging.getLogger(__name__)


class ViewLedger:
    """Keeps the newest view per device so late responses never overwrite newer ones."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._views: dict[str, DeviceRiskView] = {}

    def next_sequence(self) -> int:
        with self._lock:
            return next(self._counter)

    @staticmethod
    def _order(view: DeviceRiskView) -> tuple[int, float]:
        # sequenced views always outrank unsequenced ones
        if view.sequence is not None:
            return 1, float(view.sequence)
        return 0, view.computed_at.timestamp()

    def apply(self, view: DeviceRiskView) -> bool:
        with self._lock:
            current = self._views.get(view.device_id)
            if current is not None and self._order(view) <= self._order(current):
                LOGGER.debug(
                    "Discarding stale view for device %s (sequence=%s)",
                    view.device_id,
                    view.sequence,
                )
                return False
            self._views[view.device_id] = view
            return True

    def get(self, device_id: str) -> DeviceRiskView | None:
        with self._lock:
            return self._views.get(device_id)
