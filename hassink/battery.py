"""In-memory battery telemetry reported by polling devices"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

CHARGING_VALUES = ('Yes', '1')
NOT_CHARGING_VALUES = ('No', '0')


@dataclass
class BatteryState:
    """Last reported battery level (0-100, None until reported) and charging flag"""

    battery_level: Optional[int] = None
    is_charging: bool = False

    def to_payload(self) -> Dict:
        return {'batteryLevel': self.battery_level, 'isCharging': self.is_charging}


def parse_battery_level(value: Optional[str]) -> Optional[int]:
    """Return the level if it is an integer in [0, 100], otherwise None"""
    if value is None:
        return None
    try:
        level = int(value.strip())
    except ValueError:
        return None
    if 0 <= level <= 100:
        return level
    return None


class BatteryStore:
    """
    Battery state per target index

    Written by the HTTP handlers, read by the renderer. A lock guards the map
    because requests may be handled on several threads at once.
    """

    def __init__(self):
        self._states: Dict[int, BatteryState] = {}
        self._lock = threading.Lock()

    def get(self, index: int) -> BatteryState:
        """Copy of the state for a target, created on first use"""
        with self._lock:
            state = self._states.setdefault(index, BatteryState())
            return BatteryState(state.battery_level, state.is_charging)

    def has_level(self, index: int) -> bool:
        with self._lock:
            state = self._states.get(index)
            return state is not None and state.battery_level is not None

    def update(self, index: int, battery_level: Optional[str], is_charging: Optional[str]) -> bool:
        """
        Record telemetry from a device request

        The charging flag is only considered alongside a valid battery level.
        Only transitions are logged.

        Returns:
            True if anything changed
        """
        level = parse_battery_level(battery_level)
        if level is None:
            return False

        changed = False
        with self._lock:
            state = self._states.setdefault(index, BatteryState())

            if level != state.battery_level:
                state.battery_level = level
                changed = True
                logger.info(f"New battery level: {level} for page {index}")

            if is_charging in CHARGING_VALUES and state.is_charging is not True:
                state.is_charging = True
                changed = True
                logger.info(f"Battery started charging for page {index}")
            elif is_charging in NOT_CHARGING_VALUES and state.is_charging is not False:
                state.is_charging = False
                changed = True
                logger.info(f"Battery stopped charging for page {index}")

        return changed

    def snapshot(self) -> Dict[int, BatteryState]:
        with self._lock:
            return {
                index: BatteryState(state.battery_level, state.is_charging)
                for index, state in self._states.items()
            }
