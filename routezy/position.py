# routezy/routezy/position.py
"""
Position feeds for an active delivery.

The state machine starts a PositionSource when pickup is verified and pulls
fixes from it on every tick. Three feeds are available:

1. **LiveGpsSource**: an external GPS callback pushes fixes in.
2. **SimulatedSource**: drives toward the target, covering a fixed fraction
   of the remaining distance per tick (demo and test feed).
3. **ReplaySource**: plays back a recorded track, e.g. from a CSV file.
"""

from __future__ import annotations

import csv
import logging
import os
import random
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Iterable, List, Optional

from . import config, geo
from .models import Coordinate, PositionUpdate

logger = logging.getLogger(__name__)


class PositionSource(ABC):
    """Interface every position feed implements."""

    def __init__(self) -> None:
        self._active = False
        self._target: Optional[Coordinate] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def target(self) -> Optional[Coordinate]:
        return self._target

    def start(self, target: Coordinate) -> None:
        """Begin producing fixes toward ``target``."""
        self._target = target
        self._active = True

    def stop(self) -> None:
        self._active = False

    def reset(self, origin: Coordinate) -> None:
        """Stop the feed and rewind it for a delivery that starts at ``origin``."""
        self.stop()
        self._target = None

    @abstractmethod
    def next_update(self) -> Optional[PositionUpdate]:
        """Return the next fix, or None when nothing is available."""


class LiveGpsSource(PositionSource):
    """
    Buffers fixes pushed by a real GPS feed.

    Fixes pushed while the source is stopped are dropped.
    """

    def __init__(self) -> None:
        super().__init__()
        self._queue: Deque[PositionUpdate] = deque()
        self._sequence = 0

    def push(self, lat: float, lng: float, timestamp: Optional[float] = None) -> Optional[PositionUpdate]:
        if not self._active:
            logger.debug("Dropping GPS fix pushed while feed is stopped")
            return None
        update = PositionUpdate(
            lat=lat,
            lng=lng,
            timestamp=time.time() if timestamp is None else timestamp,
            sequence=self._sequence,
        )
        self._sequence += 1
        self._queue.append(update)
        return update

    def stop(self) -> None:
        super().stop()
        self._queue.clear()

    def next_update(self) -> Optional[PositionUpdate]:
        if not self._queue:
            return None
        return self._queue.popleft()


class SimulatedSource(PositionSource):
    """
    Fabricates driver movement toward the target.

    Each tick covers ``step_fraction`` of the remaining distance, plus optional
    random jitter. Within ``snap_distance_m`` the driver snaps onto the target
    and the feed stops itself.

    Attributes:
        position: Current simulated position
        start_time: Timestamp of sequence 0; later fixes are tick_seconds apart
    """

    def __init__(
        self,
        origin: Coordinate,
        step_fraction: float = None,
        snap_distance_m: float = None,
        tick_seconds: float = None,
        jitter_deg: float = None,
        rng: Optional[random.Random] = None,
        start_time: Optional[float] = None
    ) -> None:
        super().__init__()
        self.position = origin
        self.step_fraction = config.SIMULATION_STEP_FRACTION if step_fraction is None else step_fraction
        self.snap_distance_m = config.SIMULATION_SNAP_DISTANCE_M if snap_distance_m is None else snap_distance_m
        self.tick_seconds = config.SIMULATION_TICK_SECONDS if tick_seconds is None else tick_seconds
        self.jitter_deg = config.SIMULATION_JITTER_DEG if jitter_deg is None else jitter_deg
        self._rng = rng or random.Random()
        self.start_time = time.time() if start_time is None else start_time
        self._sequence = 0

        if not 0.0 < self.step_fraction <= 1.0:
            raise ValueError(f"step_fraction must be within (0, 1], got {self.step_fraction}")

    def reset(self, origin: Coordinate) -> None:
        # Sequence and clock keep counting so fixes stay ordered across deliveries
        super().reset(origin)
        self.position = origin

    def next_update(self) -> Optional[PositionUpdate]:
        if not self._active or self._target is None:
            return None

        remaining = geo.distance_meters(self.position, self._target)
        if remaining <= self.snap_distance_m:
            self.position = self._target
            self.stop()
        else:
            moved = geo.step_toward(self.position, self._target, self.step_fraction)
            if self.jitter_deg > 0:
                moved = Coordinate(
                    moved.lat + self._rng.uniform(-self.jitter_deg, self.jitter_deg),
                    moved.lng + self._rng.uniform(-self.jitter_deg, self.jitter_deg),
                )
            self.position = moved

        update = PositionUpdate(
            lat=self.position.lat,
            lng=self.position.lng,
            timestamp=self.start_time + self._sequence * self.tick_seconds,
            sequence=self._sequence,
        )
        self._sequence += 1
        return update


class ReplaySource(PositionSource):
    """Plays back a recorded list of fixes in the order given."""

    def __init__(self, updates: Iterable[PositionUpdate]) -> None:
        super().__init__()
        self._updates: List[PositionUpdate] = list(updates)
        self._index = 0

    @property
    def remaining(self) -> int:
        return len(self._updates) - self._index

    def reset(self, origin: Coordinate) -> None:
        """Rewind to the first recorded fix. The track itself sets the start."""
        super().reset(origin)
        self._index = 0

    def next_update(self) -> Optional[PositionUpdate]:
        if not self._active or self._index >= len(self._updates):
            return None
        update = self._updates[self._index]
        self._index += 1
        if self._index >= len(self._updates):
            self.stop()
        return update

    @classmethod
    def from_csv(cls, track_file: str) -> "ReplaySource":
        """
        Load a recorded track from CSV.

        Expected columns: lat, lng, timestamp (seconds). An optional
        ``sequence`` column overrides the row index.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If a row is malformed
        """
        if not os.path.exists(track_file):
            raise FileNotFoundError(f"Track file not found: {track_file}")

        updates: List[PositionUpdate] = []
        with open(track_file, 'r', newline='') as f:
            reader = csv.DictReader(f)
            for index, row in enumerate(reader):
                try:
                    sequence = int(row['sequence']) if row.get('sequence') else index
                    updates.append(PositionUpdate(
                        lat=float(row['lat']),
                        lng=float(row['lng']),
                        timestamp=float(row['timestamp']),
                        sequence=sequence,
                    ))
                except (KeyError, ValueError, TypeError) as e:
                    raise ValueError(f"Invalid track data in {track_file} row {index + 1}: {e}")

        logger.info(f"Loaded {len(updates)} fixes from {track_file}")
        return cls(updates)
