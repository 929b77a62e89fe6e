from __future__ import annotations

import time
from typing import Callable

from quizgen.logging import get_logger
from quizgen.pipeline.models import STAGE_ORDER, ProcessingStatus, Stage

StatusCallback = Callable[[ProcessingStatus], None]

logger = get_logger()


class ProgressReporter:
    """Forwards status snapshots to an observer while keeping them monotonic.

    Progress never decreases and stages never move backwards within one run;
    ``error`` may follow any stage. Observer exceptions are logged and dropped.
    """

    def __init__(
        self,
        on_status: StatusCallback | None = None,
        *,
        start_time: float | None = None,
    ) -> None:
        self._on_status = on_status
        self.start_time = time.time() if start_time is None else start_time
        self.stage: Stage | None = None
        self.progress = 0
        self.history: list[ProcessingStatus] = []

    def report(self, stage: Stage, progress: int, message: str) -> ProcessingStatus:
        if stage != "error" and self.stage is not None:
            if self.stage == "error" or _stage_index(stage) < _stage_index(self.stage):
                logger.debug(
                    "Ignoring backward stage transition %s -> %s", self.stage, stage
                )
                stage = self.stage

        self.progress = max(self.progress, min(max(int(progress), 0), 100))
        self.stage = stage
        status = ProcessingStatus(
            stage=stage,
            progress=self.progress,
            message=message,
            start_time=self.start_time,
        )
        self.history.append(status)
        self._notify(status)
        return status

    def _notify(self, status: ProcessingStatus) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception:  # noqa: BLE001
            logger.exception("Status observer raised; continuing pipeline")


def _stage_index(stage: Stage) -> int:
    if stage == "error":
        return len(STAGE_ORDER)
    return STAGE_ORDER.index(stage)
