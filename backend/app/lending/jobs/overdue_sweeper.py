"""Background job persisting the overdue status of collected items."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.lending.domain.service import LendingService
from app.obs import metrics as obs_metrics

_JOB_NAME = "lending-overdue-sweep"

logger = logging.getLogger(__name__)


class OverdueSweeper:
	"""Moves COLLECTED requests past their due date to OVERDUE.

	Reads already report such rows as overdue; the sweep makes the stored
	status match so reporting queries and exports agree.
	"""

	def __init__(self, *, service: LendingService | None = None) -> None:
		self.service = service or LendingService()

	async def run_once(self) -> int:
		started = datetime.now(timezone.utc)
		result = "error"
		try:
			moved = await self.service.sweep_overdue(now=started)
			result = "success"
			obs_metrics.inc_lending_overdue(moved)
			if moved:
				logger.info("lending_overdue_sweep", extra={"marked": moved})
			return moved
		finally:
			duration = (datetime.now(timezone.utc) - started).total_seconds()
			obs_metrics.record_job_run(_JOB_NAME, result=result, duration_seconds=duration)
