"""Audit helpers for lending requests."""

from __future__ import annotations

import logging
from typing import Dict

from app.infra.redis import append_event
from app.lending.domain import models
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)


async def log_lending_event(event: str, fields: Dict[str, str]) -> None:
	payload = {"event": event, **{key: value for key, value in fields.items() if value is not None}}
	await append_event(settings.lending_events_stream, payload, maxlen=settings.lending_events_maxlen)


def transaction_fields(transaction: models.Transaction) -> Dict[str, str]:
	return {
		"transaction_id": str(transaction.id),
		"inventory_id": str(transaction.inventory_id),
		"owning_club_id": str(transaction.owning_club_id),
		"borrower": transaction.borrower_id,
		"status": transaction.status.value,
		"quantity": str(transaction.quantity),
	}


async def record_submitted(transaction: models.Transaction, route: str) -> None:
	obs_metrics.inc_lending_submitted(route)
	logger.info(
		"lending_request_submitted",
		extra={"transaction_id": str(transaction.id), "route": route, "status": transaction.status.value},
	)
	await log_lending_event("submitted", {**transaction_fields(transaction), "route": route})


async def record_transition(
	transaction: models.Transaction,
	*,
	source: models.TransactionStatus,
	actor_id: str | None,
) -> None:
	obs_metrics.inc_lending_transition(source.value, transaction.status.value)
	logger.info(
		"lending_request_transition",
		extra={
			"transaction_id": str(transaction.id),
			"from_status": source.value,
			"to_status": transaction.status.value,
			"actor": actor_id or "system",
		},
	)
	event = "overdue" if transaction.status is models.TransactionStatus.OVERDUE else "transition"
	await log_lending_event(
		event,
		{**transaction_fields(transaction), "from_status": source.value, "actor": actor_id or "system"},
	)


async def record_amended(transaction: models.Transaction, actor_id: str) -> None:
	await log_lending_event("amended", {**transaction_fields(transaction), "actor": actor_id})


def inc_rejected_operation(code: str) -> None:
	obs_metrics.inc_lending_reject(code)


def inc_conflict(operation: str) -> None:
	obs_metrics.inc_lending_conflict(operation)
