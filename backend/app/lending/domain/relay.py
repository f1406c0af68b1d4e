"""Department relay gate for requests from students outside the lending club."""

from __future__ import annotations

from app.lending.domain import models
from app.lending.domain.exceptions import ConflictError, NotFoundError


def resolve_department_decision(department_request: models.DepartmentRequest | None) -> models.RelayDecision:
	if department_request is None:
		raise NotFoundError("department_request_not_found")
	return department_request.decision


def assert_open(department_request: models.DepartmentRequest | None) -> models.DepartmentRequest:
	"""The relay is consumed exactly once; a decided record cannot be decided again."""
	if resolve_department_decision(department_request) is not models.RelayDecision.PENDING:
		raise ConflictError("department_request_already_decided")
	assert department_request is not None
	return department_request


def decision_for(action: models.DecisionAction) -> models.RelayDecision:
	if action is models.DecisionAction.APPROVE:
		return models.RelayDecision.APPROVED
	return models.RelayDecision.REJECTED
