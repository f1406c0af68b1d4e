"""Availability guard for lending requests."""

from __future__ import annotations

from app.lending.domain import models
from app.lending.domain.exceptions import CapacityExceededError, InvalidQuantityError


def ensure_positive_quantity(requested: object) -> int:
	if isinstance(requested, bool) or not isinstance(requested, int) or requested <= 0:
		raise InvalidQuantityError()
	return requested


def check_capacity(item: models.InventoryItem, requested: int, *, reserved: int = 0) -> None:
	"""Raise unless ``requested`` more units fit within the item's quantity.

	``reserved`` is the number of units already held by outstanding requests;
	it is zero for the submission-time check.
	"""
	ensure_positive_quantity(requested)
	if requested + max(0, reserved) > item.quantity:
		raise CapacityExceededError()
