"""
Counter Adjuster
================

Applies a signed delta to one denormalized counter on one entity.

    adjust('topics', topic_id, 'replies', +1) -> updated Topic

FLOOR POLICY:
-------------
All counters share one policy, read from settings.FORUMS['COUNTER_FLOOR']:
- 0 (default): decrements clamp at zero
- None: no clamp; a decrement below zero is rejected as InvalidState
  by the column's non-negative constraint

The caller is still expected not to decrement what it never incremented.
The floor only keeps a drifted counter from going negative; the
reconciliation sweep (forums.reconcile) repairs the drift itself.
"""

import logging

from django.conf import settings

from .exceptions import InvalidState
from .store import FORUMS, TOPICS, default_store

logger = logging.getLogger(__name__)

# Only these fields are derived counters and may be adjusted
COUNTER_FIELDS = {
    FORUMS: ('topics', 'replies'),
    TOPICS: ('replies', 'views'),
}

_UNSET = object()


def counter_floor():
    """Floor applied to every counter decrement (None disables it)."""
    return getattr(settings, 'FORUMS', {}).get('COUNTER_FLOOR', 0)


class CounterAdjuster:
    def __init__(self, store=None, floor=_UNSET):
        self.store = store or default_store
        self._floor = floor

    @property
    def floor(self):
        if self._floor is _UNSET:
            return counter_floor()
        return self._floor

    def adjust(self, kind, entity_id, field, delta: int):
        """
        Add delta to entity.field and return the updated entity.

        One atomic point write, touching only that field.
        Raises NotFound if the entity is absent.
        """
        if field not in COUNTER_FIELDS.get(kind, ()):
            raise InvalidState(f"{kind}.{field} is not a counter")
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise InvalidState(f"Counter delta must be an integer, got {delta!r}")

        self.store.apply_delta(kind, entity_id, field, delta, floor=self.floor)
        logger.debug(f"{kind} {entity_id}.{field} {delta:+d}")
        return self.store.get(kind, entity_id)

    def increment(self, kind, entity_id, field):
        return self.adjust(kind, entity_id, field, 1)

    def decrement(self, kind, entity_id, field, amount: int = 1):
        return self.adjust(kind, entity_id, field, -amount)
