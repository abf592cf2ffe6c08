"""
Entity Store
============

A thin document-store style facade over the three forum collections.

The rest of the core never touches Forum/Topic/Comment managers directly.
It asks an EntityStore for a collection by name ("kind") and performs
point operations on it:

    get / find_one      -> entity or NotFound
    insert              -> entity, Conflict on unique violation
    update              -> partial merge of the supplied fields only
    delete_one          -> NotFound if absent
    delete_many         -> number of rows removed
    apply_delta         -> atomic F() increment/decrement of one column

WHY update_fields ON PARTIAL UPDATES:
------------------------------------
A plain instance.save() writes every column, including counters.
If a comment was created between our read and our save, the stale
replies value in memory would overwrite the fresh one (lost update).
save(update_fields=...) writes only what the caller supplied.

WHY F() FOR COUNTERS:
---------------------
Naive: read value -> add delta in Python -> write value. Two requests can
read the same value and one increment is lost. An UPDATE with
SET col = col + delta is applied by the database on the current row value.
"""

import logging

from django.db import transaction, IntegrityError
from django.db.models import F, Value
from django.db.models.functions import Greatest

from .exceptions import NotFound, Conflict, InvalidState
from .models import Forum, Topic, Comment

logger = logging.getLogger(__name__)

FORUMS = 'forums'
TOPICS = 'topics'
COMMENTS = 'comments'


class EntityStore:
    """Collection-keyed access to forum entities."""

    def __init__(self, collections=None):
        self.collections = collections or {
            FORUMS: Forum,
            TOPICS: Topic,
            COMMENTS: Comment,
        }

    def model(self, kind):
        try:
            return self.collections[kind]
        except KeyError:
            raise ValueError(f"Unknown collection: {kind}")

    def get(self, kind, entity_id):
        model = self.model(kind)
        try:
            return model.objects.get(pk=entity_id)
        except model.DoesNotExist:
            raise NotFound(kind, entity_id)

    def find_one(self, kind, **predicate):
        entity = self.model(kind).objects.filter(**predicate).first()
        if entity is None:
            raise NotFound(kind, predicate)
        return entity

    def exists(self, kind, entity_id) -> bool:
        return self.model(kind).objects.filter(pk=entity_id).exists()

    def count(self, kind, *conditions, **predicate) -> int:
        return self.model(kind).objects.filter(*conditions, **predicate).count()

    def values(self, kind, field, *conditions, **predicate) -> list:
        return list(
            self.model(kind).objects
            .filter(*conditions, **predicate)
            .values_list(field, flat=True)
        )

    def insert(self, kind, **fields):
        """Insert a new entity. Unique violations become Conflict."""
        try:
            # Savepoint so a failed insert doesn't poison an outer transaction
            with transaction.atomic():
                return self.model(kind).objects.create(**fields)
        except IntegrityError as exc:
            raise Conflict(f"Cannot create {kind}: {exc}")

    def update(self, kind, entity_id, fields: dict):
        """
        Merge the supplied fields into an existing entity.

        Only the supplied columns are written.
        """
        entity = self.get(kind, entity_id)
        if not fields:
            return entity

        for name, value in fields.items():
            setattr(entity, name, value)

        try:
            with transaction.atomic():
                entity.save(update_fields=list(fields))
        except IntegrityError as exc:
            raise Conflict(f"Cannot update {kind} {entity_id}: {exc}")
        return entity

    def delete_one(self, kind, entity_id) -> None:
        deleted_count, _ = self.model(kind).objects.filter(pk=entity_id).delete()
        if not deleted_count:
            raise NotFound(kind, entity_id)

    def delete_many(self, kind, *conditions, **predicate) -> int:
        deleted_count, _ = (
            self.model(kind).objects
            .filter(*conditions, **predicate)
            .delete()
        )
        return deleted_count

    def apply_delta(self, kind, entity_id, field, delta, floor=0) -> None:
        """
        Atomically add delta to a single integer column.

        With a floor, the stored value is max(current + delta, floor).
        Without one, the column's non-negative constraint rejects the write.
        """
        expression = F(field) + delta
        if floor is not None:
            expression = Greatest(expression, Value(floor))

        try:
            with transaction.atomic():
                updated = (
                    self.model(kind).objects
                    .filter(pk=entity_id)
                    .update(**{field: expression})
                )
        except IntegrityError as exc:
            raise InvalidState(
                f"Cannot apply {delta:+d} to {kind} {entity_id}.{field}: {exc}"
            )

        if not updated:
            raise NotFound(kind, entity_id)


default_store = EntityStore()
