"""
Lifecycle Coordinator
=====================

Use-case level operations for forums, topics and comments.

Each operation performs its primary write and then the counter
updates that keep the denormalized aggregates in line:

    Topic created under F     F.topics += 1
    Topic deleted (T in F)    F.topics -= 1, F.replies -= R
    Topic viewed              T.views += 1
    Comment created under T   T.replies += 1, F.replies += 1
    Comment deleted under T   T.replies -= 1, F.replies -= 1
    Forum deleted             cascade only, counters go with the rows
    Updates                   merge fields, no counters

CONSISTENCY GAP:
----------------
Steps run one after another without a surrounding transaction. If a
later step fails, earlier ones stay committed (no compensation).
Lookups that can fail are done before the first write wherever
possible, so the usual NotFound cases leave nothing half done.
A crash between steps can still leave a counter stale; run
`manage.py recount_forum_counters` to repair.
A topic or comment whose forum row is already gone is still deleted;
the forum counter step is skipped with a warning.

Every counter step is a single atomic F() update (see forums.store), so
concurrent requests against the same topic or forum don't lose updates.
"""

import logging
from typing import Optional

from django.utils import timezone

from .cascade import CascadeDeleter, CascadeResult
from .counters import CounterAdjuster
from .exceptions import InvalidState, NotFound
from .store import FORUMS, TOPICS, COMMENTS, EntityStore, default_store

logger = logging.getLogger(__name__)

# Counters are derived; they are never taken from callers
FORUM_COUNTERS = ('topics', 'replies')
TOPIC_COUNTERS = ('replies', 'views')


def _without(fields: dict, excluded) -> dict:
    return {name: value for name, value in fields.items() if name not in excluded}


class LifecycleCoordinator:
    """
    Orchestrates primary writes, counter adjustments and cascades.

    The store is injected; adjuster and deleter default to ones built on
    the same store.
    """

    def __init__(
        self,
        store: Optional[EntityStore] = None,
        counters: Optional[CounterAdjuster] = None,
        cascade: Optional[CascadeDeleter] = None,
    ):
        self.store = store or default_store
        self.counters = counters or CounterAdjuster(self.store)
        self.cascade = cascade or CascadeDeleter(self.store)

    # ------------------------------------------------------------------
    # Forums
    # ------------------------------------------------------------------

    def create_forum(self, **fields):
        """Create a forum with zeroed counters. Duplicate name -> Conflict."""
        fields = _without(fields, FORUM_COUNTERS)
        forum = self.store.insert(FORUMS, topics=0, replies=0, **fields)
        logger.info(f"Created forum {forum.pk} ({forum.name})")
        return forum

    def update_forum(self, forum_id, fields: dict):
        fields = _without(fields, FORUM_COUNTERS)
        if 'parent' in fields:
            self._check_parent(forum_id, fields['parent'])
        return self.store.update(FORUMS, forum_id, fields)

    def delete_forum(self, forum_id) -> CascadeResult:
        return self.cascade.delete_forum(forum_id)

    def _check_parent(self, forum_id, parent):
        """Reject a parent that is the forum itself or one of its descendants."""
        parent_id = getattr(parent, 'pk', parent)
        seen = set()
        while parent_id is not None and parent_id not in seen:
            if parent_id == forum_id:
                raise InvalidState(
                    f"Forum {forum_id} cannot be nested under itself"
                )
            seen.add(parent_id)
            ancestors = self.store.values(FORUMS, 'parent_id', pk=parent_id)
            parent_id = ancestors[0] if ancestors else None

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    def create_topic(self, forum_id, **fields):
        """Insert a topic under an existing forum and bump forum.topics."""
        self.store.get(FORUMS, forum_id)

        fields = _without(fields, TOPIC_COUNTERS + ('forum', 'forum_id'))
        topic = self.store.insert(
            TOPICS, forum_id=forum_id, replies=0, views=0, **fields
        )
        self.counters.increment(FORUMS, forum_id, 'topics')
        logger.info(f"Created topic {topic.pk} in forum {forum_id}")
        return topic

    def update_topic(self, topic_id, fields: dict):
        fields = _without(fields, TOPIC_COUNTERS + ('forum', 'forum_id'))
        fields['updated_date'] = timezone.now()
        return self.store.update(TOPICS, topic_id, fields)

    def delete_topic(self, topic_id, replies: Optional[int] = None) -> CascadeResult:
        """
        Delete a topic and its comments, then fix the forum counters.

        replies is the number of comments to take off forum.replies. When the
        caller doesn't supply it, the number of comments the cascade actually
        removed is used.
        """
        if replies is not None and replies < 0:
            raise InvalidState(f"Reply count must not be negative, got {replies}")

        topic = self.store.get(TOPICS, topic_id)
        forum_id = topic.forum_id

        result = self.cascade.delete_topic(topic_id)

        removed_replies = result.comments if replies is None else replies
        self._decrement_forum(forum_id, topics=1, replies=removed_replies)
        return result

    def view_topic(self, topic_id):
        """Record one view. views never goes down."""
        return self.counters.increment(TOPICS, topic_id, 'views')

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def create_comment(self, topic_id, **fields):
        """
        Insert a comment under a topic.

        The comment's forum is copied from the topic; any forum passed in
        is ignored.
        """
        topic = self.store.get(TOPICS, topic_id)
        forum_id = topic.forum_id

        fields = _without(fields, ('topic', 'topic_id', 'forum', 'forum_id'))
        comment = self.store.insert(
            COMMENTS, topic_id=topic_id, forum_id=forum_id, **fields
        )
        self.counters.increment(TOPICS, topic_id, 'replies')
        self.counters.increment(FORUMS, forum_id, 'replies')
        logger.info(f"Created comment {comment.pk} on topic {topic_id}")
        return comment

    def update_comment(self, comment_id, fields: dict):
        fields = _without(fields, ('topic', 'topic_id', 'forum', 'forum_id'))
        fields['updated_date'] = timezone.now()
        return self.store.update(COMMENTS, comment_id, fields)

    def delete_comment(self, comment_id):
        """Remove a comment and take it off its topic's and forum's counts."""
        comment = self.store.get(COMMENTS, comment_id)
        topic = self.store.get(TOPICS, comment.topic_id)
        forum_id = topic.forum_id

        self.store.delete_one(COMMENTS, comment_id)
        self.counters.decrement(TOPICS, topic.pk, 'replies')
        self._decrement_forum(forum_id, replies=1)
        logger.info(f"Deleted comment {comment_id} from topic {topic.pk}")
        return comment


    def _decrement_forum(self, forum_id, **amounts):
        # The child rows are already gone; a missing forum is drift for
        # recount_forum_counters, not a failed delete.
        try:
            for field, amount in amounts.items():
                if amount:
                    self.counters.decrement(FORUMS, forum_id, field, amount)
        except NotFound:
            logger.warning(f"Forum {forum_id} is gone, skipped counter update {amounts}")


lifecycle = LifecycleCoordinator()
