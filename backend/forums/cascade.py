"""
Cascade Deleter
===============

Removes a parent entity together with everything that references it.

ORDER MATTERS:
--------------
Forum deletion:  forum -> its topics -> their comments
Topic deletion:  topic -> its comments

There is no cross-collection transaction around these steps. Issuing the
parent delete first means a failure halfway leaves the most visible entity
already gone; what remains are orphaned children that no route can reach,
and that the next delete or a reconciliation sweep can clean up.
Already-removed rows are never restored.

Counters are NOT touched here. The lifecycle operation that triggers a
topic deletion owns the Forum counter updates (forums.services).
"""

import logging

from django.db.models import Q

from .store import FORUMS, TOPICS, COMMENTS, default_store

logger = logging.getLogger(__name__)


class CascadeResult:
    """Number of rows removed from each collection by one cascade."""
    def __init__(self, forums: int = 0, topics: int = 0, comments: int = 0):
        self.forums = forums
        self.topics = topics
        self.comments = comments

    def as_dict(self) -> dict:
        return {
            'forums': self.forums,
            'topics': self.topics,
            'comments': self.comments,
        }

    def __repr__(self):
        return (
            f"CascadeResult(forums={self.forums}, topics={self.topics}, "
            f"comments={self.comments})"
        )


class CascadeDeleter:
    def __init__(self, store=None):
        self.store = store or default_store

    def delete_forum(self, forum_id) -> CascadeResult:
        """
        Delete a forum, its topics, and their comments.

        Sub-forums are left alone: they keep their own counters and are
        simply no longer reachable through this parent.
        """
        # NotFound here means nothing has been deleted yet
        self.store.get(FORUMS, forum_id)
        topic_ids = self.store.values(TOPICS, 'pk', forum_id=forum_id)

        self.store.delete_one(FORUMS, forum_id)
        topics = self.store.delete_many(TOPICS, forum_id=forum_id)
        # Comments are matched by their denormalized forum as well as by
        # topic, so a comment whose copied forum went stale still goes
        comments = self.store.delete_many(
            COMMENTS,
            Q(forum_id=forum_id) | Q(topic_id__in=topic_ids)
        )

        result = CascadeResult(forums=1, topics=topics, comments=comments)
        logger.info(f"Deleted forum {forum_id}: {result}")
        return result

    def delete_topic(self, topic_id) -> CascadeResult:
        """Delete a topic and its comments."""
        self.store.get(TOPICS, topic_id)

        self.store.delete_one(TOPICS, topic_id)
        comments = self.store.delete_many(COMMENTS, topic_id=topic_id)

        result = CascadeResult(topics=1, comments=comments)
        logger.info(f"Deleted topic {topic_id}: {result}")
        return result
