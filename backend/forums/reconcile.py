"""
Counter reconciliation sweep.

Recomputes every derived counter from live rows:

    Forum.topics   = count(Topic where topic.forum == forum)
    Forum.replies  = count(Comment under those topics)
    Topic.replies  = count(Comment where comment.topic == topic)

Only drifted rows are written, so running it twice is a no-op the
second time. Topic.views has no source of truth and is left alone.
"""

import logging

from django.db.models import Count

from .store import FORUMS, TOPICS, default_store

logger = logging.getLogger(__name__)


def recount_counters(store=None) -> dict:
    """
    Repair drifted counters. Returns the number of rows fixed per collection.

    Queries: 2 aggregations + 1 UPDATE per drifted row.
    """
    store = store or default_store
    fixed = {FORUMS: 0, TOPICS: 0}

    topics = list(
        store.model(TOPICS).objects
        .annotate(live_replies=Count('comment_set', distinct=True))
        .values_list('pk', 'replies', 'live_replies')
    )
    for topic_id, replies, live_replies in topics:
        if replies != live_replies:
            logger.warning(
                f"Topic {topic_id} replies drifted: {replies} -> {live_replies}"
            )
            store.update(TOPICS, topic_id, {'replies': live_replies})
            fixed[TOPICS] += 1

    forums = list(
        store.model(FORUMS).objects
        .annotate(
            live_topics=Count('topic_set', distinct=True),
            live_replies=Count('topic_set__comment_set', distinct=True),
        )
        .values_list('pk', 'topics', 'replies', 'live_topics', 'live_replies')
    )
    for forum_id, topics_count, replies, live_topics, live_replies in forums:
        if (topics_count, replies) != (live_topics, live_replies):
            logger.warning(
                f"Forum {forum_id} counters drifted: "
                f"topics {topics_count} -> {live_topics}, "
                f"replies {replies} -> {live_replies}"
            )
            store.update(
                FORUMS, forum_id,
                {'topics': live_topics, 'replies': live_replies}
            )
            fixed[FORUMS] += 1

    return fixed
