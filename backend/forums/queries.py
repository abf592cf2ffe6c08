"""
Read-side Query Functions
=========================

Listing and lookup queries for the forum routes. These never write.

N+1 AVOIDANCE:
--------------
Every topic/comment listing uses select_related('user') so the author
is fetched with a JOIN instead of one query per row. Latest topics also
JOIN the forum.

Query count for each function is noted in its docstring.
"""

from typing import Optional

from django.conf import settings

from .exceptions import NotFound
from .models import Forum, Topic, Comment
from .store import FORUMS, TOPICS, COMMENTS, default_store


def get_forum(forum_id: int) -> Forum:
    """Query: 1"""
    return default_store.get(FORUMS, forum_id)


def get_forum_by_name(name: str) -> Forum:
    """Query: 1 (unique index on name)"""
    return default_store.find_one(FORUMS, name=name)


def list_forums() -> list[Forum]:
    """All forums, sorted by name. Query: 1"""
    return list(Forum.objects.order_by('name'))


def list_top_level_forums() -> list[Forum]:
    """Forums without a parent, sorted by name. Query: 1"""
    return list(Forum.objects.filter(parent__isnull=True).order_by('name'))


def list_child_forums(parent_id: int) -> list[Forum]:
    """Query: 1"""
    return list(Forum.objects.filter(parent_id=parent_id).order_by('name'))


def list_child_forums_by_name(name: str) -> list[Forum]:
    """Query: 2 (parent lookup + children)"""
    parent = get_forum_by_name(name)
    return list_child_forums(parent.pk)


def topics_for_forum(forum_id: int):
    """
    Topics of a forum, newest first, with author.

    Returns a QuerySet so views can paginate it.
    Uses index on (forum, -created_date).
    """
    return (
        Topic.objects
        .filter(forum_id=forum_id)
        .select_related('user')
        .order_by('-created_date')
    )


def topics_for_forum_name(name: str):
    """Query: 1 for the forum, then the topic QuerySet."""
    forum = get_forum_by_name(name)
    return topics_for_forum(forum.pk)


def get_latest_topics(limit: Optional[int] = None) -> list[Topic]:
    """
    Most recently created topics across all forums.

    Ties on created_date are broken by most recently updated.
    Topics whose forum is gone are skipped (inner JOIN on forum).

    Query: 1 (JOIN forum + user)
    """
    if limit is None:
        limit = getattr(settings, 'FORUMS', {}).get('LATEST_TOPICS_LIMIT', 20)
    return list(
        Topic.objects
        .select_related('forum', 'user')
        .order_by('-created_date', '-updated_date')[:limit]
    )


def get_topic_with_author(topic_id: int) -> Topic:
    """Query: 1 (with JOIN)"""
    topic = (
        Topic.objects
        .select_related('user')
        .filter(pk=topic_id)
        .first()
    )
    if topic is None:
        raise NotFound(TOPICS, topic_id)
    return topic


def comments_for_topic(topic_id: int) -> list[Comment]:
    """
    ALL comments of a topic in ONE query, oldest first.

    Query: 1 (with JOIN for author)
    """
    return list(
        Comment.objects
        .filter(topic_id=topic_id)
        .select_related('user')
        .order_by('created_date')
    )


def get_comment(comment_id: int) -> Comment:
    """Query: 1"""
    comment = (
        Comment.objects
        .select_related('user')
        .filter(pk=comment_id)
        .first()
    )
    if comment is None:
        raise NotFound(COMMENTS, comment_id)
    return comment
