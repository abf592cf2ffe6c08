"""
Data Models for the Forum Backend
=================================

Design Philosophy:
------------------
1. Three flat collections: Forum, Topic, Comment
   - Each row is keyed by its id and references its parent by id
   - References are NOT enforced or cascaded by the database
     (on_delete=DO_NOTHING, db_constraint=False)
   - All cleanup is done explicitly by forums.cascade, in a fixed order

2. Denormalized counters on Forum and Topic
   - Forum.topics / Forum.replies, Topic.replies / Topic.views
   - Derived values, never accepted from clients
   - Updated only through forums.counters with F() expressions
   - forums.reconcile recomputes them from live rows

3. Comment.forum is a copy of the topic's forum taken at creation time
   - Used for bulk cleanup when a forum is deleted
   - Not re-derived if the topic later moves

Indexes Strategy:
-----------------
- forum.name: unique, lookups by name
- forum.parent: child forum listing
- topic.forum + topic.created_date: topics of a forum, newest first
- comment.topic + comment.created_date: comments of a topic, oldest first
- comment.forum: bulk delete on forum removal
"""

from django.db import models
from django.contrib.auth.models import User
from django.utils import timezone


class Forum(models.Model):
    """
    A forum. Either top-level (parent is NULL) or nested under another forum.

    Counters are only a mirror of child cardinality:
    - topics: number of Topic rows with forum == self
    - replies: number of Comment rows under those topics
    """
    name = models.CharField(max_length=100, unique=True)
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True, default='')
    icon = models.CharField(max_length=100)
    parent = models.ForeignKey(
        'self',
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='children',
        db_index=True  # Child forum listing
    )
    options = models.JSONField(default=dict, blank=True)

    topics = models.PositiveIntegerField(default=0)
    replies = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'forums'
        ordering = ['name']

    def __str__(self):
        return self.name


class Topic(models.Model):
    """A discussion thread inside a forum."""
    forum = models.ForeignKey(
        Forum,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='topic_set'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name='forum_topics'
    )
    title = models.CharField(max_length=300)
    text = models.TextField()
    created_date = models.DateTimeField(default=timezone.now, db_index=True)
    updated_date = models.DateTimeField(null=True, blank=True)
    options = models.JSONField(default=dict, blank=True)
    rating = models.JSONField(default=dict, blank=True)

    replies = models.PositiveIntegerField(default=0)
    # Monotonic: only ever incremented
    views = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'forum_topics'
        ordering = ['-created_date']
        indexes = [
            models.Index(fields=['forum', '-created_date'], name='forum_topic_forum_created_idx'),
        ]

    def __str__(self):
        return f"{self.title[:50]} in forum {self.forum_id}"


class Comment(models.Model):
    """A reply inside a topic."""
    topic = models.ForeignKey(
        Topic,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='comment_set'
    )
    # Denormalized back-reference, copied from topic.forum at creation
    forum = models.ForeignKey(
        Forum,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='comment_set',
        db_index=True
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name='forum_comments'
    )
    text = models.TextField()
    rating = models.JSONField(default=dict, blank=True)
    created_date = models.DateTimeField(default=timezone.now)
    updated_date = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'forum_comments'
        ordering = ['created_date']
        indexes = [
            models.Index(fields=['topic', 'created_date'], name='forum_comm_topic_created_idx'),
        ]

    def __str__(self):
        return f"Comment {self.pk} on topic {self.topic_id}"
