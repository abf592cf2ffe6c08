"""
Tests for the forum backend

Focus areas:
1. Counter correctness (topics / replies / views track live rows)
2. Cascade deletion (nothing reachable survives a parent delete)
3. Atomic counter updates (no read-then-write)
4. Role-gated API routes and error mapping
"""

import random
import threading
from io import StringIO
from datetime import timedelta
from unittest import skipUnless

from django.contrib import admin
from django.contrib.auth.models import User, Permission
from django.contrib.contenttypes.models import ContentType
from django.core.management import call_command
from django.db import connection
from django.db.models import F
from django.test import RequestFactory, TestCase, TransactionTestCase, override_settings
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from .cascade import CascadeDeleter
from .counters import CounterAdjuster
from .exceptions import NotFound, Conflict, InvalidState
from .models import Forum, Topic, Comment
from .queries import get_latest_topics, list_top_level_forums, list_child_forums
from .reconcile import recount_counters
from .services import LifecycleCoordinator
from .store import EntityStore, FORUMS, TOPICS, COMMENTS


class ForumTestMixin:
    """Shared fixtures: a store, a coordinator and an author."""

    def setUp(self):
        self.store = EntityStore()
        self.lifecycle = LifecycleCoordinator(self.store)
        self.user = User.objects.create_user('author', 'a@test.com', 'pass')

    def make_forum(self, name='general', **fields):
        fields.setdefault('title', name.title())
        fields.setdefault('icon', 'chat')
        return self.lifecycle.create_forum(name=name, **fields)

    def make_topic(self, forum, title='Topic', **fields):
        fields.setdefault('text', 'Topic text')
        return self.lifecycle.create_topic(forum.pk, user=self.user, title=title, **fields)

    def make_comment(self, topic, text='Reply'):
        return self.lifecycle.create_comment(topic.pk, user=self.user, text=text)

    def reload(self, entity):
        entity.refresh_from_db()
        return entity


class CounterAdjusterTestCase(ForumTestMixin, TestCase):
    """
    Test the counter adjuster.

    CRITICAL: These tests verify that:
    1. The delta is applied by the database, not computed in Python
    2. Decrements clamp at zero by default
    3. Only the named counter column is written
    """

    def setUp(self):
        super().setUp()
        self.counters = CounterAdjuster(self.store)
        self.forum = Forum.objects.create(name='f', title='F', icon='i')

    def test_increment_returns_updated_entity(self):
        forum = self.counters.adjust(FORUMS, self.forum.pk, 'topics', 1)
        self.assertEqual(forum.topics, 1)
        self.assertEqual(self.reload(self.forum).topics, 1)

    def test_signed_delta(self):
        self.counters.adjust(FORUMS, self.forum.pk, 'replies', 5)
        forum = self.counters.adjust(FORUMS, self.forum.pk, 'replies', -3)
        self.assertEqual(forum.replies, 2)

    def test_decrement_floors_at_zero(self):
        forum = self.counters.adjust(FORUMS, self.forum.pk, 'topics', -1)
        self.assertEqual(forum.topics, 0)

    def test_floor_can_be_disabled(self):
        """Without a floor, going negative is rejected, not stored."""
        counters = CounterAdjuster(self.store, floor=None)
        with self.assertRaises(InvalidState):
            counters.adjust(FORUMS, self.forum.pk, 'topics', -1)
        self.assertEqual(self.reload(self.forum).topics, 0)

    @override_settings(FORUMS={'COUNTER_FLOOR': None})
    def test_floor_read_from_settings(self):
        with self.assertRaises(InvalidState):
            self.counters.adjust(FORUMS, self.forum.pk, 'replies', -2)

    def test_missing_entity_is_not_found(self):
        with self.assertRaises(NotFound):
            self.counters.adjust(FORUMS, 99999, 'topics', 1)

    def test_only_counter_fields_can_be_adjusted(self):
        with self.assertRaises(InvalidState):
            self.counters.adjust(FORUMS, self.forum.pk, 'name', 1)
        with self.assertRaises(InvalidState):
            self.counters.adjust(COMMENTS, self.forum.pk, 'replies', 1)

    def test_delta_must_be_integer(self):
        with self.assertRaises(InvalidState):
            self.counters.adjust(FORUMS, self.forum.pk, 'topics', 1.5)

    def test_sibling_fields_untouched(self):
        """A stale in-memory title must not be written back by an adjustment."""
        Forum.objects.filter(pk=self.forum.pk).update(title='Renamed', replies=7)

        self.counters.adjust(FORUMS, self.forum.pk, 'topics', 1)

        forum = self.reload(self.forum)
        self.assertEqual(forum.title, 'Renamed')
        self.assertEqual(forum.replies, 7)
        self.assertEqual(forum.topics, 1)

    def test_adjust_is_single_atomic_update(self):
        """
        The write must be one UPDATE ... SET col = col + delta.

        A SELECT before the UPDATE would mean read-modify-write, which
        loses updates under concurrent requests.
        """
        with CaptureQueriesContext(connection) as context:
            self.counters.adjust(FORUMS, self.forum.pk, 'topics', 1)

        statements = [
            q['sql'] for q in context.captured_queries
            if not q['sql'].upper().startswith(('SAVEPOINT', 'RELEASE'))
        ]
        self.assertTrue(statements[0].upper().startswith('UPDATE'), statements)
        updates = [sql for sql in statements if sql.upper().startswith('UPDATE')]
        self.assertEqual(len(updates), 1)

    def test_competing_write_during_adjust_is_kept(self):
        """
        Another writer bumps the counter right after every read the
        adjuster makes. A read-then-write adjuster would write back its
        stale value and end at 1.
        """
        forum_id = self.forum.pk

        class RacingStore(EntityStore):
            raced = False

            def get(self, kind, entity_id):
                entity = super().get(kind, entity_id)
                if not self.raced:
                    self.raced = True
                    Forum.objects.filter(pk=forum_id).update(topics=F('topics') + 1)
                return entity

        counters = CounterAdjuster(RacingStore())
        counters.adjust(FORUMS, forum_id, 'topics', 1)

        self.assertEqual(self.reload(self.forum).topics, 2)


class CascadeDeleterTestCase(ForumTestMixin, TestCase):
    """Test cascading deletes of forums and topics."""

    def setUp(self):
        super().setUp()
        self.cascade = CascadeDeleter(self.store)

    def test_delete_forum_removes_topics_and_comments(self):
        """
        Forum with 2 topics, each with 2 comments.

        After deletion no forum, topic or comment id survives.
        """
        forum = self.make_forum()
        topics = [self.make_topic(forum, title=f'T{i}') for i in range(2)]
        comments = [self.make_comment(t) for t in topics for _ in range(2)]

        result = self.cascade.delete_forum(forum.pk)

        self.assertEqual(result.as_dict(), {'forums': 1, 'topics': 2, 'comments': 4})
        self.assertFalse(Forum.objects.filter(pk=forum.pk).exists())
        self.assertFalse(Topic.objects.filter(pk__in=[t.pk for t in topics]).exists())
        self.assertFalse(Comment.objects.filter(pk__in=[c.pk for c in comments]).exists())
        for topic in topics:
            with self.assertRaises(NotFound):
                self.store.get(TOPICS, topic.pk)

    def test_delete_forum_leaves_other_forums_alone(self):
        forum = self.make_forum('doomed')
        other = self.make_forum('other')
        other_topic = self.make_topic(other)
        self.make_comment(other_topic)
        self.make_topic(forum)

        self.cascade.delete_forum(forum.pk)

        other = self.reload(other)
        self.assertEqual(other.topics, 1)
        self.assertEqual(other.replies, 1)
        self.assertEqual(Comment.objects.filter(topic=other_topic).count(), 1)

    def test_sub_forum_keeps_counts_but_loses_parent(self):
        parent = self.make_forum('parent')
        child = self.make_forum('child', parent=parent)
        self.make_topic(child)

        self.cascade.delete_forum(parent.pk)

        child = self.reload(child)
        self.assertEqual(child.topics, 1)
        self.assertEqual(child.parent_id, parent.pk)
        self.assertNotIn(child, list_top_level_forums())
        self.assertEqual(list_child_forums(parent.pk), [child])

    def test_delete_forum_removes_comments_with_stale_forum_copy(self):
        """A comment whose copied forum no longer matches still goes with its topic."""
        forum = self.make_forum('a')
        elsewhere = self.make_forum('b')
        topic = self.make_topic(forum)
        comment = self.make_comment(topic)
        Comment.objects.filter(pk=comment.pk).update(forum=elsewhere)

        self.cascade.delete_forum(forum.pk)

        self.assertFalse(Comment.objects.filter(pk=comment.pk).exists())

    def test_delete_missing_forum_deletes_nothing(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        Comment.objects.create(topic=topic, forum_id=424242, user=self.user, text='x')

        with self.assertRaises(NotFound):
            self.cascade.delete_forum(424242)

        self.assertEqual(Comment.objects.count(), 1)

    def test_delete_topic_removes_only_its_comments(self):
        forum = self.make_forum()
        doomed = self.make_topic(forum, title='doomed')
        kept = self.make_topic(forum, title='kept')
        self.make_comment(doomed)
        self.make_comment(doomed)
        kept_comment = self.make_comment(kept)

        result = self.cascade.delete_topic(doomed.pk)

        self.assertEqual(result.as_dict(), {'forums': 0, 'topics': 1, 'comments': 2})
        self.assertEqual(list(Comment.objects.all()), [kept_comment])
        # Counters are the coordinator's job, not the deleter's
        self.assertEqual(self.reload(forum).topics, 2)

    def test_delete_missing_topic(self):
        with self.assertRaises(NotFound):
            self.cascade.delete_topic(31337)


class LifecycleTestCase(ForumTestMixin, TestCase):
    """
    Test the lifecycle coordinator.

    CRITICAL: These tests verify that:
    1. forum.topics == number of topics in the forum
    2. topic.replies == number of comments in the topic
    3. forum.replies == number of comments across the forum's topics
    """

    def assertCountersMatchRows(self, forum):
        forum = self.reload(forum)
        topics = Topic.objects.filter(forum=forum)
        self.assertEqual(forum.topics, topics.count())
        self.assertEqual(forum.replies, Comment.objects.filter(topic__in=topics).count())
        for topic in topics:
            self.assertEqual(topic.replies, Comment.objects.filter(topic=topic).count())

    def test_full_topic_lifecycle(self):
        """
        general forum -> 1 topic -> 3 comments -> delete 1 -> delete topic
        """
        forum = self.make_forum('general')
        self.assertEqual((forum.topics, forum.replies), (0, 0))

        topic = self.make_topic(forum)
        self.assertEqual(self.reload(forum).topics, 1)

        comments = [self.make_comment(topic) for _ in range(3)]
        self.assertEqual(self.reload(topic).replies, 3)
        self.assertEqual(self.reload(forum).replies, 3)

        self.lifecycle.delete_comment(comments[0].pk)
        self.assertEqual(self.reload(topic).replies, 2)
        self.assertEqual(self.reload(forum).replies, 2)

        self.lifecycle.delete_topic(topic.pk)
        forum = self.reload(forum)
        self.assertEqual(forum.topics, 0)
        self.assertEqual(forum.replies, 0)
        self.assertFalse(Comment.objects.filter(topic_id=topic.pk).exists())

    def test_create_forum_ignores_supplied_counters(self):
        forum = self.lifecycle.create_forum(
            name='x', title='X', icon='i', topics=10, replies=20
        )
        self.assertEqual((forum.topics, forum.replies), (0, 0))

    def test_duplicate_forum_name_conflicts(self):
        self.make_forum('general')
        with self.assertRaises(Conflict):
            self.make_forum('general')
        self.assertEqual(Forum.objects.filter(name='general').count(), 1)

    def test_rename_onto_existing_name_conflicts(self):
        self.make_forum('a')
        b = self.make_forum('b')
        with self.assertRaises(Conflict):
            self.lifecycle.update_forum(b.pk, {'name': 'a'})
        self.assertEqual(self.reload(b).name, 'b')

    def test_forum_cannot_be_its_own_ancestor(self):
        root = self.make_forum('root')
        child = self.make_forum('child', parent=root)
        with self.assertRaises(InvalidState):
            self.lifecycle.update_forum(root.pk, {'parent': root})
        with self.assertRaises(InvalidState):
            self.lifecycle.update_forum(root.pk, {'parent': child})

        moved = self.lifecycle.update_forum(child.pk, {'parent': None})
        self.assertIsNone(moved.parent_id)

    def test_create_topic_in_missing_forum(self):
        with self.assertRaises(NotFound):
            self.lifecycle.create_topic(99999, user=self.user, title='t', text='x')
        self.assertEqual(Topic.objects.count(), 0)

    def test_create_topic_ignores_supplied_counters(self):
        forum = self.make_forum()
        topic = self.make_topic(forum, replies=5, views=9)
        self.assertEqual((topic.replies, topic.views), (0, 0))

    def test_update_topic_merges_fields_only(self):
        forum = self.make_forum()
        topic = self.make_topic(forum, title='Old')
        self.make_comment(topic)

        updated = self.lifecycle.update_topic(topic.pk, {'title': 'New', 'replies': 50})

        self.assertEqual(updated.title, 'New')
        self.assertIsNotNone(updated.updated_date)
        topic = self.reload(topic)
        self.assertEqual(topic.text, 'Topic text')
        self.assertEqual(topic.replies, 1)
        self.assertEqual(self.reload(forum).topics, 1)

    def test_update_missing_topic(self):
        with self.assertRaises(NotFound):
            self.lifecycle.update_topic(404, {'title': 'x'})

    def test_delete_topic_uses_removed_comment_count(self):
        forum = self.make_forum()
        keep = self.make_topic(forum, title='keep')
        doomed = self.make_topic(forum, title='doomed')
        self.make_comment(keep)
        for _ in range(3):
            self.make_comment(doomed)

        result = self.lifecycle.delete_topic(doomed.pk)

        self.assertEqual(result.comments, 3)
        self.assertCountersMatchRows(forum)

    def test_delete_topic_with_explicit_reply_count(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        for _ in range(4):
            self.make_comment(topic)

        self.lifecycle.delete_topic(topic.pk, replies=1)

        forum = self.reload(forum)
        self.assertEqual(forum.topics, 0)
        self.assertEqual(forum.replies, 3)

    def test_delete_topic_reply_count_floors_at_zero(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        self.make_comment(topic)

        self.lifecycle.delete_topic(topic.pk, replies=10)

        self.assertEqual(self.reload(forum).replies, 0)

    def test_delete_topic_negative_reply_count(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        with self.assertRaises(InvalidState):
            self.lifecycle.delete_topic(topic.pk, replies=-1)
        # Rejected before anything was removed
        self.assertTrue(Topic.objects.filter(pk=topic.pk).exists())

    def test_delete_topic_whose_forum_is_gone(self):
        """The delete still succeeds; the missing forum is left to recount."""
        forum = self.make_forum()
        topic = self.make_topic(forum)
        self.make_comment(topic)
        Forum.objects.filter(pk=forum.pk).delete()

        result = self.lifecycle.delete_topic(topic.pk)

        self.assertEqual(result.comments, 1)
        self.assertFalse(Topic.objects.filter(pk=topic.pk).exists())
        self.assertFalse(Comment.objects.filter(topic_id=topic.pk).exists())

    def test_delete_comment_whose_forum_is_gone(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        comment = self.make_comment(topic)
        Forum.objects.filter(pk=forum.pk).delete()

        self.lifecycle.delete_comment(comment.pk)

        self.assertFalse(Comment.objects.filter(pk=comment.pk).exists())
        self.assertEqual(self.reload(topic).replies, 0)

    def test_delete_missing_topic_changes_no_counters(self):
        forum = self.make_forum()
        self.make_topic(forum)
        with self.assertRaises(NotFound):
            self.lifecycle.delete_topic(12345)
        self.assertEqual(self.reload(forum).topics, 1)

    def test_view_count_is_monotonic(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)

        previous = 0
        for expected in range(1, 6):
            viewed = self.lifecycle.view_topic(topic.pk)
            self.assertEqual(viewed.views, expected)
            self.assertGreater(viewed.views, previous)
            previous = viewed.views

    def test_view_missing_topic(self):
        with self.assertRaises(NotFound):
            self.lifecycle.view_topic(5150)

    def test_comment_copies_forum_from_topic(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        other = self.make_forum('other')

        comment = self.lifecycle.create_comment(
            topic.pk, user=self.user, text='hi', forum=other, forum_id=other.pk
        )

        self.assertEqual(comment.forum_id, forum.pk)
        self.assertEqual(self.reload(other).replies, 0)

    def test_comment_forum_not_rederived_on_topic_move(self):
        forum = self.make_forum('a')
        topic = self.make_topic(forum)
        comment = self.make_comment(topic)
        other = self.make_forum('b')
        Topic.objects.filter(pk=topic.pk).update(forum=other)

        self.assertEqual(self.reload(comment).forum_id, forum.pk)

    def test_create_comment_on_missing_topic(self):
        with self.assertRaises(NotFound):
            self.lifecycle.create_comment(777, user=self.user, text='x')
        self.assertEqual(Comment.objects.count(), 0)

    def test_update_comment(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        comment = self.make_comment(topic, text='before')

        updated = self.lifecycle.update_comment(comment.pk, {'text': 'after'})

        self.assertEqual(updated.text, 'after')
        self.assertIsNotNone(updated.updated_date)
        self.assertEqual(self.reload(topic).replies, 1)

    def test_delete_missing_comment_changes_no_counters(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        self.make_comment(topic)
        with self.assertRaises(NotFound):
            self.lifecycle.delete_comment(8080)
        self.assertEqual(self.reload(topic).replies, 1)
        self.assertEqual(self.reload(forum).replies, 1)

    def test_delete_forum(self):
        forum = self.make_forum()
        for i in range(2):
            topic = self.make_topic(forum, title=f'T{i}')
            self.make_comment(topic)
            self.make_comment(topic)

        result = self.lifecycle.delete_forum(forum.pk)

        self.assertEqual(result.as_dict(), {'forums': 1, 'topics': 2, 'comments': 4})
        self.assertEqual(Topic.objects.count(), 0)
        self.assertEqual(Comment.objects.count(), 0)

    def test_counters_match_rows_after_random_sequence(self):
        """
        Property: after any mix of creates and deletes, every counter
        equals the number of live child rows.
        """
        rng = random.Random(1234)
        forums = [self.make_forum(f'forum{i}') for i in range(3)]
        topics, comments = [], []

        for _ in range(120):
            action = rng.choice(['topic+', 'topic-', 'comment+', 'comment+', 'comment-'])
            if action == 'topic+':
                topics.append(self.make_topic(rng.choice(forums)))
            elif action == 'topic-' and topics:
                topic = topics.pop(rng.randrange(len(topics)))
                self.lifecycle.delete_topic(topic.pk)
                comments = [c for c in comments if c.topic_id != topic.pk]
            elif action == 'comment+' and topics:
                comments.append(self.make_comment(rng.choice(topics)))
            elif action == 'comment-' and comments:
                comment = comments.pop(rng.randrange(len(comments)))
                self.lifecycle.delete_comment(comment.pk)

        for forum in forums:
            self.assertCountersMatchRows(forum)


class ReconcileTestCase(ForumTestMixin, TestCase):
    """Test the counter reconciliation sweep."""

    def test_repairs_drifted_counters(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        self.make_comment(topic)
        self.make_comment(topic)

        # Simulate a crash between primary write and counter update
        Forum.objects.filter(pk=forum.pk).update(topics=7, replies=0)
        Topic.objects.filter(pk=topic.pk).update(replies=9)

        fixed = recount_counters(self.store)

        self.assertEqual(fixed, {FORUMS: 1, TOPICS: 1})
        forum = self.reload(forum)
        self.assertEqual((forum.topics, forum.replies), (1, 2))
        self.assertEqual(self.reload(topic).replies, 2)

    def test_is_idempotent(self):
        forum = self.make_forum()
        self.make_comment(self.make_topic(forum))
        Forum.objects.filter(pk=forum.pk).update(replies=5)

        recount_counters(self.store)
        self.assertEqual(recount_counters(self.store), {FORUMS: 0, TOPICS: 0})

    def test_leaves_views_alone(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        self.lifecycle.view_topic(topic.pk)

        recount_counters(self.store)

        self.assertEqual(self.reload(topic).views, 1)

    def test_management_command(self):
        forum = self.make_forum()
        Forum.objects.filter(pk=forum.pk).update(topics=3)

        call_command('recount_forum_counters', stdout=StringIO())

        self.assertEqual(self.reload(forum).topics, 0)


class QueriesTestCase(ForumTestMixin, TestCase):
    """Test read-side listings."""

    @override_settings(FORUMS={'LATEST_TOPICS_LIMIT': 2})
    def test_latest_topics_newest_first_with_limit(self):
        forum = self.make_forum()
        now = timezone.now()
        oldest = self.make_topic(forum, title='oldest', created_date=now - timedelta(days=2))
        middle = self.make_topic(forum, title='middle', created_date=now - timedelta(days=1))
        newest = self.make_topic(forum, title='newest', created_date=now)

        latest = get_latest_topics()

        self.assertEqual([t.pk for t in latest], [newest.pk, middle.pk])
        self.assertNotIn(oldest.pk, [t.pk for t in latest])

    def test_latest_topics_skip_orphans(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        Forum.objects.filter(pk=forum.pk).delete()

        self.assertNotIn(topic.pk, [t.pk for t in get_latest_topics()])

    def test_top_level_and_children_sorted_by_name(self):
        root_b = self.make_forum('b-root')
        root_a = self.make_forum('a-root')
        child_z = self.make_forum('z-child', parent=root_a)
        child_y = self.make_forum('y-child', parent=root_a)

        self.assertEqual(list_top_level_forums(), [root_a, root_b])
        self.assertEqual(list_child_forums(root_a.pk), [child_y, child_z])


class SeedCommandTestCase(TestCase):
    """Test the seed_forums management command."""

    def test_seeded_counters_are_consistent(self):
        call_command(
            'seed_forums', '--sample', '--topics', '3', '--comments', '2',
            stdout=StringIO()
        )

        self.assertEqual(Forum.objects.count(), 3)
        self.assertEqual(Topic.objects.count(), 9)
        self.assertEqual(recount_counters(), {FORUMS: 0, TOPICS: 0})

        admin = User.objects.get(username='forum_admin')
        self.assertTrue(admin.has_perm('forums.delete_forum'))
        self.assertTrue(admin.has_perm('forums.view_comment'))


# ============================================================================
# API
# ============================================================================

class ForumAPITestCase(TestCase):
    """
    Test the role-gated routes end to end.

    Uses a superuser for the happy paths and a view-only user for the
    permission checks.
    """

    def setUp(self):
        self.client = APIClient()
        self.admin = User.objects.create_superuser('admin', 'admin@test.com', 'pass')
        self.client.force_authenticate(self.admin)

        self.viewer = User.objects.create_user('viewer', 'v@test.com', 'pass')
        view_perms = Permission.objects.filter(
            content_type__in=ContentType.objects.get_for_models(Forum, Topic, Comment).values(),
            codename__startswith='view_'
        )
        self.viewer.user_permissions.add(*view_perms)

    def create_forum(self, name='general', **extra):
        payload = {'name': name, 'title': name.title(), 'icon': 'chat', 'options': {}}
        payload.update(extra)
        response = self.client.post('/api/forums/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data

    def create_topic(self, forum_id, title='Topic'):
        response = self.client.post(
            f'/api/forums/{forum_id}/topics/',
            {'title': title, 'text': 'Body', 'options': {}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data

    def create_comment(self, topic_id, text='Reply'):
        response = self.client.post(
            f'/api/topics/{topic_id}/comments/', {'text': text}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data

    def test_forum_topic_comment_flow(self):
        forum = self.create_forum()
        self.assertEqual((forum['topics'], forum['replies']), (0, 0))

        topic = self.create_topic(forum['id'])
        self.assertEqual(topic['forum'], forum['id'])
        self.assertEqual(topic['user']['username'], 'admin')

        comments = [self.create_comment(topic['id']) for _ in range(3)]
        self.assertEqual(comments[0]['forum'], forum['id'])

        response = self.client.get(f"/api/forums/{forum['id']}/")
        self.assertEqual((response.data['topics'], response.data['replies']), (1, 3))

        response = self.client.delete(f"/api/comments/{comments[0]['id']}/")
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        response = self.client.get(f"/api/topics/{topic['id']}/")
        self.assertEqual(response.data['replies'], 2)

        response = self.client.delete(f"/api/topics/{topic['id']}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['deleted']['comments'], 2)

        response = self.client.get(f"/api/forums/{forum['id']}/")
        self.assertEqual((response.data['topics'], response.data['replies']), (0, 0))

    def test_client_cannot_set_counters(self):
        response = self.client.post(
            '/api/forums/',
            {'name': 'x', 'title': 'X', 'icon': 'i', 'topics': 40, 'replies': 2},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual((response.data['topics'], response.data['replies']), (0, 0))

    def test_duplicate_forum_name_is_409(self):
        self.create_forum('general')
        response = self.client.post(
            '/api/forums/', {'name': 'general', 'title': 'G', 'icon': 'i'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertIn('error', response.data)

    def test_missing_entities_are_404(self):
        for url in ('/api/forums/999/', '/api/topics/999/', '/api/comments/999/',
                    '/api/forums/name/nope/', '/api/forums/999/topics/'):
            response = self.client.get(url)
            self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND, url)
            self.assertIn('error', response.data)

        response = self.client.post('/api/topics/999/comments/', {'text': 'x'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_self_parenting_is_400(self):
        forum = self.create_forum()
        response = self.client.patch(
            f"/api/forums/{forum['id']}/", {'parent': forum['id']}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_forum_update(self):
        forum = self.create_forum()
        response = self.client.put(
            f"/api/forums/{forum['id']}/",
            {'name': 'renamed', 'title': 'Renamed', 'icon': 'star', 'options': {'locked': True}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['name'], 'renamed')
        self.assertEqual(response.data['options'], {'locked': True})

    def test_delete_topic_with_reply_count_param(self):
        forum = self.create_forum()
        topic = self.create_topic(forum['id'])
        self.create_comment(topic['id'])
        self.create_comment(topic['id'])

        response = self.client.delete(f"/api/topics/{topic['id']}/?replies=1")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get(f"/api/forums/{forum['id']}/")
        self.assertEqual((response.data['topics'], response.data['replies']), (0, 1))

    def test_delete_topic_rejects_negative_reply_count(self):
        forum = self.create_forum()
        topic = self.create_topic(forum['id'])
        response = self.client.delete(f"/api/topics/{topic['id']}/?replies=-3")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @override_settings(FORUMS={
        'COUNTER_FLOOR': None, 'LATEST_TOPICS_LIMIT': 20, 'TOPICS_PAGE_SIZE': 20,
    })
    def test_reply_count_below_zero_is_400_without_floor(self):
        forum = self.create_forum()
        topic = self.create_topic(forum['id'])
        self.create_comment(topic['id'])

        response = self.client.delete(f"/api/topics/{topic['id']}/?replies=5")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('error', response.data)

        # The rejected decrement left the stored count as it was
        self.assertEqual(Forum.objects.get(pk=forum['id']).replies, 1)

    def test_delete_forum_cascades(self):
        forum = self.create_forum()
        for i in range(2):
            topic = self.create_topic(forum['id'], title=f'T{i}')
            self.create_comment(topic['id'])
            self.create_comment(topic['id'])

        response = self.client.delete(f"/api/forums/{forum['id']}/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['deleted'], {'forums': 1, 'topics': 2, 'comments': 4})
        self.assertEqual(Comment.objects.count(), 0)

    def test_view_counter_route(self):
        forum = self.create_forum()
        topic = self.create_topic(forum['id'])

        self.client.force_authenticate(self.viewer)
        for expected in (1, 2):
            response = self.client.post(f"/api/topics/{topic['id']}/views/")
            self.assertEqual(response.status_code, status.HTTP_200_OK)
            self.assertEqual(response.data['views'], expected)

    def test_topic_listing_is_paginated(self):
        forum = self.create_forum()
        for i in range(3):
            self.create_topic(forum['id'], title=f'T{i}')

        response = self.client.get(f"/api/forums/{forum['id']}/topics/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['results']), 3)

        response = self.client.get('/api/forums/name/general/topics/')
        self.assertEqual(len(response.data['results']), 3)

    def test_forum_tree_routes(self):
        root = self.create_forum('root')
        self.create_forum('leaf', parent=root['id'])

        response = self.client.get('/api/forums/main/')
        self.assertEqual([f['name'] for f in response.data], ['root'])

        response = self.client.get(f"/api/forums/{root['id']}/children/")
        self.assertEqual([f['name'] for f in response.data], ['leaf'])

        response = self.client.get('/api/forums/name/root/children/')
        self.assertEqual([f['name'] for f in response.data], ['leaf'])

        response = self.client.get('/api/forums/')
        self.assertEqual([f['name'] for f in response.data], ['leaf', 'root'])

    def test_latest_topics_embed_forum(self):
        forum = self.create_forum()
        self.create_topic(forum['id'])

        response = self.client.get('/api/topics/latest/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['forum']['name'], 'general')

    def test_comment_update_and_listing(self):
        forum = self.create_forum()
        topic = self.create_topic(forum['id'])
        comment = self.create_comment(topic['id'], text='first')

        response = self.client.patch(
            f"/api/comments/{comment['id']}/", {'text': 'edited'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get(f"/api/topics/{topic['id']}/comments/")
        self.assertEqual([c['text'] for c in response.data], ['edited'])

    def test_viewer_cannot_write(self):
        forum = self.create_forum()
        topic = self.create_topic(forum['id'])
        self.client.force_authenticate(self.viewer)

        self.assertEqual(self.client.get(f"/api/forums/{forum['id']}/").status_code,
                         status.HTTP_200_OK)
        self.assertEqual(
            self.client.post('/api/forums/', {'name': 'n', 'title': 't', 'icon': 'i'},
                             format='json').status_code,
            status.HTTP_403_FORBIDDEN
        )
        self.assertEqual(self.client.delete(f"/api/forums/{forum['id']}/").status_code,
                         status.HTTP_403_FORBIDDEN)
        self.assertEqual(
            self.client.post(f"/api/topics/{topic['id']}/comments/", {'text': 'x'},
                             format='json').status_code,
            status.HTTP_403_FORBIDDEN
        )
        self.assertTrue(Forum.objects.filter(pk=forum['id']).exists())

    def test_user_without_roles_cannot_read(self):
        nobody = User.objects.create_user('nobody', 'n@test.com', 'pass')
        self.client.force_authenticate(nobody)
        response = self.client.get('/api/forums/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_anonymous_is_rejected(self):
        self.client.force_authenticate(None)
        response = self.client.get('/api/forums/')
        self.assertIn(response.status_code,
                      (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))


class EntityStoreTestCase(TestCase):
    """Test the store's point and bulk operations."""

    def setUp(self):
        self.store = EntityStore()
        self.forum = self.store.insert(FORUMS, name='general', title='General', icon='i')

    def test_get_and_find_one(self):
        self.assertEqual(self.store.get(FORUMS, self.forum.pk), self.forum)
        self.assertEqual(self.store.find_one(FORUMS, name='general'), self.forum)
        with self.assertRaises(NotFound):
            self.store.find_one(FORUMS, name='missing')

    def test_unknown_collection(self):
        with self.assertRaises(ValueError):
            self.store.get('users', 1)

    def test_update_writes_only_supplied_fields(self):
        stale = self.store.get(FORUMS, self.forum.pk)
        Forum.objects.filter(pk=self.forum.pk).update(topics=4)

        self.store.update(FORUMS, stale.pk, {'title': 'Renamed'})

        forum = Forum.objects.get(pk=self.forum.pk)
        self.assertEqual(forum.title, 'Renamed')
        self.assertEqual(forum.topics, 4)

    def test_update_missing(self):
        with self.assertRaises(NotFound):
            self.store.update(FORUMS, 999, {'title': 'x'})

    def test_delete_one_and_many(self):
        topic_a = self.store.insert(TOPICS, forum=self.forum, title='a', text='x')
        self.store.insert(TOPICS, forum=self.forum, title='b', text='x')

        self.store.delete_one(TOPICS, topic_a.pk)
        with self.assertRaises(NotFound):
            self.store.delete_one(TOPICS, topic_a.pk)

        self.assertEqual(self.store.delete_many(TOPICS, forum_id=self.forum.pk), 1)
        self.assertEqual(self.store.delete_many(TOPICS, forum_id=self.forum.pk), 0)

    def test_apply_delta_on_missing_row(self):
        with self.assertRaises(NotFound):
            self.store.apply_delta(FORUMS, 999, 'topics', 1)


class ForumAdminTestCase(ForumTestMixin, TestCase):
    """The admin must not be a way around the counters or the cascade."""

    def setUp(self):
        super().setUp()
        self.request = RequestFactory().get('/admin/')
        self.request.user = User.objects.create_superuser('root', 'r@test.com', 'pass')

    def test_forum_delete_cascades(self):
        forum = self.make_forum()
        topic = self.make_topic(forum)
        self.make_comment(topic)

        admin.site._registry[Forum].delete_model(self.request, forum)

        self.assertFalse(Forum.objects.filter(pk=forum.pk).exists())
        self.assertFalse(Topic.objects.filter(forum_id=forum.pk).exists())
        self.assertFalse(Comment.objects.filter(forum_id=forum.pk).exists())

    def test_bulk_forum_delete_cascades(self):
        forums = [self.make_forum(name) for name in ('one', 'two')]
        for forum in forums:
            self.make_comment(self.make_topic(forum))

        admin.site._registry[Forum].delete_queryset(
            self.request, Forum.objects.filter(pk__in=[f.pk for f in forums])
        )

        self.assertEqual(Forum.objects.count(), 0)
        self.assertEqual(Topic.objects.count(), 0)
        self.assertEqual(Comment.objects.count(), 0)

    def test_counter_moving_actions_disabled(self):
        topic_admin = admin.site._registry[Topic]
        comment_admin = admin.site._registry[Comment]
        topic = self.make_topic(self.make_forum())
        comment = self.make_comment(topic)

        self.assertFalse(topic_admin.has_add_permission(self.request))
        self.assertFalse(topic_admin.has_delete_permission(self.request, topic))
        self.assertFalse(comment_admin.has_add_permission(self.request))
        self.assertFalse(comment_admin.has_delete_permission(self.request, comment))
        self.assertIn('forum', topic_admin.get_readonly_fields(self.request, topic))
        self.assertIn('topic', comment_admin.get_readonly_fields(self.request, comment))
        self.assertIn('topics', admin.site._registry[Forum].get_readonly_fields(self.request))


@skipUnless(connection.vendor == 'postgresql', "needs concurrent writers")
class CounterConcurrencyTestCase(TransactionTestCase):
    """
    Test counters under real concurrent requests.

    Each thread gets its own database connection, so the increments
    race in the database.
    """

    WORKERS = 8

    def setUp(self):
        self.lifecycle = LifecycleCoordinator(EntityStore())
        self.user = User.objects.create_user('author', 'a@test.com', 'pass')
        self.forum = self.lifecycle.create_forum(name='general', title='General', icon='i')
        self.topic = self.lifecycle.create_topic(
            self.forum.pk, user=self.user, title='Busy', text='Body'
        )

    def run_concurrently(self, action):
        barrier = threading.Barrier(self.WORKERS)
        errors = []

        def worker():
            try:
                barrier.wait()
                action()
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(self.WORKERS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(errors, [])

    def test_concurrent_views_all_count(self):
        self.run_concurrently(lambda: self.lifecycle.view_topic(self.topic.pk))

        self.topic.refresh_from_db()
        self.assertEqual(self.topic.views, self.WORKERS)

    def test_concurrent_comments_all_count(self):
        self.run_concurrently(
            lambda: self.lifecycle.create_comment(self.topic.pk, user=self.user, text='Hi')
        )

        self.topic.refresh_from_db()
        self.forum.refresh_from_db()
        self.assertEqual(self.topic.replies, self.WORKERS)
        self.assertEqual(self.forum.replies, self.WORKERS)
        self.assertEqual(Comment.objects.filter(topic=self.topic).count(), self.WORKERS)
