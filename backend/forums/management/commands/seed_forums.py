"""
Management command to set up forum roles and, optionally, sample data.

Usage: python manage.py seed_forums [--sample] [--clear]

Roles:
- Creates the `admin` group holding every forum permission
  (view/add/change/delete on Forum, Topic and Comment)

Sample data is created through the lifecycle coordinator, so the
forum and topic counters match the rows.
"""

import random

from django.contrib.auth.models import Group, Permission, User
from django.contrib.contenttypes.models import ContentType
from django.core.management.base import BaseCommand

from forums.models import Forum, Topic, Comment
from forums.services import lifecycle

ADMIN_GROUP = 'admin'

SAMPLE_FORUMS = [
    ('general', 'General Discussion', 'chat'),
    ('announcements', 'Announcements', 'megaphone'),
    ('help', 'Help & Support', 'lifebuoy'),
]


class Command(BaseCommand):
    help = 'Create the forum admin role and optional sample forums'

    def add_arguments(self, parser):
        parser.add_argument(
            '--sample',
            action='store_true',
            help='Create sample forums, topics and comments'
        )
        parser.add_argument(
            '--topics',
            type=int,
            default=5,
            help='Topics per sample forum'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=3,
            help='Maximum comments per sample topic'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing forum data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing forum data...')
            Comment.objects.all().delete()
            Topic.objects.all().delete()
            Forum.objects.all().delete()

        self.stdout.write('Granting forum permissions...')
        group = self._ensure_admin_group()

        if not options['sample']:
            self.stdout.write(self.style.SUCCESS(
                f'Group "{group.name}" has {group.permissions.count()} forum permissions'
            ))
            return

        self.stdout.write('Creating sample forums...')
        author = self._ensure_author(group)
        forums = self._create_forums()

        self.stdout.write('Creating topics and comments...')
        topics, comments = self._create_threads(
            forums, author, options['topics'], options['comments']
        )

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(forums)} forums\n'
            f'  - {topics} topics\n'
            f'  - {comments} comments'
        ))

    def _ensure_admin_group(self):
        group, _ = Group.objects.get_or_create(name=ADMIN_GROUP)
        content_types = ContentType.objects.get_for_models(Forum, Topic, Comment).values()
        permissions = Permission.objects.filter(content_type__in=content_types)
        group.permissions.add(*permissions)
        return group

    def _ensure_author(self, group):
        user, created = User.objects.get_or_create(
            username='forum_admin',
            defaults={'email': 'forum_admin@example.com'}
        )
        if created:
            user.set_password('forum_admin')
            user.save()
        user.groups.add(group)
        return user

    def _create_forums(self):
        forums = []
        for name, title, icon in SAMPLE_FORUMS:
            forum = Forum.objects.filter(name=name).first()
            if forum is None:
                forum = lifecycle.create_forum(
                    name=name,
                    title=title,
                    icon=icon,
                    description=f'{title} forum',
                )
            forums.append(forum)
        return forums

    def _create_threads(self, forums, author, topics_per_forum, max_comments):
        topic_count = 0
        comment_count = 0
        for forum in forums:
            for i in range(topics_per_forum):
                topic = lifecycle.create_topic(
                    forum.pk,
                    user=author,
                    title=f'{forum.title} topic {i + 1}',
                    text=f'Sample topic {i + 1} in {forum.name}.',
                )
                topic_count += 1
                for j in range(random.randint(0, max_comments)):
                    lifecycle.create_comment(
                        topic.pk,
                        user=author,
                        text=f'Reply {j + 1} to "{topic.title}".',
                    )
                    comment_count += 1
        return topic_count, comment_count
