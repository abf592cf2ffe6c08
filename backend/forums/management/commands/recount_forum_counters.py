"""
Management command to repair drifted forum/topic counters.

Usage: python manage.py recount_forum_counters

Safe to run at any time, e.g. from cron after a crash or a partially
failed cascade.
"""

from django.core.management.base import BaseCommand

from forums.reconcile import recount_counters
from forums.store import FORUMS, TOPICS


class Command(BaseCommand):
    help = 'Recompute forum and topic counters from live rows'

    def handle(self, *args, **options):
        fixed = recount_counters()
        self.stdout.write(self.style.SUCCESS(
            f'Fixed {fixed[FORUMS]} forums and {fixed[TOPICS]} topics'
        ))
