"""
Management command: give placeholder-numbered orders their final number and resolve
their NumberingIssue rows. Run after a rename failure or from cron. Safe to run multiple times.
"""
from django.core.management.base import BaseCommand

from core.numbering import reconcile_placeholder_numbers


class Command(BaseCommand):
    help = 'Rename orders still under a placeholder number to their final order number'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Only print what would be renamed, do not save',
        )

    def handle(self, *args, **options):
        results = reconcile_placeholder_numbers(dry_run=options['dry_run'])
        if not results:
            self.stdout.write(self.style.SUCCESS('No placeholder order numbers to reconcile.'))
            return
        if options['dry_run']:
            for order_id, old, new, _ in results:
                self.stdout.write(f'Would rename: id={order_id} {old} -> {new}')
            self.stdout.write(self.style.WARNING(f'Dry run: would rename {len(results)} order(s).'))
            return
        failed = [r for r in results if not r[3]]
        for order_id, old, new, _ in failed:
            self.stderr.write(f'Failed: id={order_id} {old} -> {new}')
        self.stdout.write(self.style.SUCCESS(f'Renamed {len(results) - len(failed)} order(s).'))
