"""
Management command: replay the order log through the incremental aggregator and compare
it with a full recompute. Read-only; exits non-zero when they disagree.
"""
from django.core.management.base import BaseCommand, CommandError

from core.models import Restaurant
from core.reports import verify_aggregates
from core.utils import parse_date


class Command(BaseCommand):
    help = 'Compare incremental and full-recompute order aggregates'

    def add_arguments(self, parser):
        parser.add_argument('--restaurant', type=int, help='Restaurant id (default: all)')
        parser.add_argument('--date', help='Business day YYYY-MM-DD (default: whole log)')

    def handle(self, *args, **options):
        if options['restaurant']:
            if not Restaurant.objects.filter(pk=options['restaurant']).exists():
                raise CommandError(f"Restaurant {options['restaurant']} not found")
            restaurant_ids = [options['restaurant']]
        else:
            restaurant_ids = list(Restaurant.objects.values_list('id', flat=True))
        day = None
        if options['date']:
            day = parse_date(options['date'])
            if day is None:
                raise CommandError(f"Invalid date: {options['date']}")
        diffs = verify_aggregates(restaurant_ids, date_from=day, date_to=day)
        if not diffs:
            self.stdout.write(self.style.SUCCESS('Aggregates consistent.'))
            return
        for d in diffs:
            self.stderr.write(d)
        raise CommandError(f'{len(diffs)} aggregate difference(s) found.')
