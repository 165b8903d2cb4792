from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from ...services.pipeline import PipelineError, build_pipeline


class Command(BaseCommand):
    help = 'Load historical draws from the archive pages of the secondary source.'

    def add_arguments(self, parser):
        parser.add_argument('--lottery', type=str, help='Lottery id, e.g. LOTTO_ACTIVO or GUACHARO')
        parser.add_argument('--max-pages', type=int, help='Max archive pages to walk')
        parser.add_argument('--force', action='store_true', help='Ignore the backfill interval')

    def handle(self, *args, **options):
        lottery_id = options.get('lottery') or settings.ANIMALITOS_DEFAULT_LOTTERY
        max_pages = options.get('max_pages')
        if max_pages is not None and max_pages <= 0:
            raise CommandError('--max-pages must be a positive integer')

        try:
            result = build_pipeline(predictor=None).backfill(
                lottery_id,
                max_pages=max_pages,
                force=bool(options.get('force')),
            )
        except PipelineError as exc:
            raise CommandError(str(exc)) from exc

        if result['skipped']:
            self.stdout.write(self.style.WARNING(
                f'Backfill for {lottery_id} ran recently, use --force to run it again.'
            ))
            return
        self.stdout.write(self.style.SUCCESS(
            f"{lottery_id}: loaded {result['loaded']}, duplicates {result['duplicates']}, "
            f"errors {result['errors']}, pages {result['pages']}"
        ))
