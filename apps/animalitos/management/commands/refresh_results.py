from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from ...services.pipeline import PipelineError, build_pipeline


class Command(BaseCommand):
    help = "Fetch today's draw results and merge them into the stored history."

    def add_arguments(self, parser):
        parser.add_argument('--lottery', type=str, help='Lottery id, e.g. LOTTO_ACTIVO or GUACHARO')
        parser.add_argument('--all', action='store_true', help='Refresh every configured lottery')
        parser.add_argument('--no-cache', action='store_true', help='Drop cached results before fetching')

    def handle(self, *args, **options):
        if options.get('all'):
            lottery_ids = list(settings.ANIMALITOS_LOTTERIES.keys())
        else:
            lottery_ids = [options.get('lottery') or settings.ANIMALITOS_DEFAULT_LOTTERY]

        pipeline = build_pipeline(predictor=None)
        for lottery_id in lottery_ids:
            if options.get('no_cache'):
                pipeline.invalidate(lottery_id)
            try:
                result = pipeline.refresh(lottery_id)
            except PipelineError as exc:
                raise CommandError(str(exc)) from exc

            message = (
                f"{lottery_id}: {result['status']}, added {result['added']}, "
                f"duplicates {result['duplicates']}, unresolved {result['unresolved']} "
                f"[{'; '.join(result['sources'])}]"
            )
            if result['status'] == 'failed':
                self.stdout.write(self.style.WARNING(message))
            else:
                self.stdout.write(self.style.SUCCESS(message))
