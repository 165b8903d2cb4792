from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from ...services.pipeline import PipelineError, build_pipeline


class Command(BaseCommand):
    help = 'Record a draw result by hand for a date and hour slot.'

    def add_arguments(self, parser):
        parser.add_argument('date', type=str, help='Draw date as YYYY-MM-DD')
        parser.add_argument('hour', type=str, help='Draw hour as HH:MM (24h)')
        parser.add_argument('entity', type=str, help='Entity name or two-digit code')
        parser.add_argument('--lottery', type=str, help='Lottery id, e.g. LOTTO_ACTIVO or GUACHARO')

    def handle(self, *args, **options):
        lottery_id = options.get('lottery') or settings.ANIMALITOS_DEFAULT_LOTTERY
        try:
            result = build_pipeline(predictor=None).add_manual_result(
                lottery_id,
                options['date'],
                options['hour'],
                options['entity'],
            )
        except PipelineError as exc:
            raise CommandError(str(exc)) from exc

        entity = result['entity']
        if not result['added']:
            raise CommandError(f"{lottery_id} already has a result for {options['date']} {options['hour']}")
        self.stdout.write(self.style.SUCCESS(
            f"{lottery_id}: recorded {entity['code']} {entity['name']} at {options['date']} {options['hour']}"
        ))
