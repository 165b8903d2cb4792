from django.conf import settings
from django.contrib import admin, messages
from django.utils import timezone

from .models import StorageEntry
from .services.lottery_config import default_lottery_id
from .services.pipeline import build_pipeline


@admin.register(StorageEntry)
class StorageEntryAdmin(admin.ModelAdmin):
    list_display = ('key', 'updated_at')
    search_fields = ('key',)
    readonly_fields = ('updated_at',)
    actions = ['clear_caches', 'trigger_refresh']

    def clear_caches(self, request, queryset):
        build_pipeline(predictor=None).invalidate()
        messages.add_message(
            request,
            messages.INFO,
            f"Caches cleared at {timezone.now():%Y-%m-%d %H:%M}.",
        )

    clear_caches.short_description = 'Clear today and score caches'

    def trigger_refresh(self, request, queryset):
        lottery_ids = {
            key.split(':', 1)[1]
            for key in queryset.values_list('key', flat=True)
            if ':' in key and key.split(':', 1)[1] in settings.ANIMALITOS_LOTTERIES
        }
        pipeline = build_pipeline(predictor=None)
        for lottery_id in sorted(lottery_ids) or [default_lottery_id()]:
            result = pipeline.refresh(lottery_id)
            messages.add_message(
                request,
                messages.INFO,
                f"Refresh of {lottery_id} at {timezone.now():%Y-%m-%d %H:%M}: "
                f"{result['status']}, added {result['added']} draws.",
            )

    trigger_refresh.short_description = 'Refresh today results for the selected lotteries'
