from django.db import models


class StorageEntry(models.Model):
    key = models.CharField(max_length=128, unique=True)
    value = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['key']
        verbose_name_plural = 'storage entries'

    def __str__(self) -> str:
        return f"{self.key} ({len(self.value)} chars)"
