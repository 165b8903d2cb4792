from django.apps import AppConfig


class AnimalitosConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.animalitos'
    verbose_name = 'Animalitos'
