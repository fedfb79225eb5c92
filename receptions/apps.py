from django.apps import AppConfig


class ReceptionsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'receptions'

    def ready(self):
        # Import signal handlers
        from . import signals  # noqa: F401
