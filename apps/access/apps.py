from django.apps import AppConfig


class AccessAppConfig(AppConfig):
    name = 'apps.access'
    label = 'access'
    verbose_name = 'Meal access'

    def ready(self):
        from . import checks  # noqa: F401

        # Fail at startup, not on the first scan.
        from .config import get_access_config
        get_access_config()
