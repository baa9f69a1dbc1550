from django.apps import AppConfig


class DjangoYetiConfig(AppConfig):
    name = "django_yeti"
    verbose_name = "Yeti"

    # This is the code that gets run when user adds django_yeti
    # to Django's INSTALLED_APPS
    def ready(self) -> None:
        from django_yeti.app_settings import app_settings
        from django_yeti.util.logger import set_quiet_mode

        # Validates the settings early, so misconfiguration is reported on startup
        set_quiet_mode(app_settings.QUIET_MODE)
