from django.apps import AppConfig


class ProgramsConfig(AppConfig):
    """Configuration for the programs application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "programs"
    verbose_name = "Programs"
