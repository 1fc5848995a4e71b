from django.apps import AppConfig


class MessagingConfig(AppConfig):
    """Configuration for the messaging application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "messaging"
    verbose_name = "Messaging"
