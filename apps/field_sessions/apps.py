from django.apps import AppConfig


class FieldSessionsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.field_sessions"
