from django.contrib import admin
from .models import Session


@admin.register(Session)
class SessionAdmin(admin.ModelAdmin):
    list_display = ("id", "project", "user", "agency", "alias", "start_time", "end_time")
    list_filter = ("agency",)
    search_fields = ("alias", "agency", "project__name")
    raw_id_fields = ("project", "user")
