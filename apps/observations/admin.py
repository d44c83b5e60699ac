from django.contrib import admin
from .models import Observation


@admin.register(Observation)
class ObservationAdmin(admin.ModelAdmin):
    list_display = ("id", "session", "question", "user", "created_at")
    search_fields = ("alias", "question__name")
    raw_id_fields = ("session", "question", "user")
