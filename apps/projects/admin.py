from django.contrib import admin
from .models import Project, ProjectMember, QuestionDefinition


class QuestionDefinitionInline(admin.TabularInline):
    model = QuestionDefinition
    extra = 0
    fields = ("name", "question_type", "options", "sort_order", "is_visible")


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "organization", "status", "created_by", "created_at")
    list_filter = ("status",)
    search_fields = ("name", "organization__name")
    inlines = [QuestionDefinitionInline]


admin.site.register(ProjectMember)
admin.site.register(QuestionDefinition)
