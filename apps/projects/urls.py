from django.urls import path
from .views import (
    ProjectListCreateView,
    ProjectDetailView,
    ProjectAgenciesView,
    ProjectMembersView,
    ProjectMemberDetailView,
    QuestionListCreateView,
    QuestionDetailView,
    QuestionReorderView,
)

urlpatterns = [
    path("", ProjectListCreateView.as_view(), name="project-list-create"),
    path("<uuid:project_id>/", ProjectDetailView.as_view(), name="project-detail"),
    path("<uuid:project_id>/agencies/", ProjectAgenciesView.as_view(), name="project-agencies"),
    path("<uuid:project_id>/members/", ProjectMembersView.as_view(), name="project-members"),
    path("<uuid:project_id>/members/<int:member_id>/", ProjectMemberDetailView.as_view(), name="project-member-detail"),
    path("<uuid:project_id>/questions/", QuestionListCreateView.as_view(), name="question-list-create"),
    path("<uuid:project_id>/questions/reorder/", QuestionReorderView.as_view(), name="question-reorder"),
    path("<uuid:project_id>/questions/<uuid:question_id>/", QuestionDetailView.as_view(), name="question-detail"),
]
