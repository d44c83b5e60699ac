from django.urls import path
from .views import (
    ProjectSessionsExportView,
    SessionDetailView,
    SessionDetailsExportView,
    SessionExportView,
    SessionFinishView,
    SessionListCreateView,
)

urlpatterns = [
    path("", SessionListCreateView.as_view(), name="session-list-create"),
    path("export/", ProjectSessionsExportView.as_view(), name="session-project-export"),
    path("<uuid:session_id>/", SessionDetailView.as_view(), name="session-detail"),
    path("<uuid:session_id>/finish/", SessionFinishView.as_view(), name="session-finish"),
    path("<uuid:session_id>/export/", SessionExportView.as_view(), name="session-export"),
    path("<uuid:session_id>/details-export/", SessionDetailsExportView.as_view(), name="session-details-export"),
]
