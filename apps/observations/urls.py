from django.urls import path
from .views import ObservationListCreateView, VoiceRecordingView

urlpatterns = [
    path("observations/", ObservationListCreateView.as_view(), name="observation-list-create"),
    path("voice/", VoiceRecordingView.as_view(), name="voice-recording"),
]
