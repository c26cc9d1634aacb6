from django.urls import path
from rest_framework.routers import DefaultRouter

from shifts.views import (
    CloseShiftView,
    DraftMachineDetailView,
    DraftMachinesView,
    DraftNotesView,
    DraftShiftView,
    DraftSnapshotView,
    FinalizeShiftView,
    ResumeShiftView,
    ShiftRecordViewSet,
    StartShiftView,
)

router = DefaultRouter()
router.register(r"shifts", ShiftRecordViewSet, basename="shift-record")

# Draft routes come first so "shifts/draft/" is never read as a shift id.
urlpatterns = [
    path("shifts/draft/", DraftShiftView.as_view(), name="shift-draft"),
    path("shifts/draft/start/", StartShiftView.as_view(), name="shift-draft-start"),
    path("shifts/draft/machines/", DraftMachinesView.as_view(), name="shift-draft-machines"),
    path("shifts/draft/machines/<str:label>/", DraftMachineDetailView.as_view(), name="shift-draft-machine-detail"),
    path("shifts/draft/notes/", DraftNotesView.as_view(), name="shift-draft-notes"),
    path("shifts/draft/snapshots/", DraftSnapshotView.as_view(), name="shift-draft-snapshots"),
    path("shifts/draft/finalize/", FinalizeShiftView.as_view(), name="shift-draft-finalize"),
    path("shifts/draft/resume/", ResumeShiftView.as_view(), name="shift-draft-resume"),
    path("shifts/draft/close/", CloseShiftView.as_view(), name="shift-draft-close"),
] + router.urls
