from datetime import datetime, timedelta, timezone as dt_timezone

from django.contrib.auth.models import User
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from apps.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from apps.core.testing import InMemoryDataAccess
from apps.observations.models import Observation
from apps.projects.models import Project, ProjectMember, QuestionDefinition
from .models import Session
from .services import (
    delete_project_sessions,
    delete_session_with_observations,
    finish_session,
    get_session_creator,
    start_session,
)
from .tasks import close_stale_sessions_task

AUDIO = "[Audio: https://storage.test/voice-recordings/{}]"


class StartSessionTests(SimpleTestCase):
    def setUp(self):
        self.backend = InMemoryDataAccess()
        self.project = {"id": "p1", "status": "active", "agencies": ["Centro", "Norte"]}

    def test_starts_active_session(self):
        row = start_session(self.backend, project=self.project, user_id=1, agency="Centro", alias=" Mañana ")
        self.assertIsNone(row["end_time"])
        self.assertEqual(row["alias"], "Mañana")
        self.assertEqual(len(self.backend.tables["sessions"]), 1)

    def test_agency_must_belong_to_project(self):
        with self.assertRaises(ValidationError):
            start_session(self.backend, project=self.project, user_id=1, agency="Sur")

    def test_any_agency_when_project_has_none(self):
        self.project["agencies"] = []
        row = start_session(self.backend, project=self.project, user_id=1, agency="Sur")
        self.assertEqual(row["agency"], "Sur")

    def test_finished_project_rejects_sessions(self):
        self.project["status"] = "finished"
        with self.assertRaises(ConflictError):
            start_session(self.backend, project=self.project, user_id=1, agency="Centro")
        self.assertEqual(self.backend.calls, [])


class FinishSessionTests(SimpleTestCase):
    def setUp(self):
        self.backend = InMemoryDataAccess(tables={"sessions": [
            {"id": "s1", "project_id": "p1", "user_id": 1, "end_time": None},
            {"id": "s2", "project_id": "p1", "user_id": 1, "end_time": "2024-01-01T00:00:00Z"},
        ]})

    def test_finish_sets_end_time_in_one_write(self):
        row = finish_session(self.backend, "s1", "p1", 1)
        self.assertIsNotNone(row["end_time"])
        self.assertEqual(len(self.backend.calls_for("update_rows", "sessions")), 1)
        self.assertEqual(self.backend.calls_for("read_rows"), [])

    def test_already_finished(self):
        with self.assertRaisesMessage(ConflictError, "Esta sesión ya está finalizada"):
            finish_session(self.backend, "s2", "p1", 1)

    def test_other_users_session(self):
        with self.assertRaisesMessage(PermissionDeniedError, "No tienes permisos para finalizar esta sesión"):
            finish_session(self.backend, "s1", "p1", 2)

    def test_missing_session(self):
        with self.assertRaisesMessage(NotFoundError, "La sesión no existe o ya fue eliminada"):
            finish_session(self.backend, "s9", "p1", 1)


class DeleteSessionTests(SimpleTestCase):
    def setUp(self):
        self.backend = InMemoryDataAccess(tables={
            "sessions": [
                {"id": "s1", "project_id": "p1", "user_id": 1, "end_time": None},
                {"id": "s2", "project_id": "p1", "user_id": 1, "end_time": None},
            ],
            "observations": [
                {"id": "o1", "session_id": "s1", "question_id": "q1", "response": AUDIO.format("a.webm")},
                {"id": "o2", "session_id": "s1", "question_id": "q2", "response": "texto"},
                {"id": "o3", "session_id": "s2", "question_id": "q1", "response": AUDIO.format("b.webm")},
            ],
        })
        self.backend.blobs["voice-recordings"].update({"a.webm", "b.webm"})

    def test_writes_happen_in_order(self):
        deleted = delete_session_with_observations(self.backend, "s1", "p1")
        self.assertEqual(deleted, 2)
        self.assertEqual(
            [(method, table) for method, table, _ in self.backend.calls],
            [
                ("update_rows", "sessions"),
                ("read_rows", "observations"),
                ("remove_blobs", "voice-recordings"),
                ("delete_rows", "observations"),
                ("delete_rows", "sessions"),
            ],
        )
        self.assertEqual(self.backend.blobs["voice-recordings"], {"b.webm"})
        self.assertEqual([o["id"] for o in self.backend.tables["observations"]], ["o3"])
        self.assertEqual([s["id"] for s in self.backend.tables["sessions"]], ["s2"])

    def test_blob_failure_is_not_fatal(self):
        self.backend.fail_on[("remove_blobs", "voice-recordings")] = "bucket offline"
        with self.assertLogs("apps.observations.services", level="WARNING"):
            delete_session_with_observations(self.backend, "s1", "p1")
        self.assertEqual([s["id"] for s in self.backend.tables["sessions"]], ["s2"])

    def test_session_without_recordings_skips_storage(self):
        delete_session_with_observations(self.backend, "s2", "p1")
        self.backend.calls.clear()
        self.backend.tables["observations"] = []
        self.backend.tables["sessions"].append({"id": "s3", "project_id": "p1", "end_time": None})
        delete_session_with_observations(self.backend, "s3", "p1")
        self.assertEqual(self.backend.calls_for("remove_blobs"), [])

    def test_delete_project_sessions(self):
        self.assertEqual(delete_project_sessions(self.backend, "p1"), 2)
        self.assertEqual(self.backend.tables["sessions"], [])
        self.assertEqual(self.backend.tables["observations"], [])
        self.assertEqual(self.backend.blobs["voice-recordings"], set())


class SessionCreatorTests(SimpleTestCase):
    def test_email_from_remote_procedure(self):
        backend = InMemoryDataAccess()
        backend.procedures["get_user_emails"] = lambda user_ids: [{"user_id": uid, "email": "ana@example.com"} for uid in user_ids]
        self.assertEqual(get_session_creator(backend, {"user_id": 7}), "ana@example.com")

    def test_fallback_label(self):
        backend = InMemoryDataAccess()
        backend.procedures["get_user_emails"] = lambda user_ids: []
        self.assertEqual(get_session_creator(backend, {"user_id": "abcdef123456"}), "Usuario abcdef12")

    def test_fallback_on_failure(self):
        backend = InMemoryDataAccess()
        with self.assertLogs("apps.field_sessions.services", level="WARNING"):
            self.assertEqual(get_session_creator(backend, {"user_id": 42}), "Usuario 42")


class CloseStaleSessionsTaskTests(TestCase):
    def test_closes_only_stale_sessions(self):
        user = User.objects.create_user(username="t", password="p")
        project = Project.objects.create(name="P", created_by=user)
        stale = Session.objects.create(project=project, user=user, start_time=timezone.now() - timedelta(hours=30))
        fresh = Session.objects.create(project=project, user=user)
        self.assertEqual(close_stale_sessions_task(batch_size=1), 1)
        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertIsNotNone(stale.end_time)
        self.assertIsNone(fresh.end_time)


class SessionApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="u", password="p", email="u@example.com")
        self.client.force_authenticate(user=self.user)
        self.project = Project.objects.create(name="Bancos", created_by=self.user, agencies=["Centro", "Norte"])
        self.question = QuestionDefinition.objects.create(
            project=self.project, name="¿Satisfecho?", question_type="boolean", sort_order=0
        )
        self.base = f"/api/v1/projects/{self.project.id}/sessions/"

    def _session(self, **kwargs):
        kwargs.setdefault("agency", "Centro")
        return Session.objects.create(project=self.project, user=self.user, **kwargs)

    def test_start_and_list(self):
        resp = self.client.post(self.base, {"agency": "Norte", "alias": "Visita"}, format="json")
        self.assertEqual(resp.status_code, 201, resp.content)
        self.assertTrue(resp.json()["is_active"])
        resp = self.client.get(self.base)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["count"], 1)
        self.assertEqual(resp.json()["results"][0]["alias"], "Visita")

    def test_start_rejects_unknown_agency(self):
        resp = self.client.post(self.base, {"agency": "Sur"}, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_viewer_cannot_start(self):
        viewer = User.objects.create_user(username="v", password="p")
        ProjectMember.objects.create(project=self.project, user=viewer, role="viewer")
        self.client.force_authenticate(user=viewer)
        self.assertEqual(self.client.get(self.base).status_code, 200)
        self.assertEqual(self.client.post(self.base, {"agency": "Centro"}, format="json").status_code, 403)

    def test_list_filters(self):
        self._session(agency="Centro", alias="uno", start_time=datetime(2024, 1, 1, 3, tzinfo=dt_timezone.utc))
        self._session(agency="Norte", alias="dos", start_time=datetime(2024, 1, 1, 12, tzinfo=dt_timezone.utc))
        self.assertEqual(self.client.get(self.base, {"date": "2023-12-31"}).json()["count"], 1)
        self.assertEqual(self.client.get(self.base, {"date": "2024-01-01"}).json()["count"], 1)
        self.assertEqual(self.client.get(self.base, {"agency": "Norte"}).json()["count"], 1)
        self.assertEqual(self.client.get(self.base, {"search": "un"}).json()["results"][0]["alias"], "uno")

    def test_finish_twice(self):
        session = self._session()
        url = f"{self.base}{session.id}/finish/"
        self.assertEqual(self.client.post(url).status_code, 200)
        resp = self.client.post(url)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["detail"], "Esta sesión ya está finalizada")

    def test_session_of_other_project_is_not_found(self):
        other = Project.objects.create(name="Otro", created_by=self.user)
        session = Session.objects.create(project=other, user=self.user)
        resp = self.client.get(f"{self.base}{session.id}/")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["detail"], "Sesión no encontrada")

    def test_detail_and_delete(self):
        session = self._session()
        Observation.objects.create(session=session, question=self.question, user=self.user, response=True)
        resp = self.client.get(f"{self.base}{session.id}/")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["creator"], "u@example.com")
        self.assertEqual(body["observations"][0]["display"], {"kind": "text", "text": "Sí"})

        self.assertEqual(self.client.delete(f"{self.base}{session.id}/").status_code, 204)
        self.assertFalse(Session.objects.filter(pk=session.pk).exists())
        self.assertFalse(Observation.objects.exists())

    def test_project_export_csv(self):
        session = self._session(start_time=datetime(2024, 1, 1, 3, tzinfo=dt_timezone.utc))
        Observation.objects.create(session=session, question=self.question, user=self.user, response="true")
        resp = self.client.get(f"{self.base}export/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp["Content-Type"], "text/csv;charset=utf-8")
        self.assertIn("attachment", resp["Content-Disposition"])
        lines = resp.content.decode("utf-8").split("\n")
        self.assertEqual(lines[0], '"ID de Sesión","Fecha","Agencia","¿Satisfecho?"')
        self.assertEqual(lines[1], f'"{session.id}","31/12/2023","Centro","Sí"')

    def test_project_export_without_sessions(self):
        resp = self.client.get(f"{self.base}export/")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "No hay sesiones para exportar")

    def test_session_exports(self):
        session = self._session(alias="Ronda")
        resp = self.client.get(f"{self.base}{session.id}/details-export/")
        self.assertEqual(resp.status_code, 400)

        Observation.objects.create(session=session, question=self.question, user=self.user, response=False)
        resp = self.client.get(f"{self.base}{session.id}/details-export/")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("sesion-Ronda-", resp["Content-Disposition"])
        self.assertIn('"u","', resp.content.decode("utf-8"))

        resp = self.client.get(f"{self.base}{session.id}/export/")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.content.decode("utf-8").endswith('"No"'))
