from datetime import date

from django.contrib.auth.models import User
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from apps.core.enums import QuestionType
from apps.core.exceptions import BackendError, ConflictError, EmptyInputError, ValidationError
from apps.core.testing import InMemoryDataAccess
from apps.field_sessions.models import Session
from apps.projects.models import Project, QuestionDefinition
from .exports import encode_csv, export_all_sessions, export_session, export_session_details, load_export_rows
from .formatting import format_duration, format_for_display, format_response
from .models import Observation
from .services import coerce_for_storage, record_observation, store_voice_recording


class FormatResponseTests(SimpleTestCase):
    def test_deterministic(self):
        samples = [
            (True, "boolean"), ('["a","b"]', "checkbox"), ([{"seconds": 75}], "timer"),
            ({"x": [1, 2]}, "mystery"), ("[Audio: https://x/a.webm]", "voice"), (3.0, "number"),
        ]
        for value, qtype in samples:
            self.assertEqual(format_response(value, qtype), format_response(value, qtype))

    def test_none_is_empty_for_every_type(self):
        for qtype in [t.value for t in QuestionType] + ["mystery", None]:
            self.assertEqual(format_response(None, qtype), "")

    def test_boolean(self):
        self.assertEqual(format_response(True, "boolean"), "Sí")
        self.assertEqual(format_response(False, "boolean"), "No")
        self.assertEqual(format_response("true", "boolean"), "Sí")
        self.assertEqual(format_response("false", "boolean"), "No")
        self.assertEqual(format_response("quizás", "boolean"), "quizás")

    def test_radio_keeps_strings_only(self):
        self.assertEqual(format_response("Alta", "radio"), "Alta")
        self.assertEqual(format_response(3, "radio"), "")

    def test_checkbox(self):
        self.assertEqual(format_response(["a", "b"], "checkbox"), "a, b")
        self.assertEqual(format_response([], "checkbox"), "")
        self.assertEqual(format_response('["a","b"]', "checkbox"), "a, b")
        self.assertEqual(format_response(["a", "", None, "c"], "checkbox"), "a, c")

    def test_checkbox_double_encoded(self):
        self.assertEqual(format_response('"[\\"a\\",\\"b\\"]"', "checkbox"), "a, b")

    def test_checkbox_not_a_list(self):
        self.assertEqual(format_response("suelto", "checkbox"), "")

    def test_number(self):
        self.assertEqual(format_response(12, "number"), "12")
        self.assertEqual(format_response(2.5, "counter"), "2.5")
        self.assertEqual(format_response("42", "number"), "42")
        self.assertEqual(format_response("abc", "number"), "")
        self.assertEqual(format_response(True, "counter"), "")

    def test_timer(self):
        out = format_response([{"alias": "Cycle 1", "seconds": 60}], "timer")
        self.assertIn("Cycle 1", out)
        self.assertIn("1:00", out)
        self.assertIn("Ciclo 1", format_response([{"seconds": 60}], "timer"))
        self.assertIn("Sin duración", format_response([{"alias": "X"}], "timer"))

    def test_timer_joins_cycles(self):
        out = format_response('[{"alias":"A","seconds":5},{"seconds":3725}]', "timer")
        self.assertEqual(out, "A: 0:05 | Ciclo 2: 1:02:05")

    def test_voice(self):
        self.assertEqual(format_response("[Audio: a.mp3]", "voice"), "Audio grabado")
        self.assertEqual(format_response("no audio here", "voice"), "")

    def test_unknown_type(self):
        self.assertEqual(format_response("libre", "mystery"), "libre")
        self.assertEqual(format_response({"a": 1}, "mystery"), '{"a":1}')

    def test_format_duration(self):
        self.assertEqual(format_duration(0), "0:00")
        self.assertEqual(format_duration(59.9), "0:59")
        self.assertEqual(format_duration(3600), "1:00:00")

    def test_non_finite_timer_seconds(self):
        self.assertEqual(format_response('[{"seconds": Infinity}]', "timer"), "Ciclo 1: Sin duración")
        self.assertEqual(format_response('[{"seconds": NaN}]', "timer"), "Ciclo 1: Sin duración")
        self.assertEqual(format_response([{"seconds": "Infinity"}], "timer"), "Ciclo 1: Sin duración")
        self.assertEqual(
            format_for_display([{"seconds": float("inf")}], "timer"),
            {"kind": "timer", "cycles": [{"label": "Ciclo 1", "duration": "Sin duración"}]},
        )

    def test_deeply_nested_json_degrades(self):
        nested = "[" * 100000 + "]" * 100000
        self.assertEqual(format_response(nested, "checkbox"), "")
        self.assertEqual(format_response(nested, "timer"), "")
        self.assertEqual(format_for_display(nested, "timer"), {"kind": "text", "text": "Sin ciclos"})

    def test_radix_number_strings(self):
        for text in ("0x10", "0b101", "0o7"):
            self.assertEqual(format_response(text, "number"), text)
        self.assertEqual(format_response("-0x10", "number"), "")
        self.assertEqual(format_response([{"seconds": "0x10"}], "timer"), "Ciclo 1: 0:16")


class FormatForDisplayTests(SimpleTestCase):
    def test_placeholders(self):
        self.assertEqual(format_for_display(None, "string"), {"kind": "text", "text": "Sin respuesta"})
        self.assertEqual(format_for_display("x", "number")["text"], "Sin valor")
        self.assertEqual(format_for_display("x", "timer")["text"], "Sin ciclos")
        self.assertEqual(format_for_display("texto", "voice")["text"], "Sin audio grabado")

    def test_timer_badges(self):
        out = format_for_display([{"alias": "Caja", "seconds": 90}, {}], "timer")
        self.assertEqual(out["kind"], "timer")
        self.assertEqual(out["cycles"], [
            {"label": "Caja", "duration": "1:30"},
            {"label": "Ciclo 2", "duration": "Sin duración"},
        ])

    def test_audio(self):
        out = format_for_display("[Audio: https://s/b/f.webm]", "voice")
        self.assertEqual(out, {"kind": "audio", "url": "https://s/b/f.webm", "label": "Audio grabado"})


class EncodeCsvTests(SimpleTestCase):
    def test_all_fields_quoted(self):
        self.assertEqual(encode_csv([["a", 'di "hola"', None], ["1", "2", "3"]]), '"a","di ""hola""",""\n"1","2","3"')


QUESTIONS = [
    {"id": "q2", "project_id": "p1", "name": "Comentario", "question_type": "string", "sort_order": 1, "created_at": "2024-01-01T00:00:00Z"},
    {"id": "q1", "project_id": "p1", "name": "¿Satisfecho?", "question_type": "boolean", "sort_order": 0, "created_at": "2024-01-01T00:00:00Z"},
]


class ExportAllSessionsTests(SimpleTestCase):
    def _backend(self, observations):
        return InMemoryDataAccess(tables={"project_observation_options": QUESTIONS, "observations": observations})

    def test_end_to_end_row(self):
        backend = self._backend([
            {"id": "o1", "session_id": "s1", "question_id": "q1", "response": True, "created_at": "2024-01-01T03:05:00Z"},
            {"id": "o2", "session_id": "s1", "question_id": "q2", "response": "Buen servicio", "created_at": "2024-01-01T03:06:00Z"},
        ])
        sessions = [{"id": "s1", "agency": "Centro", "start_time": "2024-01-01T03:00:00Z"}]
        export = export_all_sessions(sessions, "p1", backend=backend, project_name="P", today=date(2024, 2, 1))
        header, row = export.content.split("\n")
        self.assertEqual(header, '"ID de Sesión","Fecha","Agencia","¿Satisfecho?","Comentario"')
        self.assertEqual(row, '"s1","31/12/2023","Centro","Sí","Buen servicio"')
        self.assertEqual(export.filename, "sesiones-P-2024-02-01.csv")

    def test_one_observation_read_for_many_sessions(self):
        backend = self._backend([])
        sessions = [{"id": f"s{i}", "agency": None, "start_time": None} for i in range(25)]
        export_all_sessions(sessions, "p1", backend=backend)
        reads = backend.calls_for("read_rows", "observations")
        self.assertEqual(len(reads), 1)
        self.assertEqual(reads[0][2], {"session_id__in": [s["id"] for s in sessions]})

    def test_missing_answer_keeps_its_column(self):
        backend = self._backend([
            {"id": "o1", "session_id": "s2", "question_id": "q2", "response": "hola", "created_at": "2024-01-01T00:00:00Z"},
        ])
        sessions = [
            {"id": "s1", "agency": "A", "start_time": "2024-03-10T15:00:00Z"},
            {"id": "s2", "agency": "B", "start_time": "2024-03-10T15:00:00Z"},
        ]
        lines = export_all_sessions(sessions, "p1", backend=backend).content.split("\n")
        self.assertEqual(lines[1], '"s1","10/03/2024","A","",""')
        self.assertEqual(lines[2], '"s2","10/03/2024","B","","hola"')

    def test_latest_answer_wins(self):
        backend = self._backend([
            {"id": "o2", "session_id": "s1", "question_id": "q2", "response": "nuevo", "created_at": "2024-01-02T00:00:00Z"},
            {"id": "o1", "session_id": "s1", "question_id": "q2", "response": "viejo", "created_at": "2024-01-01T00:00:00Z"},
        ])
        content = export_all_sessions([{"id": "s1", "start_time": None}], "p1", backend=backend).content
        self.assertTrue(content.endswith('"nuevo"'))

    def test_empty_input_fails_before_any_read(self):
        backend = self._backend([])
        with self.assertRaises(EmptyInputError):
            export_all_sessions([], "p1", backend=backend)
        self.assertEqual(backend.calls, [])

    def test_read_failure_is_wrapped(self):
        backend = self._backend([])
        backend.fail_on[("read_rows", "observations")] = "timeout"
        with self.assertRaises(BackendError) as ctx:
            export_all_sessions([{"id": "s1"}], "p1", backend=backend)
        self.assertEqual(ctx.exception.message, "Error al cargar las observaciones: timeout")

    def test_sort_order_tie_falls_back_to_creation(self):
        backend = InMemoryDataAccess(tables={
            "project_observation_options": [
                {"id": "qb", "project_id": "p1", "name": "Después", "question_type": "string", "sort_order": 1, "created_at": "2024-01-02T00:00:00Z"},
                {"id": "qa", "project_id": "p1", "name": "Antes", "question_type": "string", "sort_order": 1, "created_at": "2024-01-01T00:00:00Z"},
            ],
            "observations": [],
        })
        header = export_all_sessions([{"id": "s1", "start_time": None}], "p1", backend=backend).content.split("\n")[0]
        self.assertEqual(header, '"ID de Sesión","Fecha","Agencia","Antes","Después"')


class LoadExportRowsTests(SimpleTestCase):
    def setUp(self):
        self.backend = InMemoryDataAccess(tables={"project_observation_options": QUESTIONS, "observations": []})

    def test_reads_only_requested_sessions(self):
        questions, observations = load_export_rows(self.backend, "p1", ["s1"])
        self.assertEqual([q["id"] for q in questions], ["q1", "q2"])
        self.assertEqual(observations, [])
        self.assertEqual(self.backend.calls_for("read_rows", "observations")[0][2], {"session_id__in": ["s1"]})

    def test_question_read_failure_is_wrapped(self):
        self.backend.fail_on[("read_rows", "project_observation_options")] = "timeout"
        with self.assertRaises(BackendError) as ctx:
            load_export_rows(self.backend, "p1", ["s1"])
        self.assertEqual(ctx.exception.message, "Error al cargar las opciones del proyecto: timeout")

    def test_observation_read_failure_is_wrapped(self):
        self.backend.fail_on[("read_rows", "observations")] = "timeout"
        with self.assertRaises(BackendError) as ctx:
            load_export_rows(self.backend, "p1", ["s1"])
        self.assertEqual(ctx.exception.message, "Error al cargar las observaciones: timeout")


class SingleSessionExportTests(SimpleTestCase):
    def test_export_session_uses_supplied_rows(self):
        session = {"id": "0123456789abcdef", "agency": "Norte", "start_time": "2024-05-01T12:00:00Z"}
        observations = [{"id": "o1", "session_id": session["id"], "question_id": "q1", "response": "false"}]
        export = export_session(session, observations, sorted(QUESTIONS, key=lambda q: q["sort_order"]), today=date(2024, 5, 2))
        self.assertEqual(export.filename, "sesion-01234567-2024-05-02.csv")
        self.assertEqual(export.content.split("\n")[1], '"0123456789abcdef","01/05/2024","Norte","No",""')

    def test_details_export(self):
        session = {
            "id": "s1", "alias": "Visita", "start_time": "2024-05-01T12:00:00Z", "end_time": "2024-05-01T13:01:05Z",
        }
        observations = [{"question_name": "Espera", "question_type": "number", "response": 7}]
        export = export_session_details(session, observations, "ana@example.com", today=date(2024, 5, 2))
        header, row = export.content.split("\n")
        self.assertTrue(header.endswith('"Duración","Espera"'))
        self.assertEqual(row, '"s1","Visita","ana","01/05/2024 07:00:00","01/05/2024 08:01:05","1:01:05","7"')
        self.assertEqual(export.filename, "sesion-Visita-2024-05-02.csv")

    def test_details_export_requires_answers(self):
        with self.assertRaises(EmptyInputError):
            export_session_details({"id": "s1"}, [], "x")


class CoerceForStorageTests(SimpleTestCase):
    def q(self, qtype, options=None):
        return {"id": "q", "name": "P", "question_type": qtype, "options": options or []}

    def test_empty_values_store_null(self):
        self.assertIsNone(coerce_for_storage("", self.q("string")))
        self.assertIsNone(coerce_for_storage([], self.q("checkbox", ["a"])))

    def test_checkbox_string_is_decoded_once(self):
        self.assertEqual(coerce_for_storage('["a","b"]', self.q("checkbox", ["a", "b"])), ["a", "b"])

    def test_checkbox_rejects_unknown_option(self):
        with self.assertRaises(ValidationError):
            coerce_for_storage(["z"], self.q("checkbox", ["a"]))

    def test_radio_must_be_an_option(self):
        self.assertEqual(coerce_for_storage("a", self.q("radio", ["a"])), "a")
        with self.assertRaises(ValidationError):
            coerce_for_storage("b", self.q("radio", ["a"]))

    def test_number(self):
        self.assertEqual(coerce_for_storage("4", self.q("counter")), 4)
        self.assertEqual(coerce_for_storage(2.5, self.q("number")), 2.5)
        for bad in ("x", True, "Infinity"):
            with self.assertRaises(ValidationError):
                coerce_for_storage(bad, self.q("number"))

    def test_radix_numbers(self):
        self.assertEqual(coerce_for_storage("0x10", self.q("number")), 16)
        self.assertEqual(coerce_for_storage("0b101", self.q("counter")), 5)
        with self.assertRaises(ValidationError):
            coerce_for_storage("-0x10", self.q("number"))

    def test_timer_cycles(self):
        self.assertEqual(
            coerce_for_storage('[{"alias":"A","seconds":"30"},{"seconds":null}]', self.q("timer")),
            [{"alias": "A", "seconds": 30}, {"alias": None, "seconds": None}],
        )

    def test_boolean(self):
        self.assertIs(coerce_for_storage("true", self.q("boolean")), True)
        with self.assertRaises(ValidationError):
            coerce_for_storage("sí", self.q("boolean"))


class RecordObservationTests(SimpleTestCase):
    def setUp(self):
        self.backend = InMemoryDataAccess(tables={
            "project_observation_options": [
                {"id": "q1", "project_id": "p1", "name": "Voz", "question_type": "voice", "options": []},
                {"id": "q2", "project_id": "p1", "name": "Nota", "question_type": "string", "options": []},
                {"id": "q9", "project_id": "p2", "name": "Ajena", "question_type": "string", "options": []},
            ],
        })
        self.session = {"id": "s1", "project_id": "p1", "user_id": 1, "end_time": None}

    def _record(self, question_id, response):
        return record_observation(
            self.backend, project_id="p1", session=self.session, question_id=question_id, response=response, user_id=1
        )

    def test_upsert_replaces_existing_answer(self):
        self._record("q2", "uno")
        self._record("q2", "dos")
        rows = self.backend.tables["observations"]
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["response"], "dos")

    def test_finished_session_rejects_answers(self):
        self.session["end_time"] = "2024-01-01T00:00:00Z"
        with self.assertRaises(ConflictError):
            self._record("q2", "x")

    def test_returned_row_carries_question(self):
        for response in ("uno", "dos"):
            row = self._record("q2", response)
            self.assertEqual((row["question_name"], row["question_type"]), ("Nota", "string"))

    def test_question_from_other_project(self):
        with self.assertRaises(ValidationError):
            self._record("q9", "x")

    def test_voice_upload_replaces_previous_recording(self):
        self.backend.tables["observations"].append(
            {"id": "o1", "session_id": "s1", "question_id": "q1", "user_id": 1,
             "response": "[Audio: https://storage.test/voice-recordings/old.webm]", "created_at": "2024-01-01T00:00:00Z"}
        )
        upload = SimpleUploadedFile("clip.m4a", b"data", content_type="audio/mp4")
        row = store_voice_recording(
            self.backend, project_id="p1", session=self.session, question_id="q1", upload=upload, user_id=1
        )
        self.assertRegex(row["response"], r"^\[Audio: https://storage\.test/voice-recordings/s1_[0-9a-f]{32}\.m4a\]$")
        removed = self.backend.calls_for("remove_blobs")
        self.assertEqual(removed, [("remove_blobs", "voice-recordings", ["old.webm"])])

    def test_voice_upload_requires_voice_question(self):
        upload = SimpleUploadedFile("clip.webm", b"data")
        with self.assertRaises(ValidationError):
            store_voice_recording(
                self.backend, project_id="p1", session=self.session, question_id="q2", upload=upload, user_id=1
            )


class ObservationApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="obs", password="p", email="obs@example.com")
        self.client.force_authenticate(user=self.user)
        self.project = Project.objects.create(name="Agencias", created_by=self.user)
        self.question = QuestionDefinition.objects.create(
            project=self.project, name="Atención", question_type="radio", options=["Buena", "Mala"], sort_order=1
        )
        self.session = Session.objects.create(project=self.project, user=self.user, agency="Centro")
        self.url = f"/api/v1/projects/{self.project.id}/sessions/{self.session.id}/observations/"

    def test_record_and_list(self):
        resp = self.client.post(self.url, {"question_id": str(self.question.id), "response": "Buena"}, format="json")
        self.assertEqual(resp.status_code, 201, resp.content)
        resp = self.client.get(self.url)
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["results"][0]["question_name"], "Atención")
        self.assertEqual(body["results"][0]["display"], {"kind": "text", "text": "Buena"})

    def test_post_response_is_displayed_by_question_type(self):
        timer = QuestionDefinition.objects.create(
            project=self.project, name="Espera", question_type="timer", sort_order=2
        )
        resp = self.client.post(
            self.url, {"question_id": str(timer.id), "response": [{"alias": "A", "seconds": 60}]}, format="json"
        )
        self.assertEqual(resp.status_code, 201, resp.content)
        self.assertEqual(resp.json()["question_type"], "timer")
        self.assertEqual(resp.json()["display"], {"kind": "timer", "cycles": [{"label": "A", "duration": "1:00"}]})

    def test_invalid_option_is_rejected(self):
        resp = self.client.post(self.url, {"question_id": str(self.question.id), "response": "Regular"}, format="json")
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(Observation.objects.exists())

    def test_other_users_cannot_answer(self):
        other = User.objects.create_user(username="x", password="p")
        session = Session.objects.create(project=self.project, user=other)
        from apps.projects.models import ProjectMember
        ProjectMember.objects.create(project=self.project, user=other, role="editor")
        self.client.force_authenticate(user=other)
        url = f"/api/v1/projects/{self.project.id}/sessions/{self.session.id}/observations/"
        resp = self.client.post(url, {"question_id": str(self.question.id), "response": "Buena"}, format="json")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(session.observations.count(), 0)
