from django.contrib.auth.models import User
from django.test import TestCase
from rest_framework.test import APIClient

from apps.accounts.models import Organization, OrganizationMember
from apps.field_sessions.models import Session
from .models import Project, ProjectMember, QuestionDefinition


class ProjectApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="owner", password="p", email="owner@example.com")
        self.client.force_authenticate(user=self.user)
        self.org = Organization.objects.create(name="Org", slug="org")
        OrganizationMember.objects.create(organization=self.org, user=self.user, role="owner")

    def _project(self, **kwargs):
        kwargs.setdefault("name", "Agencias")
        kwargs.setdefault("created_by", self.user)
        return Project.objects.create(**kwargs)

    def test_create_and_list(self):
        resp = self.client.post(
            "/api/v1/projects/",
            {"name": "Bancos", "organization_id": self.org.id, "agencies": ["Centro", " ", "Centro", "Norte"]},
            format="json",
        )
        self.assertEqual(resp.status_code, 201, resp.content)
        self.assertEqual(resp.json()["agencies"], ["Centro", "Norte"])
        resp = self.client.get("/api/v1/projects/")
        self.assertEqual(resp.json()["count"], 1)

    def test_org_viewer_cannot_create(self):
        viewer = User.objects.create_user(username="v", password="p")
        OrganizationMember.objects.create(organization=self.org, user=viewer, role="viewer")
        self.client.force_authenticate(user=viewer)
        resp = self.client.post("/api/v1/projects/", {"name": "X", "organization_id": self.org.id}, format="json")
        self.assertEqual(resp.status_code, 403)

    def test_org_member_sees_org_projects(self):
        project = self._project(organization=self.org)
        member = User.objects.create_user(username="m", password="p")
        OrganizationMember.objects.create(organization=self.org, user=member, role="member")
        self.client.force_authenticate(user=member)
        resp = self.client.get(f"/api/v1/projects/{project.id}/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["access"]["role"], "member")
        self.assertEqual(self.client.patch(f"/api/v1/projects/{project.id}/", {"name": "Y"}, format="json").status_code, 403)

    def test_outsider_is_denied(self):
        project = self._project()
        outsider = User.objects.create_user(username="o", password="p")
        self.client.force_authenticate(user=outsider)
        resp = self.client.get(f"/api/v1/projects/{project.id}/")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["detail"], "Sin acceso al proyecto")

    def test_only_creator_deletes(self):
        project = self._project()
        admin = User.objects.create_user(username="a", password="p")
        ProjectMember.objects.create(project=project, user=admin, role="admin")
        Session.objects.create(project=project, user=self.user)
        self.client.force_authenticate(user=admin)
        self.assertEqual(self.client.delete(f"/api/v1/projects/{project.id}/").status_code, 403)
        self.client.force_authenticate(user=self.user)
        self.assertEqual(self.client.delete(f"/api/v1/projects/{project.id}/").status_code, 204)
        self.assertFalse(Project.objects.exists())
        self.assertFalse(Session.objects.exists())

    def test_agencies(self):
        project = self._project()
        url = f"/api/v1/projects/{project.id}/agencies/"
        resp = self.client.put(url, {"agencies": ["Sur", "Sur", "Este"]}, format="json")
        self.assertEqual(resp.json(), {"agencies": ["Sur", "Este"]})
        project.refresh_from_db()
        self.assertEqual(project.agencies, ["Sur", "Este"])

    def test_members(self):
        project = self._project()
        other = User.objects.create_user(username="e", password="p", email="e@example.com")
        url = f"/api/v1/projects/{project.id}/members/"
        resp = self.client.post(url, {"email": "e@example.com", "role": "editor"}, format="json")
        self.assertEqual(resp.status_code, 201, resp.content)
        self.assertEqual(self.client.post(url, {"user_id": other.id}, format="json").status_code, 409)
        member_id = resp.json()["id"]
        resp = self.client.patch(f"{url}{member_id}/", {"role": "owner"}, format="json")
        self.assertEqual(resp.status_code, 400)


class QuestionApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="q", password="p")
        self.client.force_authenticate(user=self.user)
        self.project = Project.objects.create(name="P", created_by=self.user)
        self.url = f"/api/v1/projects/{self.project.id}/questions/"

    def test_append_in_order(self):
        first = self.client.post(self.url, {"name": "Nombre"}, format="json").json()
        second = self.client.post(
            self.url, {"name": "Trato", "question_type": "radio", "options": ["Bueno", "Malo"]}, format="json"
        ).json()
        self.assertEqual((first["sort_order"], second["sort_order"]), (1, 2))
        self.assertEqual(first["options"], [])
        names = [q["name"] for q in self.client.get(self.url).json()["results"]]
        self.assertEqual(names, ["Nombre", "Trato"])

    def test_choice_question_needs_options(self):
        resp = self.client.post(self.url, {"name": "Trato", "question_type": "checkbox"}, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_visible_filter(self):
        QuestionDefinition.objects.create(project=self.project, name="A", sort_order=1)
        QuestionDefinition.objects.create(project=self.project, name="B", sort_order=2, is_visible=False)
        self.assertEqual(self.client.get(self.url, {"visible": "true"}).json()["count"], 1)

    def test_reorder(self):
        a = QuestionDefinition.objects.create(project=self.project, name="A", sort_order=1)
        b = QuestionDefinition.objects.create(project=self.project, name="B", sort_order=2)
        resp = self.client.post(f"{self.url}reorder/", {"question_ids": [str(b.id), str(a.id)]}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([q["name"] for q in resp.json()], ["B", "A"])
        resp = self.client.post(f"{self.url}reorder/", {"question_ids": [str(b.id)]}, format="json")
        self.assertEqual(resp.status_code, 400)

    def test_viewer_cannot_manage_questions(self):
        viewer = User.objects.create_user(username="v", password="p")
        ProjectMember.objects.create(project=self.project, user=viewer, role="viewer")
        self.client.force_authenticate(user=viewer)
        self.assertEqual(self.client.get(self.url).status_code, 200)
        self.assertEqual(self.client.post(self.url, {"name": "X"}, format="json").status_code, 403)
