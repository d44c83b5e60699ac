from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient
from django.contrib.auth.models import User
from apps.accounts.access import AccessValidator
from apps.accounts.models import Organization, OrganizationMember
from apps.core.enums import AccessRole
from apps.core.exceptions import AuthenticationError, BackendError, NotFoundError, PermissionDeniedError
from apps.core.testing import InMemoryDataAccess


def _backend(user_id=1, **tables):
    user = {"id": user_id, "email": f"u{user_id}@example.com"} if user_id is not None else None
    return InMemoryDataAccess(tables=tables, user=user)


class AccessValidatorTests(SimpleTestCase):
    def setUp(self):
        self.projects = [
            {"id": "p1", "organization_id": 10, "created_by_id": 1, "name": "Agencias"},
            {"id": "p2", "organization_id": 20, "created_by_id": 99, "name": "Otro"},
        ]
        self.sessions = [
            {"id": "s1", "project_id": "p1", "user_id": 1},
            {"id": "s2", "project_id": "p2", "user_id": 99},
        ]

    def test_unauthenticated_is_denied(self):
        decision = AccessValidator(_backend(user_id=None, projects=self.projects)).validate_project_access("p1")
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.error, "Usuario no autenticado")
        with self.assertRaises(AuthenticationError):
            decision.raise_for_denied()

    def test_missing_project(self):
        decision = AccessValidator(_backend(projects=self.projects)).validate_project_access("nope")
        self.assertEqual(decision.error, "Proyecto no encontrado")
        with self.assertRaises(NotFoundError):
            decision.raise_for_denied()

    def test_creator_bypass_without_membership_rows(self):
        backend = _backend(projects=self.projects)
        decision = AccessValidator(backend).validate_project_access("p1")
        self.assertTrue(decision.has_access)
        self.assertIs(decision.role, AccessRole.OWNER)
        self.assertTrue(decision.can_delete)
        # no membership lookups for the creator
        self.assertEqual(backend.calls_for("read_rows", "organization_users"), [])
        self.assertEqual(backend.calls_for("read_rows", "project_users"), [])

    def test_organization_member_gets_org_role(self):
        backend = _backend(
            projects=self.projects,
            organization_users=[{"organization_id": 20, "user_id": 1, "role": "viewer"}],
            organizations=[{"id": 20, "name": "Org"}],
        )
        decision = AccessValidator(backend).validate_project_access("p2")
        self.assertTrue(decision.has_access)
        self.assertIs(decision.role, AccessRole.VIEWER)
        self.assertFalse(decision.can_edit)
        self.assertEqual(decision.organization["name"], "Org")

    def test_membership_in_other_organization_is_denied(self):
        backend = _backend(
            projects=self.projects,
            organization_users=[{"organization_id": 10, "user_id": 1, "role": "admin"}],
        )
        decision = AccessValidator(backend).validate_project_access("p2")
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.error, "Sin acceso al proyecto")
        with self.assertRaises(PermissionDeniedError):
            decision.raise_for_denied()

    def test_project_role_takes_precedence_over_org_role(self):
        backend = _backend(
            projects=self.projects,
            project_users=[{"project_id": "p2", "user_id": 1, "role": "editor"}],
            organization_users=[{"organization_id": 20, "user_id": 1, "role": "member"}],
        )
        decision = AccessValidator(backend).validate_project_access("p2")
        self.assertIs(decision.role, AccessRole.EDITOR)

    def test_backend_failure_becomes_internal_error(self):
        backend = _backend(projects=self.projects)
        backend.fail_on[("read_rows", "projects")] = "connection reset"
        with self.assertLogs("apps.accounts.access", level="ERROR"):
            decision = AccessValidator(backend).validate_project_access("p1")
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.error, "Error interno del servidor")
        with self.assertRaises(BackendError):
            decision.raise_for_denied()

    def test_session_access_returns_session(self):
        decision = AccessValidator(
            _backend(projects=self.projects, sessions=self.sessions)
        ).validate_session_access("p1", "s1")
        self.assertTrue(decision.has_access)
        self.assertEqual(decision.session["id"], "s1")
        self.assertEqual(decision.project["id"], "p1")

    def test_session_from_other_project_is_not_found(self):
        # s2 exists, but under p2
        decision = AccessValidator(
            _backend(projects=self.projects, sessions=self.sessions)
        ).validate_session_access("p1", "s2")
        self.assertFalse(decision.has_access)
        self.assertEqual(decision.error, "Sesión no encontrada")

    def test_session_access_requires_project_access(self):
        decision = AccessValidator(
            _backend(projects=self.projects, sessions=self.sessions)
        ).validate_session_access("p2", "s2")
        self.assertEqual(decision.error, "Sin acceso al proyecto")

    def test_organization_access(self):
        backend = _backend(
            organizations=[{"id": 10, "name": "Org"}],
            organization_users=[{"organization_id": 10, "user_id": 1, "role": "owner"}],
        )
        validator = AccessValidator(backend)
        self.assertIs(validator.validate_organization_access(10).role, AccessRole.OWNER)
        self.assertEqual(validator.validate_organization_access(11).error, "Organización no encontrada")

        backend.tables["organization_users"] = []
        self.assertEqual(
            validator.validate_organization_access(10).error, "No tienes acceso a esta organización"
        )


class AccountsApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="acct", email="acct@example.com", password="pass1234")
        self.client.force_authenticate(user=self.user)

    def _org(self, name="Org", role="owner", user=None):
        org = Organization.objects.create(name=name, slug=name.lower().replace(" ", "-"))
        OrganizationMember.objects.create(organization=org, user=user or self.user, role=role)
        return org

    def test_me_requires_auth(self):
        self.client.force_authenticate(user=None)
        resp = self.client.get("/api/v1/me/")
        self.assertEqual(resp.status_code, 401)

    def test_me_returns_basic_info_with_memberships(self):
        org = self._org()
        resp = self.client.get("/api/v1/me/")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data.get("username"), "acct")
        self.assertEqual(data["organizations"], [{"organization_id": org.id, "role": "owner"}])

    def test_org_create_makes_creator_owner(self):
        resp = self.client.post("/api/v1/orgs/", {"name": "Banco Norte"}, format="json")
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertEqual(body["slug"], "banco-norte")
        member = OrganizationMember.objects.get(organization_id=body["id"], user=self.user)
        self.assertEqual(member.role, "owner")

    def test_org_list_only_shows_memberships(self):
        self._org("Mine")
        stranger = User.objects.create_user(username="other", password="p")
        self._org("Theirs", user=stranger)
        resp = self.client.get("/api/v1/orgs/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([o["name"] for o in resp.json()["results"]], ["Mine"])

    def test_org_detail_requires_membership(self):
        stranger = User.objects.create_user(username="other", password="p")
        org = self._org("Ajena", user=stranger)
        resp = self.client.get(f"/api/v1/orgs/{org.id}/")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["detail"], "No tienes acceso a esta organización")

    def test_org_detail_missing_is_404(self):
        resp = self.client.get("/api/v1/orgs/9999/")
        self.assertEqual(resp.status_code, 404)

    def test_org_patch_requires_manager(self):
        org = self._org("Org P", role="member")
        resp = self.client.patch(f"/api/v1/orgs/{org.id}/", {"description": "x"}, format="json")
        self.assertEqual(resp.status_code, 403)
        OrganizationMember.objects.filter(organization=org).update(role="admin")
        resp2 = self.client.patch(f"/api/v1/orgs/{org.id}/", {"description": "x"}, format="json")
        self.assertEqual(resp2.status_code, 200)
        self.assertEqual(resp2.json()["description"], "x")

    def test_org_delete_only_owner(self):
        org = self._org("Org D", role="admin")
        resp = self.client.delete(f"/api/v1/orgs/{org.id}/")
        self.assertEqual(resp.status_code, 403)
        OrganizationMember.objects.filter(organization=org).update(role="owner")
        resp2 = self.client.delete(f"/api/v1/orgs/{org.id}/")
        self.assertEqual(resp2.status_code, 204)
        self.assertFalse(Organization.objects.filter(pk=org.id).exists())

    def test_add_member_by_email(self):
        org = self._org("Org M")
        User.objects.create_user(username="field", email="field@example.com", password="p")
        resp = self.client.post(
            f"/api/v1/orgs/{org.id}/members/", {"email": "field@example.com", "role": "viewer"}, format="json"
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["role"], "viewer")
        dup = self.client.post(f"/api/v1/orgs/{org.id}/members/", {"email": "field@example.com"}, format="json")
        self.assertEqual(dup.status_code, 409)

        listing = self.client.get(f"/api/v1/orgs/{org.id}/members/")
        self.assertEqual(listing.json()["count"], 2)

    def test_member_delete_requires_manager(self):
        org = self._org("Org X", role="member")
        victim = User.objects.create_user(username="victim", password="p")
        mem = OrganizationMember.objects.create(organization=org, user=victim)
        resp = self.client.delete(f"/api/v1/orgs/{org.id}/members/{mem.id}/")
        self.assertEqual(resp.status_code, 403)
        OrganizationMember.objects.filter(organization=org, user=self.user).update(role="admin")
        resp2 = self.client.delete(f"/api/v1/orgs/{org.id}/members/{mem.id}/")
        self.assertEqual(resp2.status_code, 204)

    def test_owner_cannot_be_removed(self):
        org = self._org("Org O")
        owner = OrganizationMember.objects.get(organization=org, user=self.user)
        resp = self.client.delete(f"/api/v1/orgs/{org.id}/members/{owner.id}/")
        self.assertEqual(resp.status_code, 400)

    def test_my_orgs_lists_roles(self):
        org = self._org("Mía", role="admin")
        resp = self.client.get("/api/v1/my-orgs/")
        self.assertEqual(resp.status_code, 200)
        row = resp.json()["results"][0]
        self.assertEqual(row["organization_id"], org.id)
        self.assertEqual(row["user_role"], "admin")
