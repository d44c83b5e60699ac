import logging
import os
from typing import Optional, Dict

from django.apps import AppConfig
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.utils import OperationalError, ProgrammingError, IntegrityError


class CoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.core"

    def ready(self):
        """Bootstrap superuser (+ optional organization) when the app starts (idempotent)."""
        logger = logging.getLogger("bootstrap")

        try:
            creds = self._read_superuser_env(logger)
            if not creds:
                return

            with transaction.atomic():
                admin = self._ensure_superuser(logger, creds)
                org_name = (os.getenv("BOOTSTRAP_ORGANIZATION") or "").strip()
                if org_name:
                    self._ensure_organization(logger, admin, org_name)

        except (OperationalError, ProgrammingError, IntegrityError):
            logger.info("Database not ready; skipping superuser bootstrap")

    def _read_superuser_env(self, logger) -> Optional[Dict[str, str]]:
        """Read SUPERUSER_* env vars. Return None if incomplete."""
        username = os.getenv("SUPERUSER_USERNAME")
        email = os.getenv("SUPERUSER_EMAIL")
        password = os.getenv("SUPERUSER_PASSWORD")

        if not username or not password:
            logger.debug("SUPERUSER_USERNAME/PASSWORD not set; skipping superuser creation")
            return None

        return {"username": username, "email": email or "", "password": password}

    def _ensure_superuser(self, logger, creds: Dict[str, str]):
        """Create the superuser if missing; return the user instance.
        Safe for concurrent startup across multiple processes/containers.
        """
        User = get_user_model()
        username, email, password = creds["username"], creds["email"], creds["password"]

        try:
            user, created = User.objects.get_or_create(
                username=username,
                defaults={
                    "email": email,
                    "is_superuser": True,
                    "is_staff": True,
                },
            )
        except IntegrityError:
            # Another process created it at the same time
            logger.info("Race detected creating superuser '%s'; fetching existing", username)
            user = User.objects.get(username=username)
            created = False

        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
            logger.info("Created superuser '%s'", username)
        else:
            updates = []
            if not user.is_superuser:
                user.is_superuser = True
                updates.append("is_superuser")
            if not user.is_staff:
                user.is_staff = True
                updates.append("is_staff")
            if email and user.email != email:
                user.email = email
                updates.append("email")
            if updates:
                user.save(update_fields=updates)
                logger.info("Updated superuser '%s' fields: %s", username, updates)

        return user

    def _ensure_organization(self, logger, admin_user, name: str):
        from apps.accounts.models import Organization, OrganizationMember
        from apps.core.enums import AccessRole
        from apps.core.utility import unique_slug

        org = Organization.objects.filter(name=name).first()
        if org is None:
            org = Organization.objects.create(name=name, slug=unique_slug(Organization, name))
            logger.info("Created organization '%s'", name)
        _, created = OrganizationMember.objects.get_or_create(
            organization=org,
            user=admin_user,
            defaults={"role": AccessRole.OWNER.value},
        )
        if created:
            logger.info("Assigned '%s' as owner of '%s'", admin_user.username, name)
