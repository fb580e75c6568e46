"""
Tests for accounts: phone-based users, role permissions and the
create_super_admin command.
"""

import os
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import RequestFactory, TestCase

from accounts.permissions import IsDoctor, IsPatient

User = get_user_model()


class CustomUserManagerTests(TestCase):
    def test_create_user_defaults_to_patient(self):
        user = User.objects.create_user(phone="0591000001", password="testpass123", name="Ali")
        self.assertEqual(user.role, User.Role.PATIENT)
        self.assertTrue(user.check_password("testpass123"))
        self.assertFalse(user.is_staff)

    def test_phone_required(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(phone="", password="x")

    def test_create_superuser_is_admin(self):
        admin = User.objects.create_superuser(phone="0591000009", password="x", name="Admin")
        self.assertTrue(admin.is_superuser)
        self.assertTrue(admin.is_staff)
        self.assertEqual(admin.role, User.Role.ADMIN)


class RolePermissionTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.patient = User.objects.create_user(phone="0591000001", password="x", role="PATIENT")
        self.doctor = User.objects.create_user(phone="0591000002", password="x", role="DOCTOR")

    def request_for(self, user):
        request = self.factory.get("/")
        request.user = user
        return request

    def test_is_patient(self):
        self.assertTrue(IsPatient().has_permission(self.request_for(self.patient), None))
        self.assertFalse(IsPatient().has_permission(self.request_for(self.doctor), None))

    def test_is_doctor(self):
        self.assertTrue(IsDoctor().has_permission(self.request_for(self.doctor), None))
        self.assertFalse(IsDoctor().has_permission(self.request_for(self.patient), None))


class CreateSuperAdminCommandTests(TestCase):
    def run_command(self, **env):
        out = StringIO()
        with patch.dict(os.environ, env, clear=False):
            call_command("create_super_admin", stdout=out)
        return out.getvalue()

    def test_missing_env(self):
        with patch.dict(os.environ, {}, clear=True):
            out = StringIO()
            call_command("create_super_admin", stdout=out)
        self.assertIn("Missing", out.getvalue())
        self.assertFalse(User.objects.exists())

    def test_creates_admin(self):
        output = self.run_command(DJANGO_SUPERUSER_PHONE="0599999999", DJANGO_SUPERUSER_PASSWORD="secret")
        self.assertIn("Created admin", output)
        self.assertTrue(User.objects.get(phone="0599999999").is_superuser)

    def test_promotes_existing_user(self):
        User.objects.create_user(phone="0599999999", password="x", role="DOCTOR")
        self.run_command(DJANGO_SUPERUSER_PHONE="0599999999", DJANGO_SUPERUSER_PASSWORD="secret")
        user = User.objects.get(phone="0599999999")
        self.assertTrue(user.is_staff)
        self.assertEqual(user.role, User.Role.ADMIN)
