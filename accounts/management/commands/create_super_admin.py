import os
from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model

class Command(BaseCommand):
    help = "Creates the admin user from DJANGO_SUPERUSER_* environment variables if it doesn't exist"

    def handle(self, *args, **options):
        User = get_user_model()
        phone = os.environ.get("DJANGO_SUPERUSER_PHONE")
        password = os.environ.get("DJANGO_SUPERUSER_PASSWORD")
        name = os.environ.get("DJANGO_SUPERUSER_NAME", "Admin")
        email = os.environ.get("DJANGO_SUPERUSER_EMAIL") or None

        if not phone or not password:
            self.stdout.write(
                self.style.ERROR(
                    "Missing DJANGO_SUPERUSER_PHONE or DJANGO_SUPERUSER_PASSWORD environment variables."
                )
            )
            return

        user = User.objects.filter(phone=phone).first()
        if user is None:
            User.objects.create_superuser(phone=phone, password=password, name=name, email=email)
            self.stdout.write(self.style.SUCCESS(f"Created admin '{phone}'."))
            return

        if user.is_superuser and user.is_staff:
            self.stdout.write(self.style.SUCCESS(f"Admin '{phone}' already exists."))
            return

        user.is_superuser = True
        user.is_staff = True
        user.role = User.Role.ADMIN
        user.save(update_fields=["is_superuser", "is_staff", "role"])
        self.stdout.write(self.style.SUCCESS(f"User '{phone}' already exists. Granted admin privileges."))
