"""
Management command to ensure an admin user exists (for Docker startup).
"""
import os

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from apps.authz.models import Role, RoleChoices, UserRole


class Command(BaseCommand):
    help = 'Create the admin user with the admin role if it does not exist'

    def handle(self, *args, **options):
        User = get_user_model()

        email = os.environ.get('DJANGO_SUPERUSER_EMAIL', 'admin@example.com')
        password = os.environ.get('DJANGO_SUPERUSER_PASSWORD', 'admin123dev')

        user = User.objects.filter(email=email).first()
        if user is None:
            user = User.objects.create_superuser(email=email, password=password)
            self.stdout.write(self.style.SUCCESS(f'Admin "{email}" created successfully'))
        else:
            self.stdout.write(self.style.WARNING(f'Admin "{email}" already exists'))

        role, _ = Role.objects.get_or_create(name=RoleChoices.ADMIN)
        UserRole.objects.get_or_create(user=user, role=role)
