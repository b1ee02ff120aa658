"""
Factory Boy factories for authentication models.

Usage:
    from authentication.tests.factories import UserFactory, AdminUserFactory

    buyer = UserFactory()
    buyer_with_points = UserFactory(points_balance=500)
    operator = AdminUserFactory()
"""

import factory

from authentication.models import User


class UserFactory(factory.django.DjangoModelFactory):
    """
    Factory for User model.

    Users are created through UserManager.create_user() so passwords are
    hashed the same way as in production.
    """

    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    display_name = factory.Faker("name")
    points_balance = 0
    is_active = True
    is_staff = False

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Override create to use UserManager.create_user()."""
        password = kwargs.pop("password", "TestPass123!")
        return model_class.objects.create_user(
            email=kwargs.pop("email"), password=password, **kwargs
        )


class AdminUserFactory(UserFactory):
    """Staff user acting as dispute adjudicator."""

    email = factory.Sequence(lambda n: f"admin{n}@example.com")
    is_staff = True
