"""Pytest fixtures for PointForge tests."""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from pointforge.models import Event, Promotion, PromotionKind, Role, User
from pointforge.requests import AdjustmentRequest
from pointforge.services.ledger import PointLedger


@pytest.fixture
def cashier(db):
    """Create a verified cashier."""
    return User.objects.create(
        utorid="cashier1",
        name="Casey Cashier",
        role=Role.CASHIER,
        verified=True,
    )


@pytest.fixture
def manager(db):
    """Create a verified manager."""
    return User.objects.create(
        utorid="manager1",
        name="Morgan Manager",
        role=Role.MANAGER,
        verified=True,
    )


@pytest.fixture
def student(db):
    """Create a verified regular user with no points."""
    return User.objects.create(
        utorid="student1",
        name="Sam Student",
        email="sam@mail.utoronto.ca",
        verified=True,
    )


@pytest.fixture
def student_b(db):
    """Create a second verified regular user."""
    return User.objects.create(
        utorid="student2",
        name="Alex Student",
        verified=True,
    )


@pytest.fixture
def student_c(db):
    """Create a third verified regular user."""
    return User.objects.create(
        utorid="student3",
        name="Jordan Student",
        verified=True,
    )


@pytest.fixture
def organizer(db):
    """Create a regular user who organizes events."""
    return User.objects.create(
        utorid="organzr1",
        name="Olive Organizer",
        verified=True,
    )


@pytest.fixture
def ledger(db):
    return PointLedger()


@pytest.fixture
def fund(db):
    """Give a user points through a manager adjustment."""

    def _fund(user, amount, ledger=None):
        if not User.objects.filter(utorid="fundmgr1").exists():
            User.objects.create(utorid="fundmgr1", role=Role.MANAGER, verified=True)
        (ledger or PointLedger()).apply(
            AdjustmentRequest(actor="fundmgr1", utorid=user.utorid, amount=amount)
        )
        user.refresh_from_db()
        return user

    return _fund


@pytest.fixture
def automatic_promotion(db):
    """10% automatic promotion with a $10 minimum."""
    now = timezone.now()
    return Promotion.objects.create(
        name="Ten Percent",
        kind=PromotionKind.AUTOMATIC,
        start_time=now - timedelta(days=1),
        end_time=now + timedelta(days=1),
        min_spending=Decimal("10.00"),
        rate=Decimal("0.10"),
    )


@pytest.fixture
def onetime_promotion(db):
    """One-time promotion worth 50 flat points."""
    now = timezone.now()
    return Promotion.objects.create(
        name="Welcome Bonus",
        kind=PromotionKind.ONETIME,
        start_time=now - timedelta(days=1),
        end_time=now + timedelta(days=1),
        points=50,
    )


@pytest.fixture
def expired_promotion(db):
    now = timezone.now()
    return Promotion.objects.create(
        name="Last Week",
        kind=PromotionKind.AUTOMATIC,
        start_time=now - timedelta(days=8),
        end_time=now - timedelta(days=1),
        points=100,
    )


@pytest.fixture
def event(db, organizer):
    """Ongoing event with a 100 point pool, organized by ``organizer``."""
    now = timezone.now()
    ev = Event.objects.create(
        name="Study Jam",
        location="BA 1160",
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(hours=2),
        points_remain=100,
        published=True,
    )
    ev.organizers.add(organizer)
    return ev
