"""User model — identity, role, and the points balance.

The balance (``points``) is written only by the ledger services
(pointforge.services.ledger). API handlers read it; they never assign it.
"""

from django.core.validators import RegexValidator
from django.db import models
from django.utils.translation import gettext_lazy as _


class Role(models.TextChoices):
    REGULAR = "regular", _("Regular")
    CASHIER = "cashier", _("Cashier")
    MANAGER = "manager", _("Manager")
    SUPERUSER = "superuser", _("Superuser")


# Ordered from least to most privileged
ROLE_RANK = {
    Role.REGULAR.value: 0,
    Role.CASHIER.value: 1,
    Role.MANAGER.value: 2,
    Role.SUPERUSER.value: 3,
}


utorid_validator = RegexValidator(
    r"^[A-Za-z0-9]{7,8}$",
    _("UTORid must be 7-8 alphanumeric characters."),
)


class User(models.Model):
    """
    Loyalty program member.

    Lifecycle: created at registration, never deleted. Disabled accounts
    keep their history and are marked ``activated=False``.
    """

    utorid = models.CharField(
        _("utorid"),
        max_length=8,
        unique=True,
        validators=[utorid_validator],
    )
    name = models.CharField(_("name"), max_length=100, blank=True)
    email = models.EmailField(_("email"), blank=True)
    role = models.CharField(
        _("role"),
        max_length=20,
        choices=Role.choices,
        default=Role.REGULAR,
    )

    points = models.IntegerField(
        _("points"),
        default=0,
        help_text=_("Current balance. Mutated only by the ledger."),
    )

    verified = models.BooleanField(_("verified"), default=False)
    suspicious = models.BooleanField(
        _("suspicious"),
        default=False,
        help_text=_("Point effects of this user's transactions are deferred"),
    )
    activated = models.BooleanField(_("activated"), default=True, db_index=True)

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        verbose_name = _("user")
        verbose_name_plural = _("users")
        ordering = ["utorid"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(points__gte=0),
                name="pointforge_user_points_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.utorid}: {self.points}pts"

    def has_role(self, minimum: str) -> bool:
        """True when this user's role is at least ``minimum``."""
        return ROLE_RANK[str(self.role)] >= ROLE_RANK[str(minimum)]
