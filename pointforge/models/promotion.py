"""Promotion models — definitions, wallets, and one-time consumption."""

from datetime import datetime

from django.db import models
from django.utils.translation import gettext_lazy as _


class PromotionKind(models.TextChoices):
    AUTOMATIC = "automatic", _("Automatic")
    ONETIME = "onetime", _("One-time")


class Promotion(models.Model):
    """
    Purchase promotion.

    Active over the half-open window [start_time, end_time). Contributes a
    flat ``points`` bonus and/or a ``rate`` bonus scaled from the amount spent.

    Automatic promotions apply to every qualifying purchase. One-time
    promotions must be in the user's wallet and are consumed on first use
    (see PromotionUsage).
    """

    name = models.CharField(_("name"), max_length=200)
    description = models.TextField(_("description"), blank=True)
    kind = models.CharField(
        _("kind"),
        max_length=20,
        choices=PromotionKind.choices,
        default=PromotionKind.AUTOMATIC,
    )

    start_time = models.DateTimeField(_("starts at"))
    end_time = models.DateTimeField(_("ends at"))

    min_spending = models.DecimalField(
        _("minimum spending"),
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
    )
    points = models.IntegerField(_("flat bonus points"), default=0)
    rate = models.DecimalField(
        _("rate"),
        max_digits=6,
        decimal_places=4,
        null=True,
        blank=True,
        help_text=_("Fraction of spend, e.g. 0.05 for 5%"),
    )

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)

    class Meta:
        verbose_name = _("promotion")
        verbose_name_plural = _("promotions")
        ordering = ["start_time"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_time__gt=models.F("start_time")),
                name="pointforge_promotion_window_ordered",
            ),
            models.CheckConstraint(
                condition=models.Q(points__gte=0),
                name="pointforge_promotion_points_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.kind})"

    def is_active(self, now: datetime) -> bool:
        """Half-open validity window: start <= now < end."""
        return self.start_time <= now < self.end_time

    @property
    def is_onetime(self) -> bool:
        return self.kind == PromotionKind.ONETIME


class PromotionWallet(models.Model):
    """A one-time promotion granted to (or claimed by) a user."""

    user = models.ForeignKey(
        "pointforge.User",
        on_delete=models.CASCADE,
        related_name="wallet",
        verbose_name=_("user"),
    )
    promotion = models.ForeignKey(
        Promotion,
        on_delete=models.CASCADE,
        related_name="wallet_entries",
        verbose_name=_("promotion"),
    )
    added_at = models.DateTimeField(_("added at"), auto_now_add=True)

    class Meta:
        verbose_name = _("wallet entry")
        verbose_name_plural = _("wallet entries")
        constraints = [
            models.UniqueConstraint(
                fields=["user", "promotion"],
                name="pointforge_wallet_unique_user_promotion",
            ),
        ]

    def __str__(self):
        return f"{self.user_id}:{self.promotion_id}"


class PromotionUsage(models.Model):
    """
    Consumption record for a one-time promotion.

    The unique (promotion, user) constraint is what makes consumption
    single-use under concurrency: a second insert fails with IntegrityError
    even if both purchases passed the eligibility check.
    """

    promotion = models.ForeignKey(
        Promotion,
        on_delete=models.PROTECT,
        related_name="usages",
        verbose_name=_("promotion"),
    )
    user = models.ForeignKey(
        "pointforge.User",
        on_delete=models.PROTECT,
        related_name="promotion_usages",
        verbose_name=_("user"),
    )
    transaction = models.ForeignKey(
        "pointforge.Transaction",
        on_delete=models.PROTECT,
        related_name="promotion_usages",
        verbose_name=_("transaction"),
    )
    consumed_at = models.DateTimeField(_("consumed at"), auto_now_add=True)

    class Meta:
        verbose_name = _("promotion usage")
        verbose_name_plural = _("promotion usages")
        constraints = [
            models.UniqueConstraint(
                fields=["promotion", "user"],
                name="pointforge_usage_unique_promotion_user",
            ),
        ]

    def __str__(self):
        return f"{self.promotion_id} used by {self.user_id}"
