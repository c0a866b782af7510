"""Transaction model — the append-mostly points log."""

from django.db import models
from django.utils.translation import gettext_lazy as _


class TransactionType(models.TextChoices):
    PURCHASE = "purchase", _("Purchase")
    REDEMPTION = "redemption", _("Redemption")
    TRANSFER = "transfer", _("Transfer")
    EVENT = "event", _("Event")
    ADJUSTMENT = "adjustment", _("Adjustment")


# Types whose point effect is deferred while issuer or receiver is suspicious
FLAGGABLE_TYPES = (
    TransactionType.PURCHASE,
    TransactionType.ADJUSTMENT,
    TransactionType.EVENT,
)


class Transaction(models.Model):
    """
    Record of a points movement.

    Immutable once created, except for:
    - ``processed`` / ``processed_by`` / ``processed_at`` (redemptions)
    - ``suspicious`` and the ``applied`` effect flag (flaggable types)

    ``amount`` is signed and applies to ``owner``: the receiver for every
    type except the debit leg of a transfer, which is owned by the sender.
    ``applied`` records whether the amount has reached the owner's balance;
    a record can exist without having affected any balance (pending
    redemptions, suspicious transactions).
    """

    type = models.CharField(
        _("type"),
        max_length=20,
        choices=TransactionType.choices,
        db_index=True,
    )

    issuer = models.ForeignKey(
        "pointforge.User",
        on_delete=models.PROTECT,
        related_name="issued_transactions",
        verbose_name=_("issuer"),
    )
    receiver = models.ForeignKey(
        "pointforge.User",
        on_delete=models.PROTECT,
        related_name="received_transactions",
        verbose_name=_("receiver"),
    )
    owner = models.ForeignKey(
        "pointforge.User",
        on_delete=models.PROTECT,
        related_name="transactions",
        verbose_name=_("owner"),
        help_text=_("User whose balance the amount applies to"),
    )

    amount = models.IntegerField(_("amount"))
    spent = models.DecimalField(
        _("spent"),
        max_digits=14,
        decimal_places=4,
        null=True,
        blank=True,
    )

    promotions = models.ManyToManyField(
        "pointforge.Promotion",
        related_name="transactions",
        blank=True,
        verbose_name=_("promotions applied"),
    )
    related = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("related transaction"),
    )
    event = models.ForeignKey(
        "pointforge.Event",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
        verbose_name=_("event"),
    )

    # Redemption state machine: Requested (False) -> Processed (True)
    processed = models.BooleanField(_("processed"), null=True, blank=True)
    processed_by = models.ForeignKey(
        "pointforge.User",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="processed_redemptions",
        verbose_name=_("processed by"),
    )
    processed_at = models.DateTimeField(_("processed at"), null=True, blank=True)

    suspicious = models.BooleanField(_("suspicious"), default=False, db_index=True)
    applied = models.BooleanField(
        _("applied"),
        default=False,
        help_text=_("Amount has been applied to the owner's balance"),
    )

    remark = models.CharField(_("remark"), max_length=500, blank=True)
    created_by = models.CharField(_("created by"), max_length=8)
    created_at = models.DateTimeField(_("created at"), auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = _("transaction")
        verbose_name_plural = _("transactions")
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["owner", "-created_at"], name="pointforge_tx_owner_created"),
            models.Index(fields=["type", "-created_at"], name="pointforge_tx_type_created"),
        ]

    def __str__(self):
        sign = "+" if self.amount > 0 else ""
        return f"#{self.pk} {self.type} {sign}{self.amount}pts"

    @property
    def is_transfer_debit(self) -> bool:
        return self.type == TransactionType.TRANSFER and self.amount < 0

    def as_dict(self) -> dict:
        """Response shape for the API layer, varying by type."""
        data = {
            "id": self.pk,
            "utorid": self.owner.utorid,
            "type": self.type,
            "amount": self.amount,
            "remark": self.remark,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "promotionIds": sorted(p.pk for p in self.promotions.all()),
            "suspicious": self.suspicious,
            "applied": self.applied,
        }

        if self.type == TransactionType.PURCHASE:
            data["spent"] = float(self.spent or 0)
            data["earned"] = self.amount if self.applied else 0
        elif self.type == TransactionType.REDEMPTION:
            data["redeemed"] = -self.amount
            data["processed"] = bool(self.processed)
            data["processedBy"] = self.processed_by.utorid if self.processed_by else None
        elif self.type == TransactionType.ADJUSTMENT:
            data["relatedId"] = self.related_id
        elif self.type == TransactionType.EVENT:
            data["recipient"] = self.receiver.utorid
            data["awarded"] = self.amount
            data["relatedId"] = self.event_id
        elif self.type == TransactionType.TRANSFER:
            data["sender"] = self.issuer.utorid
            data["recipient"] = self.receiver.utorid
            data["sent"] = abs(self.amount)
            data["relatedId"] = self.related_id

        return data
