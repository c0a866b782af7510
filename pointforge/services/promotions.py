"""Promotion service — purchase point arithmetic, eligibility, and wallets.

Arithmetic:
    base points   = ceil(spent * POINTS_PER_DOLLAR)
    bonus (each)  = points + ceil(spent * rate * PROMOTION_RATE_MULTIPLIER)

Both multipliers default to 4 (one point per $0.25). The evaluator never
computes base points; callers add the evaluated bonus on top of them.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_CEILING, Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from pointforge.conf import pointforge_settings
from pointforge.exceptions import NotFoundError, PreconditionError, ValidationError
from pointforge.models import Promotion, PromotionUsage, PromotionWallet, User

logger = logging.getLogger(__name__)


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def base_points(spent: Decimal) -> int:
    """Points earned by a purchase before promotions."""
    return _ceil(Decimal(spent) * pointforge_settings.POINTS_PER_DOLLAR)


def promotion_bonus(promotion: Promotion, spent: Decimal) -> int:
    """Bonus contributed by one promotion. Flat and rate parts are independent."""
    bonus = promotion.points or 0
    if promotion.rate:
        multiplier = pointforge_settings.PROMOTION_RATE_MULTIPLIER
        bonus += _ceil(Decimal(spent) * promotion.rate * multiplier)
    return bonus


@dataclass
class PromotionEvaluation:
    """Promotions applied to a purchase and the bonus they add."""

    applied_ids: list[int] = field(default_factory=list)
    bonus_points: int = 0
    onetime_ids: list[int] = field(default_factory=list)


class PromotionEvaluator:
    """
    Decides which candidate promotions apply to a purchase.

    Ineligible and unknown promotions are excluded silently. The evaluator
    reads promotions but never writes: consuming one-time promotions is the
    ledger's job, inside the purchase's database transaction.
    """

    def __init__(self, using: str = "default"):
        self.using = using

    def evaluate(
        self,
        spent: Decimal,
        candidate_ids: Iterable,
        now: datetime,
        wallet: Iterable[int],
        consumed: Iterable[int] = (),
        require_any: bool = False,
    ) -> PromotionEvaluation:
        """
        Evaluate candidate promotions for a purchase.

        Args:
            spent: Amount spent
            candidate_ids: Promotion ids supplied by the caller
            now: Evaluation instant
            wallet: One-time promotion ids granted to the purchaser
            consumed: One-time promotion ids the purchaser already used
            require_any: Fail if none of a non-empty candidate list exists

        Returns:
            PromotionEvaluation

        Raises:
            ValidationError: If a candidate id is not an integer
            NotFoundError: If require_any and no candidate id resolves
        """
        ids = self.normalize_ids(candidate_ids)
        if not ids:
            return PromotionEvaluation()

        promotions = {
            p.pk: p for p in Promotion.objects.using(self.using).filter(pk__in=ids)
        }
        if require_any and not promotions:
            raise NotFoundError("PROMOTION_NOT_FOUND", promotion_ids=ids)

        wallet = set(wallet)
        consumed = set(consumed)
        result = PromotionEvaluation()

        for promotion_id in ids:
            promotion = promotions.get(promotion_id)
            if promotion is None:
                logger.debug("Dropping unknown promotion %s", promotion_id)
                continue
            if not self.is_eligible(promotion, spent, now, wallet, consumed):
                continue

            result.applied_ids.append(promotion_id)
            result.bonus_points += promotion_bonus(promotion, spent)
            if promotion.is_onetime:
                result.onetime_ids.append(promotion_id)

        return result

    @staticmethod
    def is_eligible(
        promotion: Promotion,
        spent: Decimal,
        now: datetime,
        wallet: set[int],
        consumed: set[int],
    ) -> bool:
        """Window, minimum spend, and (one-time only) wallet/consumption checks."""
        if not promotion.is_active(now):
            return False

        min_spending = promotion.min_spending or Decimal("0")
        if Decimal(spent) < min_spending:
            return False

        if promotion.is_onetime:
            return promotion.pk in wallet and promotion.pk not in consumed

        return True

    @staticmethod
    def normalize_ids(candidate_ids: Iterable | None) -> list[int]:
        """Integer ids in caller order, duplicates removed."""
        ids: list[int] = []
        for raw in candidate_ids or ():
            if isinstance(raw, bool):
                raise ValidationError("INVALID_PROMOTION_ID", value=raw)
            try:
                promotion_id = int(raw)
            except (TypeError, ValueError):
                raise ValidationError("INVALID_PROMOTION_ID", value=raw)
            if isinstance(raw, float) and raw != promotion_id:
                raise ValidationError("INVALID_PROMOTION_ID", value=raw)
            if promotion_id not in ids:
                ids.append(promotion_id)
        return ids


# =============================================================================
# Wallet
# =============================================================================


def _get_user(utorid: str, using: str) -> User:
    try:
        return User.objects.using(using).get(utorid=utorid, activated=True)
    except User.DoesNotExist:
        raise NotFoundError("USER_NOT_FOUND", utorid=utorid)


def _get_promotion(promotion_id: int, using: str) -> Promotion:
    try:
        return Promotion.objects.using(using).get(pk=promotion_id)
    except Promotion.DoesNotExist:
        raise NotFoundError("PROMOTION_NOT_FOUND", promotion_id=promotion_id)


def add_to_wallet(
    utorid: str,
    promotion_id: int,
    now: datetime | None = None,
    using: str = "default",
) -> PromotionWallet:
    """
    Add a one-time promotion to a user's wallet.

    Raises:
        NotFoundError: Unknown user or promotion
        PreconditionError: Not one-time, not active, already held or used
    """
    now = now or timezone.now()
    user = _get_user(utorid, using)
    promotion = _get_promotion(promotion_id, using)

    if not promotion.is_onetime:
        raise PreconditionError("PROMOTION_NOT_ONETIME", promotion_id=promotion.pk)
    if not promotion.is_active(now):
        raise PreconditionError("PROMOTION_INACTIVE", promotion_id=promotion.pk)
    if PromotionUsage.objects.using(using).filter(promotion=promotion, user=user).exists():
        raise PreconditionError("PROMOTION_CONSUMED", promotion_id=promotion.pk, utorid=utorid)

    try:
        with transaction.atomic(using=using):
            entry = PromotionWallet.objects.using(using).create(user=user, promotion=promotion)
    except IntegrityError:
        raise PreconditionError("PROMOTION_IN_WALLET", promotion_id=promotion.pk, utorid=utorid)

    logger.info("Promotion %s added to wallet of %s", promotion.pk, utorid)
    return entry


def remove_from_wallet(utorid: str, promotion_id: int, using: str = "default") -> None:
    """
    Remove a one-time promotion from a user's wallet.

    Raises:
        NotFoundError: Unknown user or promotion
        PreconditionError: Promotion not in wallet
    """
    user = _get_user(utorid, using)
    promotion = _get_promotion(promotion_id, using)

    deleted, _ = (
        PromotionWallet.objects.using(using)
        .filter(user=user, promotion=promotion)
        .delete()
    )
    if not deleted:
        raise PreconditionError("PROMOTION_NOT_IN_WALLET", promotion_id=promotion.pk, utorid=utorid)


def active_wallet(
    utorid: str,
    now: datetime | None = None,
    using: str = "default",
) -> list[Promotion]:
    """Wallet promotions that are active now and not yet used."""
    now = now or timezone.now()
    user = _get_user(utorid, using)
    return list(
        Promotion.objects.using(using)
        .filter(
            wallet_entries__user=user,
            start_time__lte=now,
            end_time__gt=now,
        )
        .exclude(usages__user=user)
        .order_by("end_time")
    )
