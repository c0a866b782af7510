"""History service — read-only balance and transaction queries.

Usage:
    from pointforge.services import history

    history.balance("student1")
    page = history.transactions_for("student1", type="purchase", page=2)
    page.count, [tx.as_dict() for tx in page.results]
"""

from dataclasses import dataclass, field

from django.core.paginator import EmptyPage, Paginator
from django.db.models import Q, QuerySet

from pointforge.conf import pointforge_settings
from pointforge.exceptions import NotFoundError, ValidationError
from pointforge.models import Transaction, TransactionType, User

_OPERATORS = ("gte", "lte")


@dataclass
class TransactionPage:
    """One page of transactions plus the total match count."""

    count: int
    results: list[Transaction] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "count": self.count,
            "results": [tx.as_dict() for tx in self.results],
        }


def balance(utorid: str, using: str = "default") -> int:
    """Current point balance of a user."""
    points = (
        User.objects.using(using)
        .filter(utorid=utorid)
        .values_list("points", flat=True)
        .first()
    )
    if points is None:
        raise NotFoundError("USER_NOT_FOUND", utorid=utorid)
    return points


def transactions_for(
    utorid: str,
    type: str | None = None,
    promotion_id: int | None = None,
    amount: int | None = None,
    operator: str | None = None,
    page: int = 1,
    limit: int | None = None,
    using: str = "default",
) -> TransactionPage:
    """
    Transactions owned by one user, newest first.

    Raises:
        ValidationError: Bad type, operator, page or limit
        NotFoundError: Unknown user
    """
    if not User.objects.using(using).filter(utorid=utorid).exists():
        raise NotFoundError("USER_NOT_FOUND", utorid=utorid)

    qs = Transaction.objects.using(using).filter(owner__utorid=utorid)
    qs = _filter(qs, type, promotion_id, amount, operator)
    return _paginate(qs, page, limit)


def all_transactions(
    utorid: str | None = None,
    created_by: str | None = None,
    suspicious: bool | None = None,
    type: str | None = None,
    promotion_id: int | None = None,
    amount: int | None = None,
    operator: str | None = None,
    page: int = 1,
    limit: int | None = None,
    using: str = "default",
) -> TransactionPage:
    """
    All transactions, newest first (manager view).

    ``utorid`` matches the owner's utorid or name (case-insensitive substring).
    """
    qs = Transaction.objects.using(using).all()
    if utorid:
        qs = qs.filter(Q(owner__utorid__icontains=utorid) | Q(owner__name__icontains=utorid))
    if created_by:
        qs = qs.filter(created_by=created_by)
    if suspicious is not None:
        qs = qs.filter(suspicious=suspicious)
    qs = _filter(qs, type, promotion_id, amount, operator)
    return _paginate(qs, page, limit)


def _filter(
    qs: QuerySet,
    type: str | None,
    promotion_id: int | None,
    amount: int | None,
    operator: str | None,
) -> QuerySet:
    if type is not None:
        if type not in TransactionType.values:
            raise ValidationError("INVALID_REQUEST", field="type", value=type)
        qs = qs.filter(type=type)

    if promotion_id is not None:
        qs = qs.filter(promotions__pk=promotion_id)

    if amount is not None or operator is not None:
        if amount is None or operator not in _OPERATORS:
            raise ValidationError("INVALID_OPERATOR", operator=operator, amount=amount)
        qs = qs.filter(**{f"amount__{operator}": amount})

    return qs.distinct()


def _paginate(qs: QuerySet, page: int, limit: int | None) -> TransactionPage:
    if limit is None:
        limit = pointforge_settings.DEFAULT_PAGE_SIZE
    for name, value in (("page", page), ("limit", limit)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError("INVALID_REQUEST", field=name, value=value)

    paginator = Paginator(qs.order_by("-created_at", "-id"), limit)
    try:
        results = list(paginator.page(page).object_list)
    except EmptyPage:
        results = []
    return TransactionPage(count=paginator.count, results=results)
