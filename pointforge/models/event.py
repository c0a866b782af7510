"""Event model — RSVP list and the event's point pool."""

from datetime import datetime

from django.db import models
from django.utils.translation import gettext_lazy as _


class Event(models.Model):
    """
    Campus event with a fixed pool of points to award to guests.

    ``points_remain`` only decreases (via the ledger) and never goes below
    zero; ``points_awarded`` tracks what has left the pool.
    """

    name = models.CharField(_("name"), max_length=200)
    description = models.TextField(_("description"), blank=True)
    location = models.CharField(_("location"), max_length=200, blank=True)

    start_time = models.DateTimeField(_("starts at"))
    end_time = models.DateTimeField(_("ends at"))

    capacity = models.PositiveIntegerField(
        _("capacity"),
        null=True,
        blank=True,
        help_text=_("Maximum guests. Empty means unlimited."),
    )
    points_remain = models.IntegerField(_("points remaining"), default=0)
    points_awarded = models.IntegerField(_("points awarded"), default=0)
    published = models.BooleanField(_("published"), default=False)

    organizers = models.ManyToManyField(
        "pointforge.User",
        related_name="organized_events",
        blank=True,
        verbose_name=_("organizers"),
    )
    guests = models.ManyToManyField(
        "pointforge.User",
        related_name="attended_events",
        blank=True,
        verbose_name=_("guests"),
    )

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)

    class Meta:
        verbose_name = _("event")
        verbose_name_plural = _("events")
        ordering = ["start_time"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(points_remain__gte=0),
                name="pointforge_event_points_remain_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.points_remain}pts left)"

    def has_ended(self, now: datetime) -> bool:
        return self.end_time <= now

    @property
    def is_full(self) -> bool:
        if self.capacity is None:
            return False
        return self.guests.count() >= self.capacity
