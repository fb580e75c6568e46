"""Scheduling settings, read from settings.SCHEDULING with defaults."""

from django.conf import settings

from .slots import parse_hhmm

DEFAULTS = {
    "OPERATING_HOURS": ("00:00", "23:59"),
    "DEFAULT_CONSULTATION_DURATION": 30,
    "MIN_CONSULTATION_DURATION": 5,
    "MAX_CONSULTATION_DURATION": 180,
}


def scheduling_setting(name):
    return getattr(settings, "SCHEDULING", {}).get(name, DEFAULTS[name])


def operating_hours():
    """Return the configured (start, end) operating range in minutes of day."""
    start, end = scheduling_setting("OPERATING_HOURS")
    return parse_hhmm(start), parse_hhmm(end)
