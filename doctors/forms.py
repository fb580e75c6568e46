from django import forms

from appointments.exceptions import ScheduleValidationError
from .services.schedule_service import parse_windows


class TimeWindowFormSet(forms.BaseInlineFormSet):
    """
    Inline windows of one weekday or one date override.

    Applies the same rules as the schedule API: windows must not overlap
    and must sit inside the operating hours.
    """

    def clean(self):
        super().clean()
        if any(self.errors):
            return

        windows = []
        for form in self.forms:
            if not form.cleaned_data or form.cleaned_data.get("DELETE"):
                continue
            start_time = form.cleaned_data.get("start_time")
            end_time = form.cleaned_data.get("end_time")
            if start_time is None or end_time is None:
                continue
            windows.append({"start": f"{start_time:%H:%M}", "end": f"{end_time:%H:%M}"})

        try:
            parse_windows(windows)
        except ScheduleValidationError as e:
            raise forms.ValidationError(e.message, code="invalid_windows")
