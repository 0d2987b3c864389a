# src/ra_law_rag/backend/pipelines/context/disclaimer.py

"""Temporal note appended to the combined context."""

from __future__ import annotations

from datetime import date
from typing import Optional, Union


ASSUMED_DATE_NOTE = (
    "\n\n[TEMPORAL NOTE: No case date provided. Legislation shown is the currently effective version. "
    "If events occurred on a different date, applicable law may differ. State this assumption explicitly.]"
)


def temporal_disclaimer(reference_date: Optional[Union[date, str]], date_assumed: bool) -> str:
    """
    date_assumed: no date was given and "today" was assumed.
    Otherwise a supplied reference date yields the "filtered as of" note; neither yields "".
    """
    if date_assumed:
        return ASSUMED_DATE_NOTE
    if reference_date:
        value = reference_date.isoformat() if isinstance(reference_date, date) else str(reference_date)
        return f"\n\n[TEMPORAL NOTE: Legislation filtered for versions effective as of {value}.]"
    return ""
