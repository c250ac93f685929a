from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class FieldHint:
    """
    How to find one logical form field: by its accessible label, or by attribute heuristics.
    """

    label: re.Pattern[str]
    css: str


def _default_field_hints() -> dict[str, FieldHint]:
    return {
        "ssn": FieldHint(
            label=re.compile(r"Social Security number", re.I),
            css='input[id*="ssn" i], input[name="tin"], input[name*="ssn" i], input[aria-label*="Social" i]',
        ),
        "dob": FieldHint(
            label=re.compile(r"Date of birth", re.I),
            css='input[name*="dob" i], input[id*="dob" i], input[aria-label*="Date of birth" i]',
        ),
        "zip": FieldHint(
            label=re.compile(r"Zip or Postal code", re.I),
            css='input[name*="zip" i], input[id*="zip" i], input[aria-label*="Zip" i]',
        ),
    }


@dataclass(frozen=True)
class WmarSelectors:
    """
    WMAR is a third-party web app without an API; its markup changes over time.
    Keep all UI selectors/text hooks here for easy maintenance.
    """

    # Landing
    landing_link_name: re.Pattern[str] = re.compile(r"Where's My Amended Return", re.I)

    # Shared secrets
    input_like: str = (
        'input:not([type="hidden"]):not([type="submit"]):not([type="button"])'
        ':not([type="radio"]):not([type="checkbox"]), textarea'
    )
    min_form_inputs: int = 3
    fields: dict[str, FieldHint] = field(default_factory=_default_field_hints)
    submit_button_name: re.Pattern[str] = re.compile(r"submit", re.I)
    submit_fallback: str = 'button[type="submit"], input[type="submit"]'

    # Transient error page
    service_unavailable_path: str = "/serviceUnavailable"
    go_back_button_name: re.Pattern[str] = re.compile(r"Go back to Amended Return", re.I)

    # Year selection
    select_year_path: str = "/selectTaxYear"
    continue_button_name: re.Pattern[str] = re.compile(r"^continue$", re.I)
    continue_text: str = "Continue"
    continue_fallback: str = 'button, input[type="submit"]'
    choice_control: str = 'input[type="radio"], [role="radio"]'

    # Result
    result_path: str = "/wmar/returnStatus"
    heading: str = "h1"
    main_region: str = "main"
