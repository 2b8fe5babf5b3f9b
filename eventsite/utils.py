"""Utility functions for common operations across the application."""

import re

ACTIVATE_LABEL = "Activate"
DEACTIVATE_LABEL = "Disactivate"

# A letter starting a word, unless it directly follows a letter plus apostrophe/bracket ("o'neil").
_WORD_START = re.compile(r"\b(?<!\w['’`()])[^\W\d_]")


def normalize_email(email: str) -> str:
    """Convert email to lowercase."""
    return email.lower()


def titleize(value: str) -> str:
    """Lowercase then capitalize each word.

    Dashes and underscores count as spaces, a trailing ``_id`` is dropped and
    leading separators are stripped.

    >>> titleize("jOHN_smith")
    'John Smith'
    >>> titleize("mary-jane")
    'Mary Jane'
    """
    humanized = value.lower().replace("-", "_").lstrip("_")
    humanized = humanized.removesuffix("_id").replace("_", " ").lstrip()
    return _WORD_START.sub(lambda m: m.group(0).upper(), humanized)


def toggle_label_for(active: bool) -> str:
    """Label of the toggle link for a user in the given state."""
    return DEACTIVATE_LABEL if active else ACTIVATE_LABEL


def next_toggle_label(label: str) -> str:
    """Label shown after a successful toggle.

    Keep in step with ``nextToggleLabel`` in static/application.js.
    """
    return DEACTIVATE_LABEL if label == ACTIVATE_LABEL else ACTIVATE_LABEL
