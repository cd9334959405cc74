"""
Keeps participant contact details and NDIS numbers out of log output.

The filter formats each record's message once, redacts it, and clears the
arguments so handlers emit the redacted text. It is attached to every
handler through LOGGING in settings.py.
"""
import logging
import re

REDACTIONS = (
    (re.compile(r"\b[\w.%+-]+@[\w-]+(?:\.[\w-]+)*\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    # NDIS participant numbers are nine digits beginning 43, sometimes grouped 3-3-3
    (re.compile(r"\b43\d(?:[\s-]?\d{3}){2}\b"), "[NDIS]"),
    # Mobiles and landlines, local or +61
    (re.compile(r"(?:\+61\s?|\b0)[2-478](?:[\s.-]?\d){8}\b"), "[PHONE]"),
)


def redact(text):
    for pattern, placeholder in REDACTIONS:
        text = pattern.sub(placeholder, text)
    return text


class SensitiveDataFilter(logging.Filter):

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = redact(message)
        record.args = None
        return True
