"""
Parser for the softener's ``/mux_http`` XML response.

The device answers with a flat document::

    <data>
      <code>ok</code>
      <D_Y_2_1>412</D_Y_2_1>
      ...
      <D_Y_2_14>380</D_Y_2_14>
    </data>

Root-level children are walked in document order. Two element names are
recognised, everything else is ignored:

- ``code``: device status. Anything other than ``ok`` before a value has been
  extracted is a device error; after that it simply ends the walk.
- ``D_Y_2_<n>`` with ``n`` in 1..14: integer water value for day ``n - 1``
  (1 is the most recent day).

The walk stops after ``D_Y_2_1`` in single-value mode. A day field whose text
is not an integer is logged and left at 0 while the walk goes on. The parse
succeeds as long as one value was extracted.

CHANGELOG:
- 2026-10-19: Keep walking past non-integer day fields (STORY-015)
- 2026-10-12: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from xml.etree.ElementTree import ParseError as XMLParseError
from xml.etree.ElementTree import fromstring as xmlparse

from gruenbeck.src.errors import DeviceError, ParseError
from gruenbeck.src.models import HISTORY_DAYS, SampleBatch

logger = logging.getLogger(__name__)

STATUS_TAG: str = "code"
STATUS_OK: str = "ok"

_DAY_FIELD_RE = re.compile(r"^D_Y_2_([1-9]|1[0-4])$")
"""Daily field grammar: prefix followed by a 1-based index in 1..14."""


def day_field_index(tag: str) -> int | None:
    """Return the 1-based day index encoded in *tag*, or None if not a day field."""
    match = _DAY_FIELD_RE.match(tag)
    if match is None:
        return None
    return int(match.group(1))


def parse_response(raw: bytes, history_enabled: bool) -> SampleBatch:
    """Extract the daily water readings from a device response.

    Args:
        raw: Response body as returned by the device client.
        history_enabled: When False, only ``D_Y_2_1`` is consumed and a
            single-reading batch is returned.

    Returns:
        A SampleBatch of 14 readings (history mode) or 1 reading. Days that
        were not reported hold 0.

    Raises:
        ParseError: Document is not well-formed, or no integer value was
            extracted.
        DeviceError: ``code`` is not ``ok`` before any value was extracted.
    """
    # An empty body or a document without a root element also lands here.
    try:
        root = xmlparse(raw)
    except XMLParseError as exc:
        raise ParseError(f"Device response is not well-formed XML: {exc}") from exc

    values = [0] * HISTORY_DAYS
    extracted = 0

    for child in root:
        tag = child.tag
        if not isinstance(tag, str):
            continue

        if tag == STATUS_TAG:
            status = (child.text or "").strip()
            if status != STATUS_OK:
                if extracted == 0:
                    raise DeviceError(f"Device reported status {status!r}", code=status)
                logger.warning("Device reported status %r after %d value(s)", status, extracted)
                break
            continue

        index = day_field_index(tag)
        if index is None:
            continue

        text = "".join(child.itertext()).strip()
        try:
            values[index - 1] = int(text)
        except ValueError:
            # The day stays at 0; later fields are still read.
            logger.warning("Field %s holds non-integer text %r, reporting 0", tag, text)
        else:
            extracted += 1

        if index == 1 and not history_enabled:
            break

    if extracted == 0:
        raise ParseError("Device response contains no daily water field")

    if not history_enabled:
        return SampleBatch.from_values(values[:1])
    return SampleBatch.from_values(values)
