"""Plain-text extraction from a ``multipart/alternative`` body.

This is not a MIME parser: it scans the body line by line,
picks the first ``text/plain`` part and undoes quoted-printable encoding
one physical line at a time.  Nested multiparts, attachments and
charsets other than UTF-8 are out of scope.
"""

from __future__ import annotations

import quopri
from enum import Enum

_CONTENT_TYPE_PLAIN = "content-type: text/plain"
_ENCODING_QUOTED_PRINTABLE = "content-transfer-encoding: quoted-printable"


class _State(Enum):
    SEEKING_PART = "seeking_part"
    IN_HEADERS = "in_headers"
    IN_BODY = "in_body"


def decode_quoted_printable_line(line: str) -> str:
    """Decode a single quoted-printable line into UTF-8 text.

    A trailing ``=`` (soft line break) is dropped; lines are not joined.
    """
    decoded = quopri.decodestring(line.encode("utf-8"))
    return decoded.decode("utf-8", errors="replace")


def extract_plain_text(body: str, boundary: str) -> str:
    """Return the first ``text/plain`` part of *body*, lines joined by ``\\n``.

    *boundary* must already be stripped of quotes and CRLFs.  Returns an
    empty string when no boundary line is present.
    """
    delimiter = f"--{boundary}"

    state = _State.SEEKING_PART
    content: list[str] = []
    found = False
    quoted_printable = False

    for line in body.split("\r\n"):
        if line.startswith(delimiter):
            # The plain part has been captured; later parts never replace it.
            if found:
                break
            content = []
            quoted_printable = False
            state = _State.IN_HEADERS
            continue

        if state is _State.IN_HEADERS:
            lowered = line.lower()
            if lowered.startswith(_CONTENT_TYPE_PLAIN):
                found = True
            elif lowered.startswith(_ENCODING_QUOTED_PRINTABLE):
                quoted_printable = True
            elif line == "":
                state = _State.IN_BODY
            continue

        if state is _State.IN_BODY:
            content.append(decode_quoted_printable_line(line) if quoted_printable else line)

    return "\n".join(content)
