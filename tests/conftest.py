"""Pytest fixtures for inboxview tests."""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from inboxview.codec import IdentifierCodec
from inboxview.config import ConnectionConfig, Credentials, Settings


def make_session(uids=(), messages=None):
    """A MagicMock standing in for an authenticated imaplib session.

    Args:
        uids: UIDs returned by UID SEARCH
        messages: Mapping of UID -> raw message bytes for UID FETCH
    """
    messages = messages or {}
    session = MagicMock()
    session.noop.return_value = ("OK", [b"NOOP completed"])

    def uid(command, *args):
        if command == "search":
            return "OK", [" ".join(str(u) for u in uids).encode()]
        if command == "fetch":
            uid_set, _ = args
            data = []
            for seq, key in enumerate(uid_set.split(","), start=1):
                raw = messages.get(int(key))
                if raw is None:
                    continue
                data.append((f"{seq} (UID {key} BODY[] {{{len(raw)}}}".encode(), raw))
                data.append(b")")
            return "OK", data
        raise AssertionError(f"unexpected UID command {command}")

    session.uid.side_effect = uid
    return session


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def codec():
    return IdentifierCodec("test-salt")


@pytest.fixture
def settings(temp_dir):
    """Settings pointing the history log into a temp dir."""
    return Settings(
        mail_domain="example.com",
        connection=ConnectionConfig(host="imap.example.com"),
        credentials=Credentials(username="catchall@example.com", secret="hunter2"),
        log_file=temp_dir / "history.log",
    )


@pytest.fixture
def sample_eml_simple():
    """A simple plain text email."""
    return b"""From: sender@example.com
To: alice@example.com
Subject: Hello
Date: Mon, 1 Jan 2024 10:00:00 +0000
Message-ID: <test123@example.com>

This is a test email body.
"""


@pytest.fixture
def sample_eml_html():
    """An HTML email."""
    return b"""From: sender@example.com
To: alice@example.com
Subject: HTML Test
Date: Tue, 2 Jan 2024 12:00:00 +0000
Message-ID: <html456@example.com>
Content-Type: text/html; charset="utf-8"

<html>
<body>
<h1>Hello World</h1>
<p>This is an HTML email.</p>
</body>
</html>
"""


@pytest.fixture
def sample_eml_alternative():
    """A multipart/alternative email with text and HTML parts."""
    return b"""From: "Shop" <shop@example.org>
To: alice@example.com
Subject: Your order
Date: Wed, 3 Jan 2024 14:00:00 +0000
MIME-Version: 1.0
Content-Type: multipart/alternative; boundary="alt"

--alt
Content-Type: text/plain; charset="utf-8"

Plain version

--alt
Content-Type: text/html; charset="utf-8"

<p>HTML version <img src="https://tracker.example.org/pixel.gif"></p>

--alt--
"""


@pytest.fixture
def sample_eml_multipart():
    """A multipart email with attachment."""
    return b"""From: sender@example.com
To: alice@example.com
Subject: Email with Attachment
Date: Wed, 3 Jan 2024 14:00:00 +0000
Message-ID: <multi789@example.com>
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="boundary123"

--boundary123
Content-Type: text/plain; charset="utf-8"

This email has an attachment.

--boundary123
Content-Type: application/pdf; name="document.pdf"
Content-Disposition: attachment; filename="document.pdf"
Content-Transfer-Encoding: base64

JVBERi0xLjQKJeLjz9MKMSAwIG9iago8PC9UeXBlL0NhdGFsb2cvUGFnZXMgMiAwIFI+PgplbmRv
Ymo=

--boundary123--
"""


@pytest.fixture
def sample_eml_korean():
    """An email with Korean characters (common encoding issues)."""
    return """From: =?UTF-8?B?7ZWc6rWt7Ja0?= <korean@example.com>
To: alice@example.com
Subject: =?UTF-8?B?7ZWc6riAIO2FjOyKpO2KuA==?=
Date: Thu, 4 Jan 2024 16:00:00 +0900
Message-ID: <korean@example.com>
Content-Type: text/plain; charset="utf-8"

안녕하세요, 테스트 이메일입니다.
""".encode()


@pytest.fixture
def sample_eml_malformed():
    """A malformed email with embedded CR/LF in headers."""
    return b"""From: sender@example.com
To: alice@example.com
Subject: Test with
 continuation line
Date: not a date
Message-ID: <malformed@example.com>

Body text.
"""


@pytest.fixture
def session_factory():
    """Factory for fake sessions, see make_session."""
    return make_session
