"""Tests for IMAP authentication negotiation."""

import imaplib
import socket
from unittest.mock import MagicMock, patch

import pytest

from inboxview.config import ConnectionConfig, Credentials
from inboxview.errors import AuthExhaustedError, TransportError
from inboxview.imap.auth import MECHANISMS, close_quietly, negotiate, open_session

CREDS = Credentials(username="catchall@example.com", secret="s3cret")


def fresh_conn():
    conn = MagicMock()
    conn.select.return_value = ("OK", [b"3"])
    return conn


class TestNegotiate:
    """Tests for the mechanism fallback order."""

    def test_mechanism_order(self):
        assert [m.name for m in MECHANISMS] == ["login", "PLAIN", "LOGIN", "CRAM-MD5"]

    def test_login_succeeds_first(self):
        conn = fresh_conn()
        assert negotiate(conn, CREDS) == "login"
        conn.login.assert_called_once_with("catchall@example.com", "s3cret")
        conn.authenticate.assert_not_called()

    def test_falls_back_to_sasl_plain(self):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.error("LOGIN disabled")

        assert negotiate(conn, CREDS) == "PLAIN"
        mechanism, responder = conn.authenticate.call_args[0]
        assert mechanism == "PLAIN"
        assert responder(b"") == b"\0catchall@example.com\0s3cret"

    def test_falls_back_to_sasl_login(self):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.error("no")
        calls = []

        def authenticate(mechanism, responder):
            calls.append(mechanism)
            if mechanism == "PLAIN":
                raise imaplib.IMAP4.error("PLAIN not supported")
            assert responder(b"Username:") == b"catchall@example.com"
            assert responder(b"Password:") == b"s3cret"
            return "OK", [b""]

        conn.authenticate.side_effect = authenticate
        assert negotiate(conn, CREDS) == "LOGIN"
        assert calls == ["PLAIN", "LOGIN"]

    def test_falls_back_to_cram_md5(self):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.error("no")
        conn.authenticate.side_effect = imaplib.IMAP4.error("no")

        assert negotiate(conn, CREDS) == "CRAM-MD5"
        conn.login_cram_md5.assert_called_once_with("catchall@example.com", "s3cret")

    def test_all_rejected_raises_with_last_error(self):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.error("no")
        conn.authenticate.side_effect = imaplib.IMAP4.error("no")
        last = imaplib.IMAP4.error("CRAM-MD5 rejected")
        conn.login_cram_md5.side_effect = last

        with pytest.raises(AuthExhaustedError) as exc_info:
            negotiate(conn, CREDS)

        assert exc_info.value.last_error is last
        assert exc_info.value.attempted == ["login", "PLAIN", "LOGIN", "CRAM-MD5"]
        conn.select.assert_not_called()

    def test_secret_not_in_error_message(self):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.error("no")
        conn.authenticate.side_effect = imaplib.IMAP4.error("no")
        conn.login_cram_md5.side_effect = imaplib.IMAP4.error("no")

        with pytest.raises(AuthExhaustedError) as exc_info:
            negotiate(conn, CREDS)
        assert "s3cret" not in str(exc_info.value)

    def test_selects_folder_read_only(self):
        conn = fresh_conn()
        negotiate(conn, CREDS, folder="Catchall")
        conn.select.assert_called_once_with("Catchall", readonly=True)

    def test_failed_select_raises_transport_error(self):
        conn = fresh_conn()
        conn.select.return_value = ("NO", [b"no such folder"])
        with pytest.raises(TransportError):
            negotiate(conn, CREDS)

    def test_socket_timeout_is_transport_error(self):
        conn = fresh_conn()
        conn.login.side_effect = socket.timeout("timed out")

        with pytest.raises(TransportError) as exc_info:
            negotiate(conn, CREDS)

        assert isinstance(exc_info.value.__cause__, socket.timeout)
        conn.authenticate.assert_not_called()
        conn.select.assert_not_called()

    def test_dropped_connection_stops_fallback(self):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.abort("socket error: EOF")
        conn.authenticate.side_effect = imaplib.IMAP4.abort("socket error: EOF")
        conn.login_cram_md5.side_effect = imaplib.IMAP4.abort("socket error: EOF")

        with pytest.raises(TransportError):
            negotiate(conn, CREDS)

        conn.login.assert_called_once()
        conn.authenticate.assert_not_called()
        conn.login_cram_md5.assert_not_called()

    def test_dropped_connection_after_rejection(self):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.error("LOGIN disabled")
        conn.authenticate.side_effect = imaplib.IMAP4.abort("socket error: EOF")

        with pytest.raises(TransportError):
            negotiate(conn, CREDS)
        conn.login_cram_md5.assert_not_called()

    def test_custom_mechanism_list(self):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.error("no")
        with pytest.raises(AuthExhaustedError):
            negotiate(conn, CREDS, mechanisms=MECHANISMS[:1])
        conn.authenticate.assert_not_called()


class TestOpenSession:
    """Tests for opening a ready-to-use session."""

    @patch("inboxview.imap.auth.imaplib.IMAP4_SSL")
    def test_opens_tls_session(self, mock_ssl):
        conn = fresh_conn()
        mock_ssl.return_value = conn
        config = ConnectionConfig(host="imap.example.com", port=993, socket_timeout=7)

        assert open_session(config, CREDS) is conn
        mock_ssl.assert_called_once_with("imap.example.com", 993, timeout=7)

    @patch("inboxview.imap.auth.imaplib.IMAP4")
    def test_opens_plain_session_without_tls(self, mock_plain):
        mock_plain.return_value = fresh_conn()
        config = ConnectionConfig(host="localhost", port=143, use_tls=False)

        open_session(config, CREDS)
        mock_plain.assert_called_once_with("localhost", 143, timeout=15.0)

    @patch("inboxview.imap.auth.imaplib.IMAP4_SSL")
    def test_connect_failure_is_transport_error(self, mock_ssl):
        mock_ssl.side_effect = OSError("connection refused")
        with pytest.raises(TransportError):
            open_session(ConnectionConfig(host="nowhere"), CREDS)

    @patch("inboxview.imap.auth.imaplib.IMAP4_SSL")
    def test_auth_failure_closes_transport(self, mock_ssl):
        conn = fresh_conn()
        conn.login.side_effect = imaplib.IMAP4.error("no")
        conn.authenticate.side_effect = imaplib.IMAP4.error("no")
        conn.login_cram_md5.side_effect = imaplib.IMAP4.error("no")
        mock_ssl.return_value = conn

        with pytest.raises(AuthExhaustedError):
            open_session(ConnectionConfig(host="imap.example.com"), CREDS)
        conn.logout.assert_called_once()

    @patch("inboxview.imap.auth.imaplib.IMAP4_SSL")
    def test_login_timeout_closes_transport(self, mock_ssl):
        conn = fresh_conn()
        conn.login.side_effect = socket.timeout("timed out")
        mock_ssl.return_value = conn

        with pytest.raises(TransportError):
            open_session(ConnectionConfig(host="imap.example.com"), CREDS)
        conn.logout.assert_called_once()

    @patch("inboxview.imap.auth.imaplib.IMAP4_SSL")
    def test_select_failure_closes_transport(self, mock_ssl):
        conn = fresh_conn()
        conn.select.side_effect = OSError("reset")
        mock_ssl.return_value = conn

        with pytest.raises(TransportError):
            open_session(ConnectionConfig(host="imap.example.com"), CREDS)
        conn.logout.assert_called_once()


class TestCloseQuietly:
    def test_ignores_errors(self):
        conn = MagicMock()
        conn.logout.side_effect = OSError("already closed")
        close_quietly(conn)
        conn.logout.assert_called_once()
