import smtplib

import pytest

from sploit_core.errors import NotifyError
from sploit_core.notify.notifier import ERROR_SUBJECT, ErrorReporter, SmtpNotifier


class FakeSMTP:
    instances = []
    fail = False

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.sent = []
        self.logged_in = None
        self.tls = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, msg, from_addr=None, to_addrs=None):
        if FakeSMTP.fail:
            raise smtplib.SMTPRecipientsRefused({})
        self.sent.append((msg, from_addr, to_addrs))


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_message_headers():
    n = SmtpNotifier("mail.example.com", "sploit@example.com", ["a@example.com", "b@example.com"])
    msg = n.build_message("New Vulnerability found on 10.0.0.5", "body")
    assert msg["From"] == "sploit@example.com"
    assert msg["To"] == "a@example.com, b@example.com"
    assert msg["Subject"] == "New Vulnerability found on 10.0.0.5"
    assert msg["Date"]
    assert n.port == 25


def test_deliver_uses_starttls_and_login(smtp):
    n = SmtpNotifier("mail.example.com:587", "s@example.com", ["a@example.com"], user="u", password="p")
    n.send("subject", "body")
    conn = smtp.instances[0]
    assert (conn.host, conn.port) == ("mail.example.com", 587)
    assert conn.tls
    assert conn.logged_in == ("u", "p")
    assert conn.sent[0][2] == ["a@example.com"]


def test_no_login_without_user(smtp):
    SmtpNotifier("mail.example.com", "s@example.com", ["a@example.com"]).send("s", "b")
    assert smtp.instances[0].logged_in is None


def test_delivery_failure_raises_from_deliver_only(smtp):
    smtp.fail = True
    n = SmtpNotifier("mail.example.com", "s@example.com", ["a@example.com"])
    with pytest.raises(NotifyError):
        n.deliver("s", "b")
    n.send("s", "b")  # logged, not raised


def test_error_reporter_sends_error_subject():
    sent = []

    class Recorder:
        def send(self, subject, body):
            sent.append((subject, body))

    reporter = ErrorReporter(Recorder())
    reporter.report("Error running 'http_version'", RuntimeError("console 3 went away"))
    assert sent == [(ERROR_SUBJECT, "Error running 'http_version':\nconsole 3 went away")]
    assert reporter.reported == 1
