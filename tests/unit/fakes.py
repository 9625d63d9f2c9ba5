"""
Test doubles shared by the unit tests.
"""

import json
from unittest.mock import MagicMock

import requests
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError


class InMemoryKeyring(KeyringBackend):
    """Keyring backend that keeps passwords in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("not found")
        del self.passwords[(service, username)]


def make_response(status=200, body=None, headers=None, text=None, url="https://api.github.com/test"):
    """Build a real requests.Response."""
    response = requests.Response()
    response.status_code = status
    response.url = url
    response.reason = "OK" if status < 400 else "Error"
    response.encoding = "utf-8"
    if text is not None:
        response._content = text.encode("utf-8")
        response.headers["Content-Type"] = "text/plain; charset=utf-8"
    elif body is not None:
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json; charset=utf-8"
    else:
        response._content = b""
    for key, value in (headers or {}).items():
        response.headers[key] = value
    return response


def rate_headers(remaining, reset_at, limit=5000):
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_at),
    }


def make_session(responses, method="request"):
    """MagicMock session whose request (or post) returns responses in order."""
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    getattr(session, method).side_effect = list(responses)
    return session


class FakeClock:
    """Controllable epoch clock."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
