"""Payload and signature helpers for webhook tests."""

import hashlib
import hmac
import json


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def pull_request_payload(number=12, action="closed", merged=True, repo="acme/api", **pr):
    pr.setdefault("title", "Add SSO")
    pr.setdefault("body", "Single sign-on for teams.")
    pr.setdefault("html_url", f"https://github.com/{repo}/pull/{number}")
    return {
        "action": action,
        "pull_request": {"number": number, "merged": merged, **pr},
        "repository": {"full_name": repo},
    }


def github_headers(body: bytes, event="pull_request", secret="app-secret", delivery="d-1"):
    return {
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": delivery,
        "X-Hub-Signature-256": sign(secret, body),
    }


def encode(payload) -> bytes:
    return json.dumps(payload).encode()
