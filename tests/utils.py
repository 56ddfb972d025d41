import hashlib
import hmac
import json
import os


# tests/utils.py
def login_user(client, username, password):
    return client.post("/login",
                       json={"username": username, "password": password})


def paystack_headers(body: bytes, secret: str | None = None) -> dict:
    key = (secret or os.environ["PAYSTACK_SECRET_KEY"]).encode("utf-8")
    mac = hmac.new(key, body, hashlib.sha512).hexdigest()
    return {"x-paystack-signature": mac, "Content-Type": "application/json"}


def post_webhook(client, payload: dict, secret: str | None = None):
    body = json.dumps(payload).encode("utf-8")
    return client.post("/api/webhooks/paystack", data=body,
                       headers=paystack_headers(body, secret))
