"""
Smoke check for a deployed API: log in and call an admin endpoint with the token.
"""
import os

import requests
from dotenv import load_dotenv

load_dotenv()

API_URL = os.getenv("API_URL", "http://localhost:8000")
USERNAME = os.getenv("API_USERNAME")
PASSWORD = os.getenv("API_PASSWORD")


def get_token():
    """ Log in and return the bearer token """
    url = f"{API_URL}/auth-login"
    credentials = {"username": USERNAME, "password": PASSWORD}

    try:
        response = requests.post(url, json=credentials, timeout=30)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        print(f"Failed to obtain token: {e}")
        return None

    payload = response.json()
    token = payload.get("token")
    print(f"Token received for {payload.get('user')}\n")
    return token


def test_protected_request(token):
    """ Call GET /users with the token """
    url = f"{API_URL}/users"
    headers = {"Authorization": f"Bearer {token}"}

    try:
        response = requests.get(url, headers=headers, timeout=30)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        print(f"Request failed: {e}")
        return

    users = response.json().get("users", [])
    print(f"Request succeeded, {len(users)} users:")
    for user in users:
        print(f"  {user['username']} ({user['role']})")


if __name__ == "__main__":
    if not USERNAME or not PASSWORD:
        raise SystemExit("Set API_USERNAME and API_PASSWORD")
    token = get_token()
    if token:
        test_protected_request(token)
