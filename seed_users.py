"""
Seeds the initial admin and regular user accounts.

Credentials come from the environment (or `.env`):
ADMIN_USERNAME / ADMIN_PASSWORD and USER_USERNAME / USER_PASSWORD.
Accounts whose password is not configured are skipped.
"""

import logging
import os
from typing import Dict, List

from dotenv import load_dotenv

from auth import hash_password
from models.config_models import get_config
from storage import PostgresStore

logger = logging.getLogger(__name__)


def seed_accounts_from_env() -> List[Dict[str, str]]:
    accounts = []
    for prefix, role, default_name in (("ADMIN", "admin", "admin"), ("USER", "user", "user")):
        password = os.getenv(f"{prefix}_PASSWORD")
        if not password:
            logger.warning("%s_PASSWORD not set; skipping %s account", prefix, role)
            continue
        accounts.append({
            "username": os.getenv(f"{prefix}_USERNAME", default_name),
            "password": password,
            "role": role,
        })
    return accounts


def seed_users(store, accounts: List[Dict[str, str]]) -> List[str]:
    """
    Creates the given accounts unless a user with that name already exists.

    Returns:
        List[str]: Usernames that were created.
    """
    created = []
    for account in accounts:
        if store.find_user_by_username(account["username"]) is not None:
            logger.info("User already exists: %s", account["username"])
            continue
        store.insert_user(account["username"], hash_password(account["password"]), account["role"])
        logger.info("Seeded user: %s (%s)", account["username"], account["role"])
        created.append(account["username"])
    return created


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    db = PostgresStore(get_config())
    try:
        db.create_schema()
        seed_users(db, seed_accounts_from_env())
        logger.info("Seeding complete.")
    finally:
        db.close()
