"""
Create an approved admin account (all permissions) without going through
registration. Run from the project root:

    python scripts/create_admin.py

You will be prompted for name, email and password.
"""

import getpass
import os
import sys
from datetime import datetime, timezone

# Make sure the project root is on the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from powerlink.core.security import hash_password
from powerlink.database import db_manager, init_db
from powerlink.models.users import ADMIN_PERMISSIONS, User
from powerlink.services.auth import get_user_by_email, normalize_email

MIN_PASSWORD_LENGTH = 6


def main():
    init_db()

    db = db_manager.ensure_connected()()
    try:
        print("\n── PowerLink · Create Admin User ──\n")

        name = input("Name: ").strip()
        if not name:
            print("Name cannot be empty.")
            return

        email = normalize_email(input("Email: "))
        if not email:
            print("Email cannot be empty.")
            return

        existing = get_user_by_email(db, email)
        if existing:
            print(f"User {email} already exists (role: {existing.role}).")
            return

        password = getpass.getpass(f"Password (min {MIN_PASSWORD_LENGTH} chars): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print("Password too short.")
            return

        user = User(
            name=name,
            email=email,
            password_hash=hash_password(password),
            role="admin",
            account_status="approved",
            approved_at=datetime.now(timezone.utc),
            **ADMIN_PERMISSIONS,
        )
        db.add(user)
        db.commit()
        print(f"\n✓ Admin created: {user.email} (id: {user.id})\n")

    finally:
        db.close()


if __name__ == "__main__":
    main()
