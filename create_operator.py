#!/usr/bin/env python3
"""
Create or update an operator account for the admin API.

Usage:
  python create_operator.py --email ops@example.com --name "Ops" --password secret
  python create_operator.py --email admin@example.com --name "Admin" --password secret --role admin
"""

import argparse

from auth import hash_password
from database import SessionLocal, create_db
from models import User, UserRole


def upsert_operator(db, email: str, name: str, password: str, role: UserRole = UserRole.operator) -> User:
    u = db.query(User).filter(User.email == email).first()
    if u:
        u.name = name
        u.role = role
        u.password_hash = hash_password(password)
    else:
        u = User(email=email, name=name, role=role, password_hash=hash_password(password))
        db.add(u)
    db.commit()
    db.refresh(u)
    return u


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Create or update an operator account")
    ap.add_argument("--email", required=True)
    ap.add_argument("--name", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.operator.value)
    args = ap.parse_args()

    create_db()
    db = SessionLocal()
    try:
        u = upsert_operator(db, args.email, args.name, args.password, UserRole(args.role))
        print(f"Operator id={u.id} email={u.email} role={u.role.value}")
    finally:
        db.close()
