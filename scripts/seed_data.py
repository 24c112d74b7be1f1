#!/usr/bin/env python3
"""Create the tables, the default bioscopes and a first admin account.

Accounts can only be created by an admin, so a fresh deployment needs one
bootstrapped out of band:

    ADMIN_EMAIL=admin@lab.edu ADMIN_PASSWORD=change-me python scripts/seed_data.py
"""
import os
import sys

from sqlalchemy import select

from bioscope.auth import get_password_hash
from bioscope.database import Base, SessionLocal, engine
from bioscope.equipment import seed_default_equipment
from bioscope.models import RoleEnum, User


def seed(admin_email: str, admin_password: str, admin_name: str = "Administrator") -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        added = seed_default_equipment(db)
        print(f"Equipment added: {added}")

        admin = db.scalars(select(User).where(User.email == admin_email)).first()
        if admin is None:
            admin = User(name=admin_name, email=admin_email, role=RoleEnum.ADMIN)
            db.add(admin)
            print(f"Admin created: {admin_email}")
        else:
            admin.role = RoleEnum.ADMIN
            print(f"Admin password reset: {admin_email}")
        admin.hashed_password = get_password_hash(admin_password)
        db.commit()


if __name__ == "__main__":
    email = os.environ.get("ADMIN_EMAIL")
    password = os.environ.get("ADMIN_PASSWORD")
    if not email or not password:
        print("ADMIN_EMAIL and ADMIN_PASSWORD must be set")
        sys.exit(1)
    seed(email, password)
