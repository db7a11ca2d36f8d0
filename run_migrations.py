#!/usr/bin/env python
"""
Release step: run central-store migrations, then upsert the default plans.

Tenant spaces are not migrated here; they are created with their tables when
a tenant is provisioned.
"""
import os
import sys
import traceback

from flask_migrate import upgrade

from app import create_app
from app.extensions import db
from app.services.plan_catalog import seed_plans


def main():
    if not os.getenv('DATABASE_URL'):
        print("ERROR: DATABASE_URL environment variable is not set!")
        return 1

    app = create_app()
    with app.app_context():
        try:
            with db.engine.connect():
                pass
            print("✓ Database connection successful")

            upgrade()
            print("✓ Migrations completed successfully!")

            count = seed_plans()
            print(f"✓ Seeded {count} plans")
        except Exception as e:
            print(f"✗ Release step failed: {e}")
            traceback.print_exc()
            return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
