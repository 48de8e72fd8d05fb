#!/usr/bin/env python3
"""
Database initialization script.
Creates the jobs table if it doesn't exist.
"""

import sys
from config import DATABASE_URL
from database import engine, Base
import models  # noqa: F401  registers the Job table on Base.metadata

def init_database():
    """Create every table registered on Base."""
    try:
        print(f"Creating pipeline tables on {engine.url.render_as_string(hide_password=True)}...")
        Base.metadata.create_all(bind=engine)
        print(f"✅ Tables ready: {', '.join(sorted(Base.metadata.tables))}")
    except Exception as e:
        print(f"❌ Error creating tables for {DATABASE_URL.split('://')[0]}: {e}")
        sys.exit(1)

if __name__ == "__main__":
    init_database()
