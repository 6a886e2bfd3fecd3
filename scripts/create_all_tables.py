"""
Create every LeadFlow table in the configured database

Creates (if missing):
1. leads, call_logs, campaigns, phone_numbers, campaign_phone_pools
   (owned by other subsystems in production; created here for local setups)
2. campaign_workflows, workflow_steps
3. lead_workflow_progress, lead_nudge_tracking, workflow_step_executions
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

print("=" * 70)
print("LeadFlow - Create All Tables")
print("=" * 70)

if not os.getenv("DATABASE_URL"):
    print("\nERROR: DATABASE_URL not configured")
    sys.exit(1)

from leadflow.database import check_database_connection, init_db  # noqa: E402

if not check_database_connection():
    print("\nERROR: Could not connect to the database")
    sys.exit(1)

for table_name in init_db():
    print(f"  - {table_name}")

print("\nAll tables created")
