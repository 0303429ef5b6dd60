"""Reset failed automatic dispatches so the scheduler retries them.

Usage:
    python scripts/reset_failed_dispatch.py            # every failed auto dispatch
    python scripts/reset_failed_dispatch.py 12 15      # specific marksheet IDs
"""
import sys

from sqlalchemy import select

from app.core.database import SessionLocal
from app.core.exceptions import AppException
from app.models.marksheet import Marksheet
from app.services.dispatch import DispatchService

db = SessionLocal()
try:
    if len(sys.argv) > 1:
        ids = [int(arg) for arg in sys.argv[1:]]
    else:
        ids = list(db.execute(
            select(Marksheet.id).where(Marksheet.auto_dispatch_failed.is_(True))
        ).scalars())

    if not ids:
        print("No failed automatic dispatches found.")

    service = DispatchService(db)
    for marksheet_id in ids:
        try:
            marksheet = service.reset_auto_dispatch(marksheet_id)
            print(f"Reset marksheet {marksheet.id} ({marksheet.reg_number}); scheduled for {marksheet.scheduled_dispatch_date}")
        except AppException as e:
            print(f"Skipped marksheet {marksheet_id}: {e.message}")
finally:
    db.close()
