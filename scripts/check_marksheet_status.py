"""Print lifecycle and dispatch state of marksheets.

Usage:
    python scripts/check_marksheet_status.py               # counts per status
    python scripts/check_marksheet_status.py 21MSCS001     # marksheets of one register number
"""
import sys

from sqlalchemy import func, select

from app.core.database import SessionLocal
from app.models.marksheet import Marksheet

db = SessionLocal()
try:
    if len(sys.argv) > 1:
        marksheets = db.execute(
            select(Marksheet)
            .where(Marksheet.reg_number == sys.argv[1])
            .order_by(Marksheet.created_at)
        ).scalars().all()
        if not marksheets:
            print(f"No marksheets found for {sys.argv[1]}")
        for m in marksheets:
            print(f"Marksheet {m.id} [{m.code}] {m.student_name} - {m.examination_name or 'exam'} ({m.examination_date})")
            print(f"  status:          {m.status.value} (version {m.version})")
            print(f"  request:         {m.request_status.value if m.request_status else '-'} by {m.requested_by or '-'}")
            print(f"  hod response:    {m.hod_response.value if m.hod_response else '-'} {m.hod_comments or ''}")
            print(f"  scheduled for:   {m.scheduled_dispatch_date or '-'}")
            print(f"  auto dispatched: {m.auto_dispatched} (failed: {m.auto_dispatch_failed}) {m.dispatch_error or ''}")
            print(f"  whatsapp:        {m.whatsapp_status.value} {m.whatsapp_error or ''}")
    else:
        rows = db.execute(
            select(Marksheet.status, func.count()).group_by(Marksheet.status).order_by(Marksheet.status)
        ).all()
        for status, count in rows:
            print(f"{status.value:<20} {count}")
        failed = db.execute(
            select(func.count()).select_from(Marksheet).where(Marksheet.auto_dispatch_failed.is_(True))
        ).scalar()
        print(f"Failed automatic dispatches: {failed}")
finally:
    db.close()
