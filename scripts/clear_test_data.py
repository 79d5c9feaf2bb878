#!/usr/bin/env python3
"""
Clear Test Data Script

Deletes applicants and referrers whose email matches a SQL LIKE pattern,
together with their applications, companies, matches, mobile sessions and
stored resumes.

Usage: python scripts/clear_test_data.py "%@example.com"
"""
import sys
sys.path.insert(0, '.')

from sqlalchemy import text

from irefair.db.postgres import get_db_session
from irefair.services.resume_service import get_resume_store


def main():
    if len(sys.argv) < 2:
        print('Usage: python scripts/clear_test_data.py "<email LIKE pattern>"')
        sys.exit(1)

    pattern = sys.argv[1].strip().lower()
    if pattern in ("", "%"):
        print("❌ Refusing to delete every record. Use a narrower pattern.")
        sys.exit(1)

    print("=" * 50)
    print(f"CLEARING TEST DATA MATCHING: {pattern}")
    print("=" * 50)

    with get_db_session() as db:
        irains = [row[0] for row in db.execute(
            text("SELECT irain FROM applicants WHERE lower(email) LIKE :pattern"), {"pattern": pattern}
        )]
        irrefs = [row[0] for row in db.execute(
            text("SELECT irref FROM referrers WHERE lower(email) LIKE :pattern"), {"pattern": pattern}
        )]

        applications = 0
        matches = 0
        sessions = 0
        for irain in irains:
            applications += db.execute(text("DELETE FROM applications WHERE applicant_id = :id"), {"id": irain}).rowcount
            matches += db.execute(text("DELETE FROM matches WHERE applicant_irain = :id"), {"id": irain}).rowcount
            sessions += db.execute(
                text("DELETE FROM mobile_sessions WHERE role = 'applicant' AND subject_id = :id"), {"id": irain}
            ).rowcount
        for irref in irrefs:
            applications += db.execute(text("DELETE FROM applications WHERE referrer_irref = :id"), {"id": irref}).rowcount
            matches += db.execute(text("DELETE FROM matches WHERE referrer_irref = :id"), {"id": irref}).rowcount
            sessions += db.execute(
                text("DELETE FROM mobile_sessions WHERE role = 'referrer' AND subject_id = :id"), {"id": irref}
            ).rowcount
            db.execute(text("DELETE FROM referrer_companies WHERE referrer_irref = :id"), {"id": irref})

        db.execute(text("DELETE FROM applicants WHERE lower(email) LIKE :pattern"), {"pattern": pattern})
        db.execute(text("DELETE FROM referrers WHERE lower(email) LIKE :pattern"), {"pattern": pattern})

    store = get_resume_store()
    resumes = sum(store.delete_by_owner(irain) for irain in irains)

    print(f"    Applicants deleted: {len(irains)}")
    print(f"    Referrers deleted: {len(irrefs)}")
    print(f"    Applications deleted: {applications}")
    print(f"    Matches deleted: {matches}")
    print(f"    Mobile sessions deleted: {sessions}")
    print(f"    Resume files deleted: {resumes}")
    print("\n✅ Done")


if __name__ == "__main__":
    main()
