#!/usr/bin/env python3
"""
Seed Protection Sessions

Writes a demo owner profile and an active protection session to the
sessions table, optionally backdated so that it is already overdue, and
can run a dry-run scan to show which phase would fire.

Usage:
    # Profile plus a session that is due in one interval
    python scripts/seed_sessions.py --user-id demo-user

    # Session already 61 minutes past its first due instant
    python scripts/seed_sessions.py --overdue-minutes 61 --scan

Table, region and endpoint come from the SAFETY_* environment variables
(e.g. SAFETY_DYNAMODB_ENDPOINT_URL=http://localhost:8000 for DynamoDB Local).
"""

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from escalation.engine.phases import get_escalation_status
from escalation.engine.scanner import run_scan
from escalation.shared.exceptions import InvalidEmailFormatError
from escalation.shared.models.profile import Contact, UserProfile
from escalation.shared.tools.dynamodb import create_session
from escalation.shared.tools.email import validate_email_address
from escalation.shared.tools.profiles import save_user_profile


def build_demo_profile(user_id: str, email: str) -> UserProfile:
    """Owner with two emergency contacts and one legal contact."""
    return UserProfile(
        user_id=user_id,
        email=email,
        full_name="Demo Owner",
        display_name="Demo",
        emergency_contacts=[
            Contact(
                contact_id="demo-c1",
                name="First Contact",
                relationship="sibling",
                email="first.contact@example.com",
                priority=1,
            ),
            Contact(
                contact_id="demo-c2",
                name="Second Contact",
                relationship="friend",
                email="second.contact@example.com",
                priority=2,
            ),
            Contact(
                contact_id="demo-legal",
                name="Intake Desk",
                relationship="counsel",
                email="intake@legal.example.org",
                priority=3,
                is_legal=True,
                organization="Community Legal Aid",
            ),
        ],
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Seed a demo profile and protection session",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --user-id demo-user                 Session due in one interval
  %(prog)s --overdue-minutes 16                Session at the medium alert phase
  %(prog)s --overdue-minutes 61 --scan         Show what a scan would do
        """,
    )
    parser.add_argument("--user-id", default="demo-user", help="Owner user ID")
    parser.add_argument("--email", default="demo.owner@example.com", help="Owner email")
    parser.add_argument("--session-id", default=None, help="Session ID (generated if omitted)")
    parser.add_argument(
        "--interval",
        type=int,
        default=60,
        help="Check-in interval in minutes",
    )
    parser.add_argument(
        "--overdue-minutes",
        type=int,
        default=None,
        help="Backdate the session so it is this many minutes past due",
    )
    parser.add_argument(
        "--destination",
        default="Riverside Park",
        help="Free-text destination",
    )
    parser.add_argument(
        "--scan",
        action="store_true",
        help="Run a dry-run scan after seeding",
    )

    args = parser.parse_args()

    try:
        validate_email_address(args.email)
    except InvalidEmailFormatError as e:
        parser.error(str(e))

    now = datetime.now(timezone.utc)
    started_at = now
    if args.overdue_minutes is not None:
        started_at = now - timedelta(minutes=args.interval + args.overdue_minutes)

    save_user_profile(build_demo_profile(args.user_id, args.email))
    session = create_session(
        args.user_id,
        args.interval,
        session_id=args.session_id,
        protection_level="night_walk",
        destination=args.destination,
        location={"lat": 40.7812, "lng": -73.9665, "address": "Upper West Side, New York"},
        now=started_at,
    )

    print(f"Seeded profile {args.user_id} and session {session.session_id}")
    print(json.dumps(get_escalation_status(session, now), indent=2, default=str))

    if args.scan:
        summary = run_scan(now=now, dry_run=True)
        print(json.dumps(summary.to_dict(), indent=2, default=str))


if __name__ == "__main__":
    main()
