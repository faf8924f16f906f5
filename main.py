#!/usr/bin/env python3
"""
Storefront admin -- operator command line.

Administrative principals are created out of band: there is no sign-up
endpoint. This CLI writes straight to the configured database.

Usage:
  python main.py create-admin --email ops@example.com --role website_admin
  python main.py create-admin --email alex@example.com --role order_viewer --name "Alex"
  python main.py audit
  python main.py audit --action login_failed --limit 20
  python main.py audit --email alex@

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the store (default: sqlite:///storefront.db)
"""

import argparse
import getpass
import sys

from audit.models import AuditFilters
from audit.store import MAX_PAGE_SIZE, AuditStore
from auth.models import Principal
from auth.passwords import MIN_PASSWORD_LENGTH, hash_password
from auth.permissions import ADMIN_ROLES, Role
from auth.store import PrincipalStore
from core.config import get_settings
from core.errors import Conflict


def _prompt_password() -> str:
    """Prompt twice without echo. Returns an empty string if the operator gives up."""
    for _ in range(3):
        password = getpass.getpass("  Password: ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print(f"  [!] Password must be at least {MIN_PASSWORD_LENGTH} characters.")
            continue
        if password != getpass.getpass("  Confirm:  "):
            print("  [!] Passwords do not match.")
            continue
        return password
    return ""


def create_admin(email: str, role: str, name: str | None) -> int:
    store = PrincipalStore(get_settings().database_url)
    try:
        password = _prompt_password()
        if not password:
            print("  [!] No password set. Nothing was created.")
            return 1
        try:
            principal_id = store.create_principal(
                Principal(
                    email=email.strip().lower(),
                    role=role,
                    name=name,
                    password_hash=hash_password(password),
                )
            )
        except Conflict:
            print(f"  [!] An admin with email '{email}' already exists.")
            return 1
        print(f"  Created {role} '{email}' (id {principal_id}).")
        return 0
    finally:
        store.close()


def show_audit(action: str | None, email: str | None, limit: int) -> int:
    store = AuditStore(get_settings().database_url)
    try:
        page = store.query(AuditFilters(action=action, user_email=email), page=1, limit=limit)
    finally:
        store.close()

    if not page.entries:
        print("  No audit entries match.")
        return 0
    for entry in page.entries:
        who = entry.user_email or "-"
        resource = f"{entry.resource_type}:{entry.resource_id}" if entry.resource_type else "-"
        flag = f" [{entry.severity.upper()}]" if entry.is_alert and entry.severity else ""
        print(f"  {entry.created_at}  {entry.action:<40} {who:<30} {resource:<20} {entry.ip_address or '-'}{flag}")
    print(f"\n  Showing {len(page.entries)} of {page.total} entries.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="storefront-admin",
        description="Operator tasks for the storefront admin backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email ops@example.com --role website_admin
  python main.py audit --action security_alert_brute_force_login
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create an administrative principal")
    create.add_argument("--email", required=True, help="Login email (stored lowercased)")
    create.add_argument(
        "--role",
        required=True,
        choices=sorted(r.value for r in ADMIN_ROLES),
        metavar="ROLE",
        help="order_viewer, business_processing, or website_admin",
    )
    create.add_argument("--name", default=None, help="Display name")

    audit = sub.add_parser("audit", help="Print the newest audit entries")
    audit.add_argument("--action", default=None, help="Exact action to filter on")
    audit.add_argument("--email", default=None, help="Case-insensitive substring of the actor email")
    audit.add_argument(
        "--limit",
        type=int,
        default=25,
        help=f"Number of entries to show (1-{MAX_PAGE_SIZE}, default: 25)",
    )
    args = parser.parse_args()

    if args.command == "create-admin":
        sys.exit(create_admin(args.email, Role(args.role).value, args.name))
    elif args.command == "audit":
        sys.exit(show_audit(args.action, args.email, args.limit))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
