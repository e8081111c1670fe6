#!/usr/bin/env python
"""Idempotent seed script for the dispatch roster.

Usage:
    python backend/scripts/seed_roster.py                 # seed normally
    python backend/scripts/seed_roster.py --dry-run       # run logic then rollback (no DB changes)
    python backend/scripts/seed_roster.py --show-roster   # print the roster after seeding
    python backend/scripts/seed_roster.py --export-perms  # print role -> permission codes JSON
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from fieldops import create_app, get_db  # type: ignore
from fieldops.models.user import Base, User
from fieldops.models import ticket, audit, setting, notification, outbox  # noqa: F401
from fieldops.constants.permissions import ROLE_PRESETS, permissions_for_role

# (name, role, mobile)
DEMO_TECHNICIANS = [
    ('Field Tech 1', User.ROLE_FIELD_TECH, '+96890000011'),
    ('Field Tech 2', User.ROLE_FIELD_TECH, '+96890000012'),
    ('Depot Tech 1', User.ROLE_DEPOT_TECH, '+96890000021'),
]


def ensure_user(session, name, role, mobile, **fields):
    existing = session.execute(select(User).where(User.mobile == mobile)).scalar_one_or_none()
    if existing:
        return existing, False
    user = User(name=name, role=role, mobile=mobile, is_active=True, **fields)
    session.add(user)
    session.flush()
    return user, True


def ensure_admin(session):
    mobile = os.getenv('SEED_ADMIN_MOBILE', '+96890000001')
    user, created = ensure_user(session, os.getenv('SEED_ADMIN_NAME', 'Dispatch Admin'), User.ROLE_ADMIN, mobile)
    if created:
        print(f"[INFO] Created admin user {mobile}")
    return int(created)


def ensure_technicians(session):
    created = 0
    for name, role, mobile in DEMO_TECHNICIANS:
        _, was_created = ensure_user(session, name, role, mobile, is_online=False, is_available=True)
        created += int(was_created)
    return created


def ensure_demo_requester(session):
    _, created = ensure_user(
        session, 'Demo Rider', User.ROLE_REQUESTER, '+96890000100',
        chassis_number='CH-0001', wallet_balance=0.0,
        team_leader_name='Team Lead', team_leader_mobile='+96890000101',
    )
    return int(created)


def print_roster(session):
    users = session.execute(select(User).order_by(User.role, User.id)).scalars().all()
    if not users:
        print("[INFO] Roster empty.")
        return
    name_w = max(len(u.name) for u in users)
    print(f"{'Name'.ljust(name_w)} | Role        | Online | Available")
    print('-' * (name_w + 36))
    for u in users:
        print(f"{u.name.ljust(name_w)} | {u.role.ljust(11)} | {str(u.is_online).ljust(6)} | {u.is_available}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed dispatch roster (admin, demo technicians, demo requester)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_roster.py\n  dry run: seed_roster.py --dry-run\n  show roster: seed_roster.py --show-roster\n""")
    )
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--show-roster', action='store_true', help='Print the roster after seeding')
    p.add_argument('--no-demo', action='store_true', help='Only ensure the admin user')
    p.add_argument('--export-perms', action='store_true', help='Print role -> permission codes JSON and exit')
    return p.parse_args()


def main():
    args = parse_args()
    if args.export_perms:
        print(json.dumps({role: permissions_for_role(role) for role in ROLE_PRESETS}, indent=2))
        return
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM users LIMIT 1'))
        except Exception:
            # bootstrap only; real environments run alembic upgrade
            session.rollback()
            Base.metadata.create_all(session.get_bind())
        finally:
            session.commit()

    with app.app_context():
        session = get_db()
        created = ensure_admin(session)
        if not args.no_demo:
            created += ensure_technicians(session)
            created += ensure_demo_requester(session)
        if args.show_roster:
            print_roster(session)
        if args.dry_run:
            session.rollback()
            print(f"[DRY-RUN] (rolled back) Users would create: {created}")
        else:
            session.commit()
            print(f"[DONE] Users created: {created}")


if __name__ == '__main__':
    main()
