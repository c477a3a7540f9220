#!/usr/bin/env python
"""Idempotent seed script for users & starter parts.

Usage:
    python backend/scripts/seed_repairdesk.py               # seed normally
    python backend/scripts/seed_repairdesk.py --show-roles  # print role -> permission counts (after seeding)
    python backend/scripts/seed_repairdesk.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_repairdesk.py --no-parts    # users only
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from repairdesk import create_app, get_db  # type: ignore
from repairdesk.models.user import Base, User
from repairdesk.models.part import Part, StockMovement
from repairdesk.constants.permissions import ROLE_PRESETS, permissions_for_role
from repairdesk.services.parts_catalog import PartCatalog
# register every table before create_all
import repairdesk.models.client  # noqa: F401
import repairdesk.models.ticket  # noqa: F401
import repairdesk.models.purchase  # noqa: F401
import repairdesk.models.sequence  # noqa: F401

# code, name, category, unit cost, sale price, min quantity, initial stock
STARTER_PARTS = [
    ('BAT-GEN-01', 'Generic laptop battery', 'Batteries', 2500, 4900, 2, 5),
    ('SCR-15-FHD', '15.6" FHD panel', 'Screens', 6000, 11900, 1, 2),
    ('KBD-US-01', 'US keyboard module', 'Keyboards', 1800, 3500, 2, 4),
    ('PST-THM-01', 'Thermal paste 4g', 'Consumables', 300, 900, 5, 20),
]


def ensure_user(session, email: str, name: str, role: str, password: str):
    existing = session.execute(select(User).where(User.email==email)).scalar_one_or_none()
    if existing:
        return existing, False
    user = User(name=name, email=email, role=role, is_active=True)
    user.set_password(password)
    session.add(user)
    session.flush()
    return user, True


def ensure_users(session):
    created = 0
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    admin, new = ensure_user(session, admin_email, 'Owner', User.ROLE_ADMIN,
                         os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    if new:
        created += 1
        print(f"[INFO] Created initial admin user {admin_email} with temporary password.")
    tech_email = os.getenv('SEED_TECH_EMAIL')
    if tech_email:
        _, new = ensure_user(session, tech_email, 'Technician', User.ROLE_TECHNICIAN,
                             os.getenv('SEED_TECH_PASSWORD', 'ChangeMe123!'))
        created += int(new)
    return created, admin


def ensure_parts(session, actor_id=None):
    """Insert missing starter parts; stock on hand is booked as a movement, never written directly."""
    existing = set(session.execute(select(Part.code)).scalars().all())
    catalog = PartCatalog(session, current_user=lambda: actor_id)
    created = 0
    for code, name, category, cost, price, min_qty, qty in STARTER_PARTS:
        if code in existing:
            continue
        catalog.create_part(code, name, unit_cost_cents=cost, sale_price_cents=price,
                            min_quantity=min_qty, initial_quantity=qty, category=category)
        created += 1
    return created


def print_role_summary():
    name_w = max(len(r) for r in ROLE_PRESETS)
    print(f"{'Role'.ljust(name_w)} | Count | Permissions")
    print('-' * (name_w + 40))
    for name in sorted(ROLE_PRESETS):
        codes = permissions_for_role(name)
        print(f"{name.ljust(name_w)} | {str(len(codes)).rjust(5)} | {', '.join(codes)}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed users & starter parts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_repairdesk.py\n  dry run: seed_repairdesk.py --dry-run\n  show roles: seed_repairdesk.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback user changes (parts are committed by the catalog per part, so they are skipped)')
    p.add_argument('--no-parts', action='store_true', help='Do not create starter parts')
    return p.parse_args(argv)


def main(argv=None, app=None):
    args = parse_args(argv)
    app = app or create_app()
    with app.app_context():
        session = get_db()
        # Auto-create schema for bootstrap; in real env prefer alembic upgrade
        Base.metadata.create_all(session.get_bind())
        try:
            created_u, admin = ensure_users(session)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Users would create: {created_u}")
                created_p = 0
            else:
                session.commit()
                created_p = 0 if args.no_parts else ensure_parts(session, actor_id=admin.id)
                movements = session.execute(select(StockMovement.id)).scalars().all()
                print(f"[DONE] Users created: {created_u}, Parts created: {created_p}, Movements on file: {len(movements)}")
            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
    return created_u, created_p

if __name__ == '__main__':
    main()
