import importlib.util
from pathlib import Path

from sqlalchemy import select
from repairdesk import get_db
from repairdesk.models.user import User
from repairdesk.models.part import Part, StockMovement

SCRIPT = Path(__file__).resolve().parents[1] / 'scripts' / 'seed_repairdesk.py'


def _load_script():
    spec = importlib.util.spec_from_file_location('seed_repairdesk', SCRIPT)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def test_seed_is_idempotent(app_instance, monkeypatch, capsys):
    seed = _load_script()
    monkeypatch.setenv('SEED_ADMIN_EMAIL', 'seed-admin@example.com')
    monkeypatch.setenv('SEED_TECH_EMAIL', 'seed-tech@example.com')
    assert seed.main(['--show-roles'], app=app_instance) == (2, len(seed.STARTER_PARTS))
    out = capsys.readouterr().out
    assert 'Role Permission Summary' in out
    assert 'TECHNICIAN' in out
    assert seed.main([], app=app_instance) == (0, 0)

    with app_instance.app_context():
        session = get_db()
        admin = session.execute(select(User).where(User.email == 'seed-admin@example.com')).scalar_one()
        assert admin.role == User.ROLE_ADMIN
        assert admin.verify_password('ChangeMe123!')
        battery = session.execute(select(Part).where(Part.code == 'BAT-GEN-01')).scalar_one()
        assert battery.quantity == 5
        moves = session.execute(select(StockMovement).where(StockMovement.part_id == battery.id)).scalars().all()
        assert [(m.kind, m.quantity, m.actor_user_id) for m in moves] == [('MANUAL_INCREASE', 5, admin.id)]


def test_seed_dry_run_leaves_no_users(app_instance, monkeypatch):
    seed = _load_script()
    monkeypatch.setenv('SEED_ADMIN_EMAIL', 'seed-dry@example.com')
    monkeypatch.delenv('SEED_TECH_EMAIL', raising=False)
    assert seed.main(['--dry-run'], app=app_instance) == (1, 0)
    with app_instance.app_context():
        found = get_db().execute(select(User).where(User.email == 'seed-dry@example.com')).scalar_one_or_none()
        assert found is None
