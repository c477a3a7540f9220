import os, sys, pytest
# Ensure backend directory is on path so 'repairdesk' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from repairdesk import create_app, get_db
from repairdesk.models.user import Base
# Import all model modules to ensure tables are registered before create_all
import repairdesk.models.client  # noqa: F401
import repairdesk.models.ticket  # noqa: F401
import repairdesk.models.part  # noqa: F401
import repairdesk.models.purchase  # noqa: F401
import repairdesk.models.sequence  # noqa: F401


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app({'TESTING': True, 'TICKET_COMPANY_CODE': 'RPR', 'TICKET_BRANCH_CODE': 'MAIN'})
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def session():
    """Isolated in-memory database for service-level tests."""
    engine = create_engine(
        'sqlite+pysqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    s = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)()
    yield s
    s.close()
    engine.dispose()


@pytest.fixture()
def file_session_factory(tmp_path):
    """File-backed SQLite so independent sessions/threads really contend for rows."""
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'repairdesk.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    yield factory
    engine.dispose()
