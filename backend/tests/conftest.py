import os, sys, pytest
# Ensure backend directory is on path so 'fieldops' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
import fieldops
from fieldops import create_app, get_db
from fieldops.models.user import Base
# Import all model modules to ensure tables are registered before create_all
import fieldops.models.ticket  # noqa: F401
import fieldops.models.audit  # noqa: F401
import fieldops.models.setting  # noqa: F401
import fieldops.models.notification  # noqa: F401
import fieldops.models.outbox  # noqa: F401
from fieldops.services.realtime import InMemoryChannel


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app()
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture(autouse=True)
def app_context(app_instance):
    """Fresh schema, session and realtime channel for every test."""
    with app_instance.app_context():
        fieldops.SessionLocal.remove()
        engine = fieldops.db_engine
        Base.metadata.drop_all(engine)
        Base.metadata.create_all(engine)
        app_instance.extensions['realtime'] = InMemoryChannel()
        yield app_instance
        fieldops.SessionLocal.remove()


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def channel(app_context):
    return app_context.extensions['realtime']
