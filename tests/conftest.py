import os, sys, pytest
# Ensure project root is on path so 'tenantgate' and 'tests.*' helpers can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from tenantgate import create_app, get_db
from tenantgate.models.tenant import Base
from tests.test_helpers import records_bp


# Function scoped: SQLite caps ATTACHed databases per connection (10 by default),
# so every test starts from a fresh in-memory database.
@pytest.fixture()
def app_instance():
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
        'TESTING': True,
    })
    # Test-only views exercising record scopes; registered before the first request
    app.register_blueprint(records_bp, url_prefix='/test')
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app
    get_db().close()


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()
