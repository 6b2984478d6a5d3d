import pytest

from scriptmanager.config import load_config
from scriptmanager.engine import ScriptEngine
from scriptmanager.services import InMemoryEditService, ServiceRegistry

CANONICAL_FOO = (
    "mw.loader.load('//en.wikipedia.org/w/index.php?title=User:Foo/Bar.js&action=raw&ctype=text/javascript');"
    " // Backlink: [[User:Foo/Bar.js]]"
)
SUMMARY_TAG = "([[mw:User:Iniquity/scriptManager.js|Script Manager]])"


@pytest.fixture
def config():
    return load_config(server_name="en.wikipedia.org", user_name="Alice")


@pytest.fixture
def service():
    return InMemoryEditService()


@pytest.fixture
def engine(config, service):
    return ScriptEngine(config, ServiceRegistry(service))
