import pytest

from cutils import App, opts
from iamsynth.aws import AwsStack

ENV_VARS = (
    'AWS_REGION',
    'AWS_DEFAULT_REGION',
    'IAMSYNTH_MINIMIZE_POLICIES',
    'IAMSYNTH_STACK_REFERENCE_PREFIX',
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def app():
    return App()


@pytest.fixture
def stack(app):
    return AwsStack('Stack', region='us-east-1', **opts(parent=app))


@pytest.fixture
def other_stack(app):
    return AwsStack('Other', region='us-east-1', **opts(parent=app))
