"""Shared fixtures: in-memory SQLite store, fake Redis, scripted executor and backend."""

import fakeredis
import pytest

from controller.src.backends.base import DeployBackend
from controller.src.config import Settings
from controller.src.db.database import init_db, make_engine, make_session_factory
from controller.src.executors.base import StepExecutor
from controller.src.models.db import App, Organization
from controller.src.models.deploy import DeployOutcome
from controller.src.models.step import StepOutcome
from controller.src.services import LogSink, PipelineStore, Signals

class ScriptedExecutor(StepExecutor):
    """
    Succeeds every step unless `script[step_name]` lists what each attempt
    returns: a StepOutcome, or an exception to raise.
    """

    runner_type = "scripted"

    def __init__(self):
        self.script = {}
        self.calls = []

    def execute(self, context):
        self.calls.append((context.name, context.attempt))
        yield f"running {context.name} (attempt {context.attempt})\n"
        outcomes = self.script.get(context.name)
        if not outcomes:
            return StepOutcome.success()
        outcome = outcomes[min(context.attempt, len(outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

class FakeBackend(DeployBackend):
    """Answers deploys from `outcomes` in order, then succeeds."""

    def __init__(self):
        self.outcomes = []
        self.targets = []
        self.canceled = []

    def deploy(self, target):
        self.targets.append(target)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return DeployOutcome.success(pipeline_url=f"https://deploys.example/{target.deploy_id}")

    def cancel(self, target):
        self.canceled.append(target.deploy_id)

@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)

@pytest.fixture
def store(session_factory):
    return PipelineStore(session_factory)

@pytest.fixture
def log_sink(session_factory):
    return LogSink(session_factory)

@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)

@pytest.fixture
def signals(redis_client):
    return Signals(redis_client)

@pytest.fixture
def settings():
    return Settings(
        runner_name="test-runner",
        step_max_attempts=3,
        retry_base_delay=0,
        retry_max_delay=0,
        heartbeat_interval=1,
    )

@pytest.fixture
def executor():
    return ScriptedExecutor()

@pytest.fixture
def backend():
    return FakeBackend()

@pytest.fixture
def app_id(session_factory):
    with session_factory.begin() as session:
        org = Organization(name="Acme", slug="acme")
        session.add(org)
        session.flush()
        app = App(
            organization_id=org.id,
            name="Web",
            slug="web",
            repo_url="https://github.com/acme/web.git",
        )
        session.add(app)
        session.flush()
        return app.id
