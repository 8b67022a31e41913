"""
Test configuration for KasAI tests.

sys.path is configured so BOTH import styles resolve:
  - 'from kasai.sessions...'  (production modules, using the project root)
  - 'from fakes import ...'   (test helpers, using kasai/tests/ as root)

Every fixture here wires real SessionManager / state machine / controller /
dispatcher instances over in-memory tiers that share one FrozenClock.
"""
import sys
from pathlib import Path

_tests_dir = Path(__file__).parent                 # .../kasai/tests/
_project_root = _tests_dir.parent.parent          # .../ (repository root)

for _path in (_project_root, _tests_dir):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))

import pytest  # noqa: E402

from fakes import (  # noqa: E402
    FakeCacheTier,
    FakeInterpreter,
    FakeLedger,
    FakeSynthesizer,
    FrozenClock,
    InMemoryDurableTier,
    RecordingSink,
)
from kasai.config import Settings  # noqa: E402
from kasai.conversation.dispatcher import MessageDispatcher  # noqa: E402
from kasai.conversation.flows import ConversationStateMachine  # noqa: E402
from kasai.modes.controller import ModeController  # noqa: E402
from kasai.sessions.manager import CacheHealth, SessionManager  # noqa: E402


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None, redis_enabled=True, mistral_api_key="test")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def cache(clock) -> FakeCacheTier:
    return FakeCacheTier(clock)


@pytest.fixture
def durable(config) -> InMemoryDurableTier:
    return InMemoryDurableTier(transport_ttl=config.transport_session_ttl)


@pytest.fixture
def health() -> CacheHealth:
    return CacheHealth()


@pytest.fixture
def manager(durable, cache, health, clock, config) -> SessionManager:
    return SessionManager(durable, cache, health=health, clock=clock, config=config)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def interpreter() -> FakeInterpreter:
    return FakeInterpreter()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def flows(manager, ledger, interpreter, config) -> ConversationStateMachine:
    return ConversationStateMachine(manager, ledger, interpreter, config)


@pytest.fixture
def modes(manager, flows, interpreter, synthesizer, config) -> ModeController:
    return ModeController(manager, flows, interpreter, synthesizer, config)


@pytest.fixture
def dispatcher(manager, flows, modes, interpreter, ledger, config) -> MessageDispatcher:
    return MessageDispatcher(manager, flows, modes, interpreter, ledger, config)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
