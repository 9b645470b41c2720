import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import anonid`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from anonid.commitment import commit_payload  # noqa: E402
from anonid.config import ConfigManager  # noqa: E402
from anonid.core import AuthorizationCore  # noqa: E402
from anonid.zkp import PedersenOpeningProver, PublicInputs  # noqa: E402

from support import ADMIN, HOLDER, ISSUER, VERIFIER, FakeClock, TrapdoorSetup  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def core(clock) -> AuthorizationCore:
    return AuthorizationCore(ADMIN, clock=clock)


@pytest.fixture
def opening():
    return commit_payload({"name": "Alice", "dob": "1990-01-01", "country": "PK"})


@pytest.fixture
def issued(core, opening):
    """A core with ISSUER trusted, the opening's credential issued, and VERIFIER consented."""
    core.add_issuer(ADMIN, ISSUER)
    core.issue(ISSUER, opening.commitment)
    core.grant_consent(HOLDER, opening.commitment, VERIFIER)
    return core


@pytest.fixture
def proof_bundle(opening, clock):
    inputs = PublicInputs.for_credential(opening.commitment, ISSUER, clock())
    return PedersenOpeningProver().prove(opening, inputs), inputs


@pytest.fixture
def config_manager():
    mgr = ConfigManager()
    mgr.reset()
    yield mgr
    mgr.reset()


@pytest.fixture(scope="session")
def trapdoor() -> TrapdoorSetup:
    return TrapdoorSetup.generate(n_public=4, seed=7)
