import logging
import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import reliefchain`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from reliefchain.config import ConfigManager
from reliefchain.ledger import Ledger
from reliefchain.observability import StructuredHandler
from reliefchain.registry import SupplyRegistry
from reliefchain.verification import OrganizationRegistry

ADMIN = "deployer"
ORG1 = "wallet_1"
ORG2 = "wallet_2"
OUTSIDER = "wallet_3"


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless RELIEFCHAIN_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('RELIEFCHAIN_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set RELIEFCHAIN_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test starts from default configuration and no installed log handler."""
    ConfigManager._instance = None
    yield
    ConfigManager._instance = None
    root = logging.getLogger("reliefchain")
    for handler in list(root.handlers):
        if isinstance(handler, StructuredHandler):
            root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


@pytest.fixture
def orgs() -> OrganizationRegistry:
    return OrganizationRegistry(ADMIN, [ORG1, ORG2])


@pytest.fixture
def ledger() -> Ledger:
    return Ledger()


@pytest.fixture
def registry(orgs, ledger) -> SupplyRegistry:
    return SupplyRegistry(ADMIN, ledger=ledger, verifier=orgs)


@pytest.fixture
def minted(registry):
    """Registry holding token 1 owned by ORG1."""
    token_id = registry.mint(
        ORG1,
        ORG1,
        "ipfs://batch-1",
        "vaccine",
        10,
        description="Measles vaccines",
        tags=["cold-chain"],
    ).unwrap()
    assert token_id == 1
    return registry
