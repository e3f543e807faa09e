"""quikdeploy: staged, resumable deployment of the QuikDB component graph.

Storage components, logic implementations, a proxy administrator and one
proxy per logic component are placed at content-derived addresses, wired
together, granted their roles and verified, with every stage checkpointed
to ``latest.json`` and chained into an audit ledger. Upgrades repoint
proxies in place.
"""

__version__ = "0.2.0"
__description__ = "Staged, resumable, content-addressed deployment orchestrator"

from quikdeploy.core.orchestrator import Orchestrator
from quikdeploy.core.upgrade_controller import UpgradeController
from quikdeploy.client import ComponentManager
from quikdeploy.cli.app import app as cli

__all__ = ["Orchestrator", "UpgradeController", "ComponentManager", "cli", "__version__"]
