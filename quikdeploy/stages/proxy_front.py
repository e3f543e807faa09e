"""DEPLOY_PROXY_FRONT and DEPLOY_PROXIES.

The proxy administrator is the single control surface that may repoint
proxies. Each proxied component (every logic component, then the facade)
gets one proxy whose address is what clients and storage see from then on.
"""

from __future__ import annotations

from typing import Any

from quikdeploy.core.catalog import (
    PROXY_SPEC,
    facade_init,
    logic_init,
    proxy_admin_salt,
    proxy_constructor_args,
    proxy_salt,
)
from quikdeploy.models.components import ComponentCategory, ComponentKind, descriptor_key
from quikdeploy.models.outcomes import StageOutcome
from quikdeploy.models.stages import StageId
from quikdeploy.stages.base import BaseExecutor


class ProxyFrontExecutor(BaseExecutor):
    stage_ids = (StageId.DEPLOY_PROXY_FRONT, StageId.DEPLOY_PROXIES)
    display_name = "Proxy Front"

    def execute(self, stage: StageId) -> StageOutcome:
        admin_name = self.config.topology.proxy_admin.name
        if stage == StageId.DEPLOY_PROXY_FRONT:
            admin = self.deploy_proxy_admin(self.owner)
            return StageOutcome(
                stage=stage,
                succeeded=True,
                components={descriptor_key(ComponentCategory.PROXIES, admin_name): admin},
                gas_used=self.gas_used,
            )

        proxies = self.deploy_proxies(
            self.state.addresses(ComponentCategory.IMPLEMENTATIONS),
            self.state.addresses(ComponentCategory.STORAGE),
            self.state.address_of(ComponentCategory.PROXIES, admin_name),
        )
        return StageOutcome(
            stage=stage,
            succeeded=True,
            components={
                descriptor_key(ComponentCategory.PROXIES, n): a for n, a in proxies.items()
            },
            gas_used=self.gas_used,
        )

    def deploy_proxy_admin(self, owner: str) -> str:
        """Create the proxy administrator owned by *owner*."""
        owner = self.require_address(owner, "proxy admin owner")
        spec = self.config.topology.proxy_admin
        return self.create(
            StageId.DEPLOY_PROXY_FRONT,
            ComponentCategory.PROXIES,
            spec.name,
            proxy_admin_salt(spec.name, self.owner),
            self.catalog.payload(spec, ComponentKind.PROXY_ADMIN, {"owner": owner}),
        )

    def deploy_proxies(
        self,
        implementations: dict[str, str],
        storage: dict[str, str],
        admin: str | None,
    ) -> dict[str, str]:
        """Create one proxy per proxied component; name -> proxy address.

        Every dependency is validated before the first proxy is created.
        """
        topology = self.config.topology
        admin = self.require_address(admin, topology.proxy_admin.name)
        impls = {
            spec.name: self.require_address(
                implementations.get(spec.name), f"{spec.name} implementation"
            )
            for spec in topology.proxied
        }
        stores = {
            lg.name: self.require_address(storage.get(lg.storage), lg.storage)
            for lg in topology.logic
        }

        proxies: dict[str, str] = {}
        for lg in topology.logic:
            args = proxy_constructor_args(
                impls[lg.name], admin, logic_init(stores[lg.name], self.owner)
            )
            proxies[lg.name] = self._create_proxy(lg.name, args)

        facade = topology.facade
        logic_proxies = {name: proxies[name] for name in facade.logic}
        args = proxy_constructor_args(
            impls[facade.name], admin, facade_init(logic_proxies, self.owner)
        )
        proxies[facade.name] = self._create_proxy(facade.name, args)
        return proxies

    def _create_proxy(self, name: str, args: dict[str, Any]) -> str:
        return self.create(
            StageId.DEPLOY_PROXIES,
            ComponentCategory.PROXIES,
            name,
            proxy_salt(name, self.owner),
            self.catalog.payload(PROXY_SPEC, ComponentKind.PROXY, args),
        )
