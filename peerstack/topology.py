"""
The two-region deployment topology.

Two regional networks are peered, each side enables DNS resolution for its
half of the peering link, a database in the primary region accepts traffic
from both networks, an application runs in each region sharing one set of
secrets, and a global accelerator routes between the two load balancers.

Values that cross regions (address ranges, the peering connection id, the
secret and load balancer ARNs, the container image) are copied as plain
values when the producer is applied. The secondary network is looked up by
its stable name from the primary region.
"""

from typing import Dict, Tuple

from .config.settings import DeploymentConfig
from .effects.peering_dns import AllowPeeringDnsResolution, PeeringSide
from .graph.builder import DeploymentGraph
from .graph.models import LiteralValue, MaterializeSlot, NameLookup, Region, RegionRole, Unit
from .lookup import NamingConvention

NETWORK_OUTPUTS = [
    "vpc_id",
    "cidr",
    "name",
    "public_subnet_ids",
    "private_subnet_ids",
    "route_table_ids",
]

APP_SECRETS: Dict[str, str] = {
    "secret_key_base_secret_arn": "Secret key base for signing sessions",
    "release_cookie_secret_arn": "Erlang release cookie shared by both clusters",
    "github_client_id_secret_arn": "GitHub OAuth client id",
    "github_client_secret_secret_arn": "GitHub OAuth client secret",
}


def build_topology(config: DeploymentConfig) -> Tuple[DeploymentGraph, NamingConvention]:
    """Build the unit graph for ``config`` and the names it relies on."""
    naming = NamingConvention(config)
    primary = Region(name=config.primary_region, role=RegionRole.PRIMARY)
    secondary = Region(name=config.secondary_region, role=RegionRole.SECONDARY)

    graph = DeploymentGraph(name=config.prefix)

    # networks
    for unit_id, region, cidr in (
        ("foundation-primary", primary, config.primary_cidr),
        ("foundation-secondary", secondary, config.secondary_cidr),
    ):
        name = naming.register(naming.vpc_name, region.key, "vpc")
        graph.add_unit(
            Unit(
                id=unit_id,
                region=region,
                kind="network",
                inputs={"name": LiteralValue(value=name), "cidr": LiteralValue(value=cidr)},
                output_names=NETWORK_OUTPUTS,
                required_inputs=["name", "cidr"],
                stable_name=name,
            )
        )

    # peering, requested from the primary region
    graph.add_unit(
        Unit(
            id="peering",
            region=primary,
            kind="peering",
            inputs={
                "peer_vpc_id": NameLookup(name=naming.vpc_name, region=secondary.name),
                "peer_region": LiteralValue(value=secondary.name),
            },
            output_names=["peering_connection_id"],
            required_inputs=["vpc_id", "peer_vpc_id"],
        )
    )
    graph.connect("foundation-primary", "vpc_id", "peering", "vpc_id")
    graph.depends_on("peering", "foundation-secondary")
    graph.add_peering("foundation-primary", "foundation-secondary", "peering")

    # routes and DNS resolution, one unit per side of the link
    for unit_id, region, side, local, remote in (
        (
            "peering-routes-primary",
            primary,
            PeeringSide.REQUESTER,
            "foundation-primary",
            "foundation-secondary",
        ),
        (
            "peering-routes-secondary",
            secondary,
            PeeringSide.ACCEPTER,
            "foundation-secondary",
            "foundation-primary",
        ),
    ):
        graph.add_unit(
            Unit(
                id=unit_id,
                region=region,
                kind="peering_routes",
                required_inputs=[
                    "peering_connection_id",
                    "route_table_ids",
                    "destination_cidr_block",
                ],
                effects=[AllowPeeringDnsResolution(side, region.key)],
            )
        )
        graph.connect("peering", "peering_connection_id", unit_id, "peering_connection_id")
        graph.connect(local, "route_table_ids", unit_id, "route_table_ids")
        graph.connect(remote, "cidr", unit_id, "destination_cidr_block")

    # database in the primary region, reachable from both networks
    graph.add_unit(
        Unit(
            id="database",
            region=primary,
            kind="database",
            inputs={"database_name": LiteralValue(value=config.app_name.replace("-", "_"))},
            output_names=[
                "database_credentials_secret_arn",
                "endpoint_address",
                "security_group_id",
            ],
            required_inputs=["vpc_id", "subnet_ids", "allowed_cidr_primary"],
        )
    )
    graph.connect("foundation-primary", "vpc_id", "database", "vpc_id")
    graph.connect("foundation-primary", "private_subnet_ids", "database", "subnet_ids")
    graph.connect("foundation-primary", "cidr", "database", "allowed_cidr_primary", rule=True)
    graph.connect(
        "foundation-secondary", "cidr", "database", "allowed_cidr_secondary", rule=True
    )

    # one application per region
    for unit_id, region, foundation in (
        ("app-primary", primary, "foundation-primary"),
        ("app-secondary", secondary, "foundation-secondary"),
    ):
        graph.add_unit(
            Unit(
                id=unit_id,
                region=region,
                kind="app",
                inputs={"app_hostname": LiteralValue(value=config.app_hostname)},
                output_names=[
                    "load_balancer_arn",
                    "load_balancer_dns_name",
                    "container_image_uri",
                    *APP_SECRETS,
                ],
                required_inputs=[
                    "vpc_id",
                    "public_subnet_ids",
                    "private_subnet_ids",
                    "database_credentials_secret_arn",
                    "database_host",
                ],
                materialize={
                    slot: MaterializeSlot(
                        description=description,
                        secret_name=naming.secret_name(slot[: -len("_secret_arn")]),
                    )
                    for slot, description in APP_SECRETS.items()
                },
            )
        )
        graph.connect(foundation, "vpc_id", unit_id, "vpc_id")
        graph.connect(foundation, "public_subnet_ids", unit_id, "public_subnet_ids")
        graph.connect(foundation, "private_subnet_ids", unit_id, "private_subnet_ids")
        graph.connect(
            "database",
            "database_credentials_secret_arn",
            unit_id,
            "database_credentials_secret_arn",
        )
        graph.connect("database", "endpoint_address", unit_id, "database_host")

    # the secondary adopts what the primary created
    for slot in APP_SECRETS:
        graph.connect("app-primary", slot, "app-secondary", slot)
    graph.connect("app-primary", "container_image_uri", "app-secondary", "container_image_uri")
    graph.depends_on("app-secondary", "peering-routes-secondary")

    # global routing between the two load balancers
    graph.add_unit(
        Unit(
            id="routing",
            region=primary,
            kind="routing",
            output_names=["accelerator_arn", "accelerator_dns_name"],
            required_inputs=["primary_load_balancer_arn", "secondary_load_balancer_arn"],
        )
    )
    graph.connect("app-primary", "load_balancer_arn", "routing", "primary_load_balancer_arn")
    graph.connect(
        "app-secondary", "load_balancer_arn", "routing", "secondary_load_balancer_arn"
    )

    return graph, naming
