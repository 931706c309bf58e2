"""
Registry and event tables. Queries elsewhere use text(); these definitions exist for create_all
(dev/test) and as the reference schema. JSON columns are stored as text.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, MetaData, String, Table, Text, func, true

metadata = MetaData()

# delegatee (the calling party) -> the app it acts for
app_delegatees = Table(
    "app_delegatees",
    metadata,
    Column("delegatee_address", String(64), primary_key=True),
    Column("app_id", Integer, nullable=False),
)

# delegator's on-chain wallet identity
delegators = Table(
    "delegators",
    metadata,
    Column("eth_address", String(64), primary_key=True),
    Column("token_id", String(128), nullable=False),
    Column("public_key", String(256), nullable=False),
)

# delegator permitted app_id at app_version
app_permissions = Table(
    "app_permissions",
    metadata,
    Column("app_id", Integer, primary_key=True),
    Column("delegator_address", String(64), primary_key=True),
    Column("app_version", Integer, nullable=False),
    Column("enabled", Boolean, nullable=False, server_default=true()),
)

app_tools = Table(
    "app_tools",
    metadata,
    Column("app_id", Integer, primary_key=True),
    Column("app_version", Integer, primary_key=True),
    Column("tool_ipfs_cid", String(128), primary_key=True),
)

# policies an app version attaches to a tool, in evaluation order
tool_policies = Table(
    "tool_policies",
    metadata,
    Column("app_id", Integer, primary_key=True),
    Column("app_version", Integer, primary_key=True),
    Column("tool_ipfs_cid", String(128), primary_key=True),
    Column("policy_ipfs_cid", String(128), primary_key=True),
    Column("position", Integer, nullable=False, server_default="0"),
)

# delegator-configured user params per policy (JSON text)
policy_parameters = Table(
    "policy_parameters",
    metadata,
    Column("app_id", Integer, primary_key=True),
    Column("app_version", Integer, primary_key=True),
    Column("delegator_address", String(64), primary_key=True),
    Column("policy_ipfs_cid", String(128), primary_key=True),
    Column("parameters", Text, nullable=True),
)

invocation_events = Table(
    "invocation_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("invocation_id", String(64), nullable=False, index=True),
    Column("tool_ipfs_cid", String(128), nullable=False),
    Column("event_type", String(32), nullable=False),
    Column("payload", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)


async def init_tables(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
