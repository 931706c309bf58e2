"""
Registry of tools, keyed by package name and content id.
The API looks tools up by package name, the executor-side handler by content id.
init_tools() is idempotent: repeated calls do not duplicate or overwrite with different instances.
"""
from typing import Dict, List, Optional

from toolgate.tools.builtins import FailTool, NoopTool, TransferTool
from toolgate.tools.protocol import Tool

TOOLS: Dict[str, Tool] = {}
_INIT_DONE = False


def register(tool: Tool) -> None:
    if tool.package_name:
        TOOLS[tool.package_name] = tool
        TOOLS[tool.ipfs_cid] = tool


def get_tool(key: str) -> Optional[Tool]:
    if not key:
        return None
    return TOOLS.get(key.strip())


def list_tools() -> List[Tool]:
    seen: Dict[str, Tool] = {}
    for t in TOOLS.values():
        seen.setdefault(t.package_name, t)
    return list(seen.values())


def init_tools() -> None:
    """Register TRANSFER / NOOP / FAIL. Idempotent: safe to call multiple times."""
    global _INIT_DONE
    if _INIT_DONE:
        return
    register(TransferTool())
    register(NoopTool())
    register(FailTool())
    _INIT_DONE = True
