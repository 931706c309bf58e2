"""
Tool invocation endpoints. 200 for success and failure alike (callers branch on "success");
404 only when the tool is unknown.
"""
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from toolgate.results import response_to_dict
from toolgate.tools.registry import get_tool, list_tools

router = APIRouter(prefix="/tools", tags=["tools"])


class InvokeBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_params: Any = Field(default=None, alias="toolParams")
    delegator_address: str = Field(alias="delegatorAddress", min_length=1)
    rpc_url: Optional[str] = Field(default=None, alias="rpcUrl")


def _client(request: Request, package_name: str):
    tool = get_tool(package_name)
    if tool is None:
        raise HTTPException(status_code=404, detail=f"unknown tool {package_name}")
    return request.app.state.services.client_for(tool)


@router.get("")
async def get_tools():
    items = []
    for tool in list_tools():
        items.append(
            {
                "packageName": tool.package_name,
                "ipfsCid": tool.ipfs_cid,
                "supportedPolicies": [sp.package_name for sp in tool.supported_policies],
                "hasPrecheck": tool.has_precheck(),
            }
        )
    return {"items": items}


@router.post("/{package_name}/precheck")
async def post_precheck(package_name: str, body: InvokeBody, request: Request):
    client = _client(request, package_name)
    response = await client.precheck(body.tool_params, body.delegator_address, rpc_url=body.rpc_url)
    return response_to_dict(response)


@router.post("/{package_name}/execute")
async def post_execute(package_name: str, body: InvokeBody, request: Request):
    client = _client(request, package_name)
    response = await client.execute(body.tool_params, body.delegator_address)
    return response_to_dict(response)
