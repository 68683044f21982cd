from typing import Any, Dict, List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..core.agent.tools import ToolCall, get_tool_definitions
from ..runtime import SessionRuntime, get_runtime

router = APIRouter(prefix="/tools", tags=["tools"])


class ToolCallRequest(BaseModel):
    """A tool call as emitted by the LLM."""
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


@router.get("")
async def list_tools(format: str = Query("anthropic", description="anthropic or gemini")) -> List[Dict[str, Any]]:
    try:
        return get_tool_definitions(format)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/call")
async def call_tool(
    request: ToolCallRequest,
    runtime: SessionRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Dispatch one tool call; always answers with exactly one outcome."""
    call = ToolCall(id=request.id or uuid.uuid4().hex, name=request.name, arguments=request.arguments)
    result = await runtime.dispatcher.handle_call(call)
    return {"toolCallId": result.tool_call_id, **result.result}
