import json
import logging
from typing import Any, Dict, Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse

from config import Config
from models import MCPContentItem, MCPRequest, MCPTool, MCPToolCallResult
from tools import ContentTools

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def _string_arg(arguments: Dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    return "" if value is None else str(value)


def _optional_string_arg(arguments: Dict[str, Any], name: str) -> Optional[str]:
    value = arguments.get(name)
    return None if value is None else str(value)


def _int_arg(arguments: Dict[str, Any], name: str, default: int) -> int:
    value = arguments.get(name)
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


class MCPTransport:
    """
    JSON-RPC 2.0 dispatcher for the MCP HTTP transport.
    One request per POST; no session state is kept between requests.
    """

    def __init__(self, config: Config, content_tools: ContentTools):
        self.content_tools = content_tools

        self.server_info = {
            "name": config.mcp_server_name,
            "version": config.mcp_server_version,
        }
        self.protocol_version = config.mcp_protocol_version

        # Available tools
        self.tools = [
            MCPTool(
                name="list_subjects",
                description="jcg-gamza의 이론 과목 목록을 조회합니다",
                inputSchema={"type": "object", "properties": {}},
            ),
            MCPTool(
                name="list_theory_files",
                description="특정 과목의 이론 파일 목록을 조회합니다",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "subject": {
                            "type": "string",
                            "description": "과목 slug (예: db, network-os, sw-design, sw-dev, security-newtech)",
                        },
                    },
                    "required": ["subject"],
                },
            ),
            MCPTool(
                name="read_theory",
                description="특정 이론 파일의 전체 MDX 내용을 조회합니다",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "subject": {"type": "string", "description": "과목 slug"},
                        "filename": {"type": "string", "description": "파일명 (확장자 제외)"},
                    },
                    "required": ["subject", "filename"],
                },
            ),
            MCPTool(
                name="search_content",
                description="jcg-gamza 콘텐츠에서 키워드를 검색합니다",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "검색 키워드 (2글자 이상)"},
                        "subject": {"type": "string", "description": "특정 과목으로 제한 (선택사항)"},
                        "limit": {"type": "number", "description": "결과 개수 제한 (기본값: 10)"},
                    },
                    "required": ["query"],
                },
            ),
            MCPTool(
                name="extract_patterns",
                description="이론 MDX 파일에서 키워드 표 패턴을 추출합니다 (에이전트 개발용)",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "subject": {"type": "string", "description": "특정 과목으로 제한 (선택사항)"},
                        "limit": {"type": "number", "description": "샘플 파일 수 (기본값: 3)"},
                    },
                },
            ),
            MCPTool(
                name="list_exam_registration_files",
                description="시험 응시(접수) 관련 파일 목록을 조회합니다",
                inputSchema={"type": "object", "properties": {}},
            ),
            MCPTool(
                name="read_exam_registration",
                description="특정 시험 응시(접수) 파일의 전체 MDX 내용을 조회합니다",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "filename": {"type": "string", "description": "파일명 (확장자 제외)"},
                    },
                    "required": ["filename"],
                },
            ),
        ]

        self._handlers = {
            "initialize": self._handle_initialize,
            "notifications/initialized": self._handle_initialized,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
            "ping": self._handle_ping,
        }
        self._tool_names = {tool.name for tool in self.tools}

    async def handle_post_request(self, request: Request) -> JSONResponse:
        """Handle one JSON-RPC message posted to /mcp"""
        body = await request.body()
        try:
            message = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Rejected malformed JSON-RPC body: {e}")
            return JSONResponse(
                status_code=400,
                content=self._create_error_response(0, PARSE_ERROR, "Parse error", str(e)),
            )

        if not isinstance(message, dict):
            return JSONResponse(
                status_code=400,
                content=self._create_error_response(0, INVALID_REQUEST, "Invalid Request", "Expected a JSON object"),
            )

        return JSONResponse(content=await self.handle_message(message))

    async def handle_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Route a decoded JSON-RPC message to its method handler"""
        msg_id = message.get("id")
        method = message.get("method")
        params = message.get("params")
        if not isinstance(params, dict):
            params = {}

        handler = self._handlers.get(method) if isinstance(method, str) else None
        if handler is None:
            logger.info(f"Unknown MCP method: {method}")
            return self._create_error_response(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        return await handler(MCPRequest(id=msg_id, method=method, params=params))

    async def _handle_initialize(self, request: MCPRequest) -> Dict[str, Any]:
        return self._create_result_response(request.id, {
            "protocolVersion": self.protocol_version,
            "capabilities": {"tools": {}},
            "serverInfo": self.server_info,
        })

    async def _handle_initialized(self, request: MCPRequest) -> Dict[str, Any]:
        return self._create_result_response(request.id, {})

    async def _handle_tools_list(self, request: MCPRequest) -> Dict[str, Any]:
        return self._create_result_response(request.id, {
            "tools": [tool.model_dump() for tool in self.tools],
        })

    async def _handle_ping(self, request: MCPRequest) -> Dict[str, Any]:
        return self._create_result_response(request.id, {})

    async def _handle_tools_call(self, request: MCPRequest) -> Dict[str, Any]:
        """Handle tools/call method"""
        params = request.params or {}
        tool_name = params.get("name")
        arguments = params.get("arguments") or {}

        if not tool_name or not isinstance(tool_name, str):
            return self._create_error_response(request.id, INVALID_PARAMS, "Invalid params", "Tool name is required")

        if not isinstance(arguments, dict):
            return self._create_error_response(request.id, INVALID_PARAMS, "Invalid params", "arguments must be an object")

        if tool_name not in self._tool_names:
            return self._create_error_response(request.id, METHOD_NOT_FOUND, f"Unknown tool: {tool_name}")

        try:
            text = await self._execute_tool(tool_name, arguments)
        except Exception as e:
            logger.exception(f"Error executing tool {tool_name}")
            return self._create_error_response(request.id, INTERNAL_ERROR, "Internal error", str(e))

        result = MCPToolCallResult(content=[MCPContentItem(type="text", text=text)])
        return self._create_result_response(request.id, result.model_dump())

    async def _execute_tool(self, tool_name: str, arguments: Dict[str, Any]) -> str:
        """Execute a tool from the catalog"""
        tools = self.content_tools

        if tool_name == "list_subjects":
            return await tools.list_subjects()

        elif tool_name == "list_theory_files":
            return await tools.list_theory_files(_string_arg(arguments, "subject"))

        elif tool_name == "read_theory":
            return await tools.read_theory(
                _string_arg(arguments, "subject"),
                _string_arg(arguments, "filename"),
            )

        elif tool_name == "search_content":
            return await tools.search_content(
                _string_arg(arguments, "query"),
                _optional_string_arg(arguments, "subject"),
                _int_arg(arguments, "limit", 10),
            )

        elif tool_name == "extract_patterns":
            return await tools.extract_patterns(
                _optional_string_arg(arguments, "subject"),
                _int_arg(arguments, "limit", 3),
            )

        elif tool_name == "list_exam_registration_files":
            return await tools.list_exam_registration_files()

        elif tool_name == "read_exam_registration":
            return await tools.read_exam_registration(_string_arg(arguments, "filename"))

        raise ValueError(f"No executor for tool {tool_name}")

    def _create_result_response(self, msg_id: Optional[Union[str, int]], result: Any) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": msg_id,
            "result": result,
        }

    def _create_error_response(
        self, msg_id: Optional[Union[str, int]], code: int, message: str, data: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a JSON-RPC error response"""
        error = {
            "code": code,
            "message": message
        }
        if data:
            error["data"] = data

        return {
            "jsonrpc": "2.0",
            "id": msg_id,
            "error": error
        }
