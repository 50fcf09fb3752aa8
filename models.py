from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

# OAuth store records
class AuthorizationCode(BaseModel):
    """Authorization code issued after a successful login, keyed as code:<code>"""
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., alias="clientId")
    redirect_uri: str = Field(..., alias="redirectUri")
    code_challenge: str = Field(..., alias="codeChallenge")
    code_challenge_method: str = Field("S256", alias="codeChallengeMethod")
    scope: str = "mcp:read"
    expires_at: int = Field(..., alias="expiresAt", description="Epoch milliseconds")

class AccessToken(BaseModel):
    """OAuth access token record, keyed as token:<token>"""
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    client_id: str = Field(..., alias="clientId")
    scope: str
    expires_at: int = Field(..., alias="expiresAt", description="Epoch milliseconds")

class ClientRegistration(BaseModel):
    """Dynamically registered client, keyed as client:<client_id>"""
    client_id: str
    client_name: Optional[str] = None
    redirect_uris: List[str]
    grant_types: List[str]
    response_types: List[str]
    token_endpoint_auth_method: str
    client_id_issued_at: int

# OAuth request/response bodies
class ClientRegistrationRequest(BaseModel):
    """OAuth 2.1 Dynamic Client Registration Request"""
    client_name: Optional[str] = Field(None, description="Human-readable client name")
    redirect_uris: List[str] = Field(default_factory=list, description="Array of redirection URI strings")
    grant_types: Optional[List[str]] = Field(None, description="Grant types")
    response_types: Optional[List[str]] = Field(None, description="Response types")
    token_endpoint_auth_method: Optional[str] = Field(None, description="Authentication method")

class TokenResponse(BaseModel):
    """OAuth 2.1 Token Response"""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str

class LoginRequest(BaseModel):
    """Legacy /auth/login body"""
    username: Optional[str] = None
    password: Optional[str] = None

class LoginResponse(BaseModel):
    """Legacy /auth/login response"""
    success: bool
    token: Optional[str] = None
    error: Optional[str] = None

# MCP Models
class MCPRequest(BaseModel):
    """MCP JSON-RPC Request"""
    jsonrpc: str = Field("2.0", description="JSON-RPC version")
    method: str = Field(..., description="Method name")
    params: Optional[Dict[str, Any]] = Field(None, description="Method parameters")
    id: Optional[Any] = Field(None, description="Request identifier")

class MCPTool(BaseModel):
    """MCP Tool Definition"""
    name: str
    description: str
    inputSchema: Dict[str, Any]

class MCPContentItem(BaseModel):
    """MCP Content Item"""
    type: str = "text"
    text: str

class MCPToolCallResult(BaseModel):
    """MCP Tool Call Result"""
    content: List[MCPContentItem]

# Content API Models
class ContentResult(BaseModel):
    """Uniform result of a Content API call: success with data, or failure with a message"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None

class Subject(BaseModel):
    """Theory subject"""
    model_config = ConfigDict(populate_by_name=True)

    slug: str
    name: str
    file_count: int = Field(..., alias="fileCount")

class ContentFile(BaseModel):
    """Theory or exam-registration file summary"""
    filename: str
    title: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

class ContentDocument(ContentFile):
    """Theory or exam-registration file with its MDX body"""
    content: str = ""

class FileListing(BaseModel):
    """File list for a subject or for the exam-registration domain"""
    subject: Optional[str] = None
    files: List[ContentFile] = Field(default_factory=list)

class SearchResult(BaseModel):
    """Single search hit"""
    model_config = ConfigDict(populate_by_name=True)

    subject: str
    filename: str
    title: Optional[str] = None
    matched_content: str = Field("", alias="matchedContent")
    match_count: int = Field(0, alias="matchCount")

class SearchResponse(BaseModel):
    """Search results page"""
    model_config = ConfigDict(populate_by_name=True)

    query: str = ""
    total_results: int = Field(0, alias="totalResults")
    results: List[SearchResult] = Field(default_factory=list)

# API Response Models
class HealthCheckResponse(BaseModel):
    """Health Check Response"""
    status: str
    service: str
    version: str
    timestamp: str
    components: Dict[str, str]
    environment: str
