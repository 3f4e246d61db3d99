from typing import Dict, List, Any, Optional
from pydantic import BaseModel, Field
from enum import Enum

from freeagent.domain.tool.binary_content import base_tool_name


class ToolKind(str, Enum):
    """Where a tool executes"""
    REMOTE = "remote"
    LOCAL = "local"


class ToolDefinition(BaseModel):
    """Static description of a tool"""
    name: str
    description: str
    category: str = "general"
    kind: ToolKind = ToolKind.REMOTE
    operation: Optional[str] = Field(None, description="Remote operation name for remote tools")
    request_defaults: Dict[str, Any] = Field(default_factory=dict, description="Body fields used when the call omits them")
    request_overrides: Dict[str, Any] = Field(default_factory=dict, description="Body fields that always win over call params")
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema for the tool's parameters"
    )
    cacheable: bool = False

    def describe(self) -> str:
        """One-line description for the tool catalogue"""
        properties = self.parameters.get("properties", {})
        required = set(self.parameters.get("required", []))
        params = ", ".join(
            name if name in required else f"{name}?"
            for name in properties
        )
        return f"- {self.name}: {self.description} (params: {params or 'none'})"

    def build_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Request body for a remote call, without saveAs"""
        body = dict(self.request_defaults)
        body.update({k: v for k, v in params.items() if k != "saveAs"})
        body.update(self.request_overrides)
        return body


def _schema(required: List[str], **properties: str) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {name: {"type": kind} for name, kind in properties.items()},
        "required": required,
    }


DEFAULT_TOOLS: List[Dict[str, Any]] = [
    {
        "name": "get_time",
        "description": "Get current date/time",
        "category": "utility",
        "operation": "time",
        "parameters": _schema([], timezone="string"),
    },
    {
        "name": "brave_search",
        "description": "Search the web",
        "category": "search",
        "operation": "brave-search",
        "parameters": _schema(["query"], query="string", numResults="integer", saveAs="string"),
    },
    {
        "name": "google_search",
        "description": "Search via Google",
        "category": "search",
        "operation": "google-search",
        "parameters": _schema(["query"], query="string", numResults="integer", saveAs="string"),
    },
    {
        "name": "web_scrape",
        "description": "Scrape webpage content",
        "category": "search",
        "operation": "web-scrape",
        "cacheable": True,
        "parameters": _schema(["url"], url="string", maxCharacters="integer", saveAs="string"),
    },
    {
        "name": "read_github_repo",
        "description": "Get repo file tree",
        "category": "code",
        "operation": "github-fetch",
        "cacheable": True,
        "parameters": _schema(["repoUrl"], repoUrl="string", branch="string", saveAs="string"),
    },
    {
        "name": "read_github_file",
        "description": "Read files from repo",
        "category": "code",
        "operation": "github-fetch",
        "cacheable": True,
        "parameters": _schema(["repoUrl", "selectedPaths"], repoUrl="string", selectedPaths="array", branch="string", saveAs="string"),
    },
    {
        "name": "send_email",
        "description": "Send an email",
        "category": "communication",
        "operation": "send-email",
        "parameters": _schema(["to", "subject", "body"], to="string", subject="string", body="string", useHtml="boolean"),
    },
    {
        "name": "image_generation",
        "description": "Generate image from prompt",
        "category": "media",
        "operation": "run-nano",
        "request_defaults": {"model": "gemini-2.5-flash-image"},
        "parameters": _schema(["prompt"], prompt="string", model="string"),
    },
    {
        "name": "elevenlabs_tts",
        "description": "Text to speech",
        "category": "media",
        "operation": "elevenlabs-tts",
        "parameters": _schema(["text"], text="string", voiceId="string", modelId="string"),
    },
    {
        "name": "get_call_api",
        "description": "Make GET request",
        "category": "api",
        "operation": "api-call",
        "request_overrides": {"method": "GET"},
        "parameters": _schema(["url"], url="string", headers="object", saveAs="string"),
    },
    {
        "name": "post_call_api",
        "description": "Make POST request",
        "category": "api",
        "operation": "api-call",
        "request_overrides": {"method": "POST"},
        "parameters": _schema(["url"], url="string", headers="object", body="object", saveAs="string"),
    },
    {
        "name": "execute_sql",
        "description": "Execute SQL on external database",
        "category": "database",
        "operation": "external-db",
        "parameters": _schema(["connectionString", "query"], connectionString="string", query="string", isWrite="boolean"),
    },
    {
        "name": "read_database_schemas",
        "description": "List schemas of an external database",
        "category": "database",
        "operation": "external-db",
        "request_overrides": {"action": "schemas"},
        "parameters": _schema(["connectionString"], connectionString="string"),
    },
    {
        "name": "get_weather",
        "description": "Get weather for a location",
        "category": "utility",
        "operation": "tool_weather",
        "parameters": _schema(["location"], location="string"),
    },
    {
        "name": "read_zip_contents",
        "description": "List entries of a zip archive",
        "category": "files",
        "operation": "tool_zip-handler",
        "request_overrides": {"action": "list"},
        "parameters": _schema(["fileData"], fileData="string"),
    },
    {
        "name": "read_zip_file",
        "description": "Read one entry of a zip archive",
        "category": "files",
        "operation": "tool_zip-handler",
        "request_overrides": {"action": "read"},
        "parameters": _schema(["fileData", "entryPath"], fileData="string", entryPath="string"),
    },
    {
        "name": "extract_zip_files",
        "description": "Extract several entries of a zip archive",
        "category": "files",
        "operation": "tool_zip-handler",
        "request_overrides": {"action": "extract"},
        "parameters": _schema(["fileData"], fileData="string", paths="array"),
    },
    {
        "name": "pdf_info",
        "description": "Get PDF metadata",
        "category": "files",
        "operation": "tool_pdf-handler",
        "request_overrides": {"action": "info"},
        "parameters": _schema(["fileData"], fileData="string"),
    },
    {
        "name": "pdf_extract_text",
        "description": "Extract text from a PDF",
        "category": "files",
        "operation": "tool_pdf-handler",
        "request_overrides": {"action": "extract_text"},
        "parameters": _schema(["fileData"], fileData="string", pages="array"),
    },
    {
        "name": "ocr_image",
        "description": "Extract text from an image",
        "category": "files",
        "operation": "tool_ocr-handler",
        "parameters": _schema(["imageData"], imageData="string"),
    },
    # Local handlers run inside the engine's own process
    {
        "name": "read_blackboard",
        "description": "Read blackboard entries",
        "category": "memory",
        "kind": ToolKind.LOCAL,
        "parameters": _schema([], filter="string"),
    },
    {
        "name": "write_blackboard",
        "description": "Write to your planning journal",
        "category": "memory",
        "kind": ToolKind.LOCAL,
        "parameters": _schema(["category", "content"], category="string", content="string", data="object"),
    },
    {
        "name": "read_scratchpad",
        "description": "Read the scratchpad and list available attributes",
        "category": "memory",
        "kind": ToolKind.LOCAL,
    },
    {
        "name": "write_scratchpad",
        "description": "Save data to your scratchpad",
        "category": "memory",
        "kind": ToolKind.LOCAL,
        "parameters": _schema(["content"], content="string", mode="string"),
    },
    {
        "name": "read_attribute",
        "description": "Read saved tool results by name",
        "category": "memory",
        "kind": ToolKind.LOCAL,
        "parameters": _schema([], names="array"),
    },
    {
        "name": "read_prompt",
        "description": "Read the original user prompt",
        "category": "session",
        "kind": ToolKind.LOCAL,
    },
    {
        "name": "read_prompt_files",
        "description": "Get list of available files with metadata",
        "category": "session",
        "kind": ToolKind.LOCAL,
    },
    {
        "name": "read_file",
        "description": "Read session file content",
        "category": "session",
        "kind": ToolKind.LOCAL,
        "parameters": _schema(["fileId"], fileId="string"),
    },
    {
        "name": "request_assistance",
        "description": "Ask user for input",
        "category": "session",
        "kind": ToolKind.LOCAL,
        "parameters": _schema(["question"], question="string", context="string", inputType="string", choices="array"),
    },
    {
        "name": "spawn",
        "description": "Spawn child agents that work on sub-tasks in parallel",
        "category": "orchestration",
        "kind": ToolKind.LOCAL,
        "parameters": _schema(["children"], children="array"),
    },
]


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self, include_defaults: bool = True):
        self.tools: Dict[str, ToolDefinition] = {}
        if include_defaults:
            self._initialize_default_tools()

    def _initialize_default_tools(self):
        """Initialize with the default tool manifest"""

        for tool in DEFAULT_TOOLS:
            self.register_tool(ToolDefinition(**tool))

    def register_tool(self, tool: ToolDefinition):
        """Register a new tool"""

        self.tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        """Look up a tool, accepting ``tool:instance`` names"""

        return self.tools.get(name) or self.tools.get(base_tool_name(name))

    def get_available_tools(self, exclude: Optional[List[str]] = None) -> List[ToolDefinition]:
        """Get all available tools"""

        excluded = set(exclude or [])
        return [tool for name, tool in self.tools.items() if name not in excluded]

    def is_local(self, name: str) -> bool:
        tool = self.get_tool(name)
        return tool is not None and tool.kind == ToolKind.LOCAL

    def describe_tools(self, exclude: Optional[List[str]] = None) -> str:
        """Render the tool catalogue for model context"""

        return "\n".join(tool.describe() for tool in self.get_available_tools(exclude))
