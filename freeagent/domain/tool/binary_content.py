"""Binary tool results are summarized before they reach model context."""

from typing import Dict, Any, Optional, NamedTuple

BINARY_TOOLS = ("image_generation", "elevenlabs_tts")


class BinaryInfo(NamedTuple):
    is_binary: bool
    mime_type: Optional[str]
    size: int
    summary: str


NOT_BINARY = BinaryInfo(False, None, 0, "")


def base_tool_name(tool: str) -> str:
    """Strip an instance suffix such as ``image_generation:logo``"""
    return tool.split(":", 1)[0]


def is_binary_tool(tool: str) -> bool:
    return base_tool_name(tool) in BINARY_TOOLS


def binary_summary(mime_type: str, size: int) -> str:
    # Half-up rounding to whole kilobytes
    kilobytes = int(size / 1024 + 0.5)
    return f"[Binary {mime_type} - {kilobytes}KB]"


def detect_binary_content(tool: str, result: Any) -> BinaryInfo:
    """Detect binary payloads in a binary tool's result"""
    if not is_binary_tool(tool) or not isinstance(result, dict) or not result:
        return NOT_BINARY

    image_url = result.get("imageUrl")
    if image_url:
        mime_type = result.get("mimeType") or "image/png"
        size = len(image_url)
        return BinaryInfo(True, mime_type, size, binary_summary(mime_type, size))

    audio = result.get("audioContent") or result.get("audioData")
    if audio:
        mime_type = result.get("contentType") or result.get("mimeType") or "audio/mpeg"
        size = len(audio)
        return BinaryInfo(True, mime_type, size, binary_summary(mime_type, size))

    return NOT_BINARY


def sanitize_for_context(tool: str, result: Any) -> Any:
    """Replace binary data with a metadata summary"""
    info = detect_binary_content(tool, result)
    if not info.is_binary:
        return result

    summary: Dict[str, Any] = {
        "_binaryContent": True,
        "mimeType": info.mime_type,
        "size": info.size,
        "summary": info.summary,
    }
    if result.get("model"):
        summary["model"] = result["model"]
    return summary
