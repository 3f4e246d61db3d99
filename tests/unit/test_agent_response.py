"""
Unit Tests for model response decoding
"""

import json

from freeagent.domain.models.agent_response import (
    ParseFailure, ParsedResponse, ResponseStatus, decode_agent_response,
)


class TestDecodeAgentResponse:
    """Tests for decode_agent_response."""

    def test_plain_json(self):
        raw = json.dumps({
            "reasoning": "Search first",
            "tool_calls": [{"tool": "brave_search", "params": {"query": "x"}}],
            "blackboard_entry": {"category": "plan", "content": "Search for x"},
            "status": "in_progress",
        })

        decoded = decode_agent_response(raw)

        assert isinstance(decoded, ParsedResponse)
        assert decoded.response.status == ResponseStatus.IN_PROGRESS
        assert decoded.response.tool_calls[0].tool == "brave_search"
        assert decoded.raw_text == raw

    def test_json_inside_code_fence(self):
        raw = 'Here you go:\n```json\n{"status": "completed", "message_to_user": "Done"}\n```'

        decoded = decode_agent_response(raw)

        assert isinstance(decoded, ParsedResponse)
        assert decoded.response.message_to_user == "Done"

    def test_final_report_dropped_unless_completed(self):
        raw = json.dumps({"status": "in_progress", "final_report": {"summary": "early"}})

        decoded = decode_agent_response(raw)

        assert decoded.response.final_report is None

    def test_empty_response(self):
        decoded = decode_agent_response("   ")

        assert isinstance(decoded, ParseFailure)
        assert decoded.reason == "Empty model response"

    def test_invalid_status_fails_validation(self):
        decoded = decode_agent_response('{"status": "thinking"}')

        assert isinstance(decoded, ParseFailure)
        assert decoded.reason.startswith("Response failed validation")
        assert decoded.raw_text == '{"status": "thinking"}'

    def test_non_object_payload(self):
        decoded = decode_agent_response("[1, 2, 3]")

        assert isinstance(decoded, ParseFailure)
        assert decoded.reason == "Model response is not a JSON object"

    def test_diagnostics_preview(self):
        raw = "x" * 800
        diagnostics = decode_agent_response(raw).diagnostics()

        assert diagnostics["response_length"] == 800
        assert len(diagnostics["preview"]) == 500
        assert len(diagnostics["ending"]) == 200
