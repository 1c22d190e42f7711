"""Tests for the voting orchestrator and the conversation-facing service."""

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import AsyncMock, patch

import pytest

from llm.src.client import CHAT_COMPLETION_URLS, LLMClient
from llm.src.models import LLMResponse, Provider
from voting.src.config import ConfigStore, ConfigurationError, VotingConfiguration
from voting.src.fallback import VotingFailedError
from voting.src.models import ConsensusMethod
from voting.src.orchestrator import VotingOrchestrator
from voting.src.service import NOT_UNDERSTOOD_MESSAGE, IntentVotingService


@pytest.fixture
def orchestrator(make_config, mock_client):
    return VotingOrchestrator(mock_client, ConfigStore(make_config()))


class ChatCompletionHandler(BaseHTTPRequestHandler):
    """Answers every chat completion with an "ayuda" vote."""

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        vote = json.dumps({"intent": "ayuda", "confidence": 0.9})
        body = json.dumps({"choices": [{"message": {"content": vote}}]}).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def chat_server():
    """Local OpenAI-compatible endpoint; yields its URL."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), ChatCompletionHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}/v1/chat/completions"
    server.shutdown()
    server.server_close()


class TestExecute:
    """Tests for VotingOrchestrator.execute."""

    @pytest.mark.asyncio
    async def test_execute_runs_vote(self, make_config, scripted_client, reply):
        client = scripted_client({
            "gpt": reply("consultar_tiempo", 0.9),
            "claude": reply("consultar_tiempo", 0.8),
            "deepseek": reply("ayuda", 0.6),
        })
        orchestrator = VotingOrchestrator(client, ConfigStore(make_config()))

        result = await orchestrator.execute(
            "que tiempo hace?", {"city": "Madrid"}, ["hola"], request_id="req42"
        )

        assert result.final_intent == "consultar_tiempo"
        assert result.votes[0].vote_id == "vote_req42_r1_gpt"
        prompt = client.complete.await_args_list[0].args[1]
        assert "que tiempo hace?" in prompt
        assert "- city: Madrid" in prompt

        stats = orchestrator.get_statistics()
        assert stats["requests_total"] == 1
        assert stats["requests_failed"] == 0
        assert stats["active_rounds"] == 0

    @pytest.mark.asyncio
    async def test_execute_propagates_voting_failure(self, orchestrator, mock_client):
        mock_client.complete = AsyncMock(return_value=LLMResponse(success=False, error="api_error"))

        with pytest.raises(VotingFailedError):
            await orchestrator.execute("???")

        stats = orchestrator.get_statistics()
        assert stats["requests_failed"] == 1
        assert stats["active_rounds"] == 0

    @pytest.mark.asyncio
    async def test_reload_applies_to_next_request(self, orchestrator, make_config, mock_client, reply):
        mock_client.complete = AsyncMock(return_value=reply("ayuda", 0.9))

        orchestrator.reload_configuration(make_config(moe_enabled=False))
        result = await orchestrator.execute("help")

        assert result.consensus_method == ConsensusMethod.SINGLE_LLM_MODE
        assert mock_client.complete.await_count == 1


class TestConfigurationManagement:
    """Tests for reload, statistics and health."""

    def test_statistics(self, orchestrator):
        stats = orchestrator.get_statistics()

        assert stats["participants_count"] == 3
        assert stats["moe_enabled"] is True
        assert stats["active_rounds"] == 0
        assert stats["max_debate_rounds"] == 1
        assert stats["consensus_threshold"] == 0.6
        assert stats["parallel_voting"] is True
        assert stats["timeout_per_vote_ms"] == 1000
        assert stats["consensus_algorithm"] == "weighted-majority"

    def test_reload_swaps_atomically(self, orchestrator, make_config):
        new_config = make_config(max_debate_rounds=4, consensus_threshold=0.75)

        active = orchestrator.reload_configuration(new_config)

        assert active is new_config
        assert orchestrator.config is new_config
        assert orchestrator.get_statistics()["max_debate_rounds"] == 4
        assert orchestrator.get_statistics()["config_reloads"] == 1

    def test_reload_from_file(self, tmp_path, mock_client):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "voting:\n"
            "  participants:\n"
            "    - {id: gpt, provider: openai}\n"
        )
        orchestrator = VotingOrchestrator(mock_client, ConfigStore(config_path=config_file))
        assert orchestrator.get_statistics()["participants_count"] == 1

        config_file.write_text(
            "voting:\n"
            "  max_debate_rounds: 3\n"
            "  participants:\n"
            "    - {id: gpt, provider: openai}\n"
            "    - {id: claude, provider: anthropic}\n"
        )
        orchestrator.reload_configuration()

        stats = orchestrator.get_statistics()
        assert stats["participants_count"] == 2
        assert stats["max_debate_rounds"] == 3

    def test_failed_reload_keeps_previous_config(self, tmp_path, mock_client):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("voting:\n  participants:\n    - {id: gpt}\n")
        orchestrator = VotingOrchestrator(mock_client, ConfigStore(config_path=config_file))
        before = orchestrator.config

        config_file.write_text("voting:\n  max_debate_rounds: 0\n")
        with pytest.raises(ConfigurationError):
            orchestrator.reload_configuration()

        assert orchestrator.config is before

    def test_is_healthy(self, orchestrator, make_config):
        assert orchestrator.is_healthy() is True

        orchestrator.reload_configuration(make_config(participants=()))

        assert orchestrator.is_healthy() is False


class TestIntentVotingService:
    """Tests for the conversation-facing wrapper."""

    @pytest.mark.asyncio
    async def test_classify_success(self, orchestrator, mock_client, reply):
        mock_client.complete = AsyncMock(return_value=reply("ayuda", 0.9))
        service = IntentVotingService(orchestrator)

        decision = await service.classify("help me")

        assert decision.success is True
        assert decision.intent == "ayuda"
        assert decision.to_dict()["result"]["final_intent"] == "ayuda"

    @pytest.mark.asyncio
    async def test_classify_failure_returns_message(self, orchestrator, mock_client):
        mock_client.complete = AsyncMock(return_value=LLMResponse(success=False, error="timeout"))
        service = IntentVotingService(orchestrator)

        decision = await service.classify("???")

        assert decision.success is False
        assert decision.result is None
        assert decision.intent is None
        assert decision.message == NOT_UNDERSTOOD_MESSAGE

    def test_classify_sync(self, orchestrator, mock_client, reply):
        mock_client.complete = AsyncMock(return_value=reply("ayuda", 0.9))

        decision = IntentVotingService(orchestrator).classify_sync("help me")

        assert decision.success is True
        mock_client.close.assert_awaited_once()

    def test_classify_sync_repeated_calls_over_http(self, chat_server, participants):
        """Consecutive blocking calls share one real client across event loops."""
        config = VotingConfiguration(moe_enabled=False, participants=(participants[0],))
        client = LLMClient(openai_api_key="test-key")
        service = IntentVotingService(VotingOrchestrator(client, ConfigStore(config)))

        with patch.dict(CHAT_COMPLETION_URLS, {Provider.OPENAI: chat_server}):
            first = service.classify_sync("ayuda")
            second = service.classify_sync("ayuda otra vez")

        assert first.success is True
        assert second.success is True
        assert first.intent == "ayuda"
        assert second.intent == "ayuda"
        assert client._http_session is None
