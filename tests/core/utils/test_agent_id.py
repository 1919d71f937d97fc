"""Tests for agent ID generation."""

from core.utils.agent_id import generate_agent_id


class TestGenerateAgentId:

    def test_three_word_slug(self):
        assert len(generate_agent_id().split("-")) >= 3

    def test_prefix(self):
        agent_id = generate_agent_id("collector")
        assert agent_id.startswith("collector-")

    def test_unique(self):
        assert len({generate_agent_id() for _ in range(10)}) > 1
