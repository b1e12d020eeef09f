"""Tests for agent reference rewriting."""

import copy

import pytest

from flow_builder.config import ConditionDataType, ConditionOperator, NodeType
from flow_builder.exceptions import InvalidAgentNameError
from flow_builder.models import (
    Agent,
    Condition,
    DataStoreField,
    DataStoreNodeData,
    IfNodeData,
    Node,
    PromptBlock,
    PromptMessage,
    SchemaField,
)
from flow_builder.references import ReferenceRewriter, sanitize_name

from conftest import build_agent, build_flow


@pytest.fixture
def rewriter() -> ReferenceRewriter:
    return ReferenceRewriter()


def if_node(node_id: str, value1: str, value2: str = "yes") -> Node:
    condition = Condition(
        id=f"{node_id}-c",
        data_type=ConditionDataType.STRING,
        operator=ConditionOperator.CONTAINS,
        value1=value1,
        value2=value2,
    )
    return Node(
        id=node_id,
        type=NodeType.IF,
        data=IfNodeData(conditions=[condition], draft_conditions=[condition]),
    )


# =============================================================================
# Sanitization
# =============================================================================


class TestSanitizeName:
    """Tests for turning display names into reference tokens."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Helper", "Helper"),
            ("Bob's Helper", "Bobs_Helper"),
            ("  Sales -- Bot  ", "Sales_Bot"),
            ("a__b", "a_b"),
            ("!!!", ""),
            ("", ""),
        ],
    )
    def test_sanitize(self, name, expected):
        assert sanitize_name(name) == expected


# =============================================================================
# Rewriting
# =============================================================================


class TestWholeWordRewrite:
    """Tests for whole-word matching."""

    def test_only_whole_words_are_rewritten(self, rewriter):
        """Test Bot -> Bot2 leaves Bot3 and RoBot alone."""
        agent = build_agent(text_prompt="Ask {{Bot}} then Bot3 or RoBot, never Bot_x. Bot.")

        result = rewriter.rewrite("Bot", "Bot2", [agent], [])

        assert result.updated_agents[0].text_prompt == (
            "Ask {{Bot2}} then Bot3 or RoBot, never Bot_x. Bot2."
        )
        assert result.total_references_updated == 2

    def test_rewrite_is_idempotent(self, rewriter):
        """Test running the same rename twice changes nothing the second time."""
        agent = build_agent(text_prompt="Use {{Bot}} output")

        first = rewriter.rewrite("Bot", "Bot2", [agent], [])
        second = rewriter.rewrite("Bot", "Bot2", first.updated_agents, [])

        assert first.total_references_updated == 1
        assert second.total_references_updated == 0
        assert second.updated_agents == []

    def test_names_are_sanitized_before_matching(self, rewriter):
        agent = build_agent(text_prompt="Ask {{Bobs_Helper}}")

        result = rewriter.rewrite("Bob's Helper", "Bob's Assistant", [agent], [])

        assert result.updated_agents[0].text_prompt == "Ask {{Bobs_Assistant}}"

    def test_special_characters_are_escaped(self, rewriter):
        """Test regex metacharacters in names never reach the pattern unescaped."""
        agent = build_agent(text_prompt="Ask {{A_B}} and AxB")

        result = rewriter.rewrite("A.B", "C", [agent], [])

        assert result.updated_agents[0].text_prompt == "Ask {{C}} and AxB"


class TestNoOp:
    """Tests for renames that change nothing."""

    def test_identical_sanitized_names(self, rewriter, agent):
        result = rewriter.rewrite("Bob's Bot", "Bobs Bot", [agent], [])

        assert result.no_op is True
        assert result.total_references_updated == 0
        assert result.updated_agents == []
        assert result.updated_nodes == []

    def test_empty_old_name(self, rewriter, agent):
        assert rewriter.rewrite("!!", "Bot", [agent], []).no_op is True

    def test_empty_new_name_raises(self, rewriter, agent):
        with pytest.raises(InvalidAgentNameError):
            rewriter.rewrite("Bot", "!!!", [agent], [])

    def test_overlong_new_name_raises(self, agent):
        with pytest.raises(InvalidAgentNameError):
            ReferenceRewriter(max_name_length=5).rewrite("Bot", "Very_long_name", [agent], [])


class TestScanTargets:
    """Tests for every field the rewriter covers."""

    def test_agent_fields(self, rewriter):
        agent = Agent(
            id="a",
            name="Other",
            text_prompt="Helper",
            prompt_messages=[
                PromptMessage(
                    id="m",
                    prompt_blocks=[
                        PromptBlock(id="b1", template="from {{Helper}}"),
                        PromptBlock(id="b2", type="variable", template="Helper"),
                    ],
                )
            ],
            schema_fields=[SchemaField(name="x", description="what Helper said")],
        )

        result = rewriter.rewrite("Helper", "Assistant", [agent], [])
        updated = result.updated_agents[0]

        assert updated.text_prompt == "Assistant"
        assert updated.prompt_messages[0].prompt_blocks[0].template == "from {{Assistant}}"
        assert updated.prompt_messages[0].prompt_blocks[1].template == "Helper"
        assert updated.schema_fields[0].description == "what Assistant said"
        assert result.total_references_updated == 3

    def test_data_store_logic(self, rewriter):
        node = Node(
            id="store",
            type=NodeType.DATA_STORE,
            data=DataStoreNodeData(
                fields=[DataStoreField(id="f", schema_field_id="sf", logic="Helper.answer")]
            ),
        )

        result = rewriter.rewrite("Helper", "Assistant", [], [node])

        assert result.updated_nodes[0].data_store_data.fields[0].logic == "Assistant.answer"

    def test_draft_only_condition_is_rewritten(self, rewriter):
        draft = Condition(id="d", value1="{{Helper}}")
        node = Node(id="if", type=NodeType.IF, data=IfNodeData(draft_conditions=[draft]))

        result = rewriter.rewrite("Helper", "Assistant", [], [node])

        assert result.updated_nodes[0].if_data.draft_conditions[0].value1 == "{{Assistant}}"
        assert result.total_references_updated == 1

    def test_response_template(self, rewriter):
        result = rewriter.rewrite("Helper", "Assistant", [], [], "{{Helper.summary}}")

        assert result.response_template_changed is True
        assert result.updated_response_template == "{{Assistant.summary}}"

    def test_unchanged_entities_are_not_returned(self, rewriter, agent):
        result = rewriter.rewrite(
            "Helper", "Assistant", [agent], [if_node("if-x", "no reference")]
        )

        assert result.updated_agents == []
        assert result.updated_nodes == []
        assert result.response_template_changed is False

    def test_inputs_are_not_mutated(self, rewriter):
        agent = build_agent(text_prompt="{{Helper}}")
        node = if_node("if-x", "{{Helper}}")
        agent_before, node_before = copy.deepcopy(agent), copy.deepcopy(node)

        rewriter.rewrite("Helper", "Assistant", [agent], [node])

        assert agent == agent_before
        assert node == node_before


class TestEndToEnd:
    """Tests for a rename across a whole flow."""

    def test_helper_to_assistant(self, rewriter, agent):
        """Test the If operand is the only reference in the sample flow."""
        flow = build_flow()

        result = rewriter.rewrite(
            "Helper", "Assistant", [agent], flow.nodes, flow.response_template
        )

        assert result.total_references_updated == 1
        assert [n.id for n in result.updated_nodes] == ["if-1"]
        if_data = result.updated_nodes[0].if_data
        assert if_data.conditions[0].value1 == "{{Assistant}} said yes"
        assert if_data.draft_conditions[0].value1 == "{{Assistant}} said yes"
        assert result.updated_agents == []
        assert result.response_template_changed is False

    def test_find_references(self, rewriter, agent):
        flow = build_flow()

        locations = rewriter.find_references(
            "Helper", [agent], flow.nodes, "Ask {{Helper}} and Helper"
        )

        assert [(loc.entity_type, loc.entity_id, loc.field, loc.count) for loc in locations] == [
            ("node", "if-1", "conditions[0].value1", 1),
            ("flow", None, "responseTemplate", 2),
        ]
