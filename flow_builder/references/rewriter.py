"""
Reference Rewriter.

When an agent is renamed, every whole-word occurrence of its sanitized name
is rewritten in agent prompts, If-node condition operands, data store logic
and the flow response template.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..config import NodeType, get_settings
from ..exceptions import InvalidAgentNameError
from ..models import Agent, Condition, Node
from .sanitize import build_reference_pattern, sanitize_name

logger = logging.getLogger(__name__)

Replacement = Union[str, Callable[[re.Match], str]]


@dataclass
class ReferenceLocation:
    """A field holding one or more references to an agent name."""

    entity_type: str  # "agent", "node" or "flow"
    entity_id: Optional[str]
    field: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "field": self.field,
            "count": self.count,
        }


@dataclass
class RewriteResult:
    """Change-set produced by a rename. Only changed entities are listed."""

    updated_agents: List[Agent] = field(default_factory=list)
    updated_nodes: List[Node] = field(default_factory=list)
    response_template_changed: bool = False
    updated_response_template: Optional[str] = None
    total_references_updated: int = 0
    no_op: bool = False
    locations: List[ReferenceLocation] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.updated_agents or self.updated_nodes or self.response_template_changed
        )


class _Scan:
    """Applies one pattern across many fields and tallies what it touched."""

    def __init__(self, pattern: re.Pattern, replacement: Replacement):
        self.pattern = pattern
        self.replacement = replacement
        self.total = 0
        self.locations: List[ReferenceLocation] = []

    def text(
        self,
        entity_type: str,
        entity_id: Optional[str],
        field_name: str,
        value: str,
        counted: bool = True,
    ) -> str:
        if not value:
            return value

        new_value, count = self.pattern.subn(self.replacement, value)
        if count and counted:
            self.total += count
            self.locations.append(
                ReferenceLocation(entity_type, entity_id, field_name, count)
            )
        return new_value


class ReferenceRewriter:
    """
    Rewrites agent name references.

    Pure: inputs are never mutated, rewritten entities are new copies.
    """

    def __init__(self, max_name_length: Optional[int] = None):
        settings = get_settings()
        self.max_name_length = max_name_length or settings.rewrite.max_name_length

    def rewrite(
        self,
        old_name: str,
        new_name: str,
        agents: Sequence[Agent],
        nodes: Sequence[Node],
        response_template: str = "",
    ) -> RewriteResult:
        """
        Rewrite references from ``old_name`` to ``new_name``.

        Args:
            old_name: Previous display name
            new_name: New display name
            agents: Agents whose prompts may reference the name
            nodes: Flow nodes; only If and DataStore nodes carry references
            response_template: Flow response template

        Returns:
            RewriteResult with only the entities that changed
        """
        old_token = sanitize_name(old_name)
        new_token = sanitize_name(new_name)

        if old_token == new_token:
            return RewriteResult(no_op=True)
        if not new_token:
            raise InvalidAgentNameError(f"Agent name {new_name!r} has no usable characters")
        if len(new_token) > self.max_name_length:
            raise InvalidAgentNameError(
                f"Agent name exceeds {self.max_name_length} characters"
            )
        if not old_token:
            logger.debug(f"Previous agent name {old_name!r} sanitizes to nothing, skipping")
            return RewriteResult(no_op=True)

        scan = _Scan(build_reference_pattern(old_token), new_token)
        result = self._apply(scan, agents, nodes, response_template)

        logger.info(
            f"Rewrote {result.total_references_updated} references "
            f"{old_token} -> {new_token} across {len(result.updated_agents)} agents "
            f"and {len(result.updated_nodes)} nodes"
        )
        return result

    def find_references(
        self,
        name: str,
        agents: Sequence[Agent],
        nodes: Sequence[Node],
        response_template: str = "",
    ) -> List[ReferenceLocation]:
        """List every field that references ``name``, without changing anything."""
        token = sanitize_name(name)
        if not token:
            return []

        scan = _Scan(build_reference_pattern(token), lambda match: match.group(0))
        return self._apply(scan, agents, nodes, response_template).locations

    def _apply(
        self,
        scan: _Scan,
        agents: Sequence[Agent],
        nodes: Sequence[Node],
        response_template: str,
    ) -> RewriteResult:
        result = RewriteResult()

        for agent in agents:
            updated = self._rewrite_agent(scan, agent)
            if updated is not None:
                result.updated_agents.append(updated)

        for node in nodes:
            updated_node = self._rewrite_node(scan, node)
            if updated_node is not None:
                result.updated_nodes.append(updated_node)

        before = scan.total
        template = scan.text("flow", None, "responseTemplate", response_template)
        if scan.total > before:
            result.response_template_changed = True
            result.updated_response_template = template

        result.total_references_updated = scan.total
        result.locations = scan.locations
        return result

    # =========================================================================
    # Per-entity rewriting
    # =========================================================================

    def _rewrite_agent(self, scan: _Scan, agent: Agent) -> Optional[Agent]:
        before = scan.total

        text_prompt = scan.text("agent", agent.id, "textPrompt", agent.text_prompt)

        messages = []
        for m_index, message in enumerate(agent.prompt_messages):
            blocks = []
            for b_index, block in enumerate(message.prompt_blocks):
                if block.type == "plain":
                    block = replace(
                        block,
                        template=scan.text(
                            "agent",
                            agent.id,
                            f"promptMessages[{m_index}].promptBlocks[{b_index}].template",
                            block.template,
                        ),
                    )
                blocks.append(block)
            messages.append(replace(message, prompt_blocks=blocks))

        schema_fields = [
            replace(
                schema_field,
                description=scan.text(
                    "agent",
                    agent.id,
                    f"schemaFields[{index}].description",
                    schema_field.description,
                ),
            )
            for index, schema_field in enumerate(agent.schema_fields)
        ]

        if scan.total == before:
            return None

        return replace(
            agent,
            text_prompt=text_prompt,
            prompt_messages=messages,
            schema_fields=schema_fields,
        )

    def _rewrite_node(self, scan: _Scan, node: Node) -> Optional[Node]:
        before = scan.total

        if node.type == NodeType.IF:
            if_data = node.if_data
            conditions = [
                self._rewrite_condition(scan, node.id, f"conditions[{i}]", c)
                for i, c in enumerate(if_data.conditions)
            ]
            # Drafts mirror the valid list; count only the ones that are not in it
            valid_ids = {c.id for c in if_data.conditions}
            drafts = [
                self._rewrite_condition(
                    scan, node.id, f"draftConditions[{i}]", c, counted=c.id not in valid_ids
                )
                for i, c in enumerate(if_data.draft_conditions)
            ]
            drafts_changed = any(
                new.value1 != old.value1 or new.value2 != old.value2
                for new, old in zip(drafts, if_data.draft_conditions)
            )
            if scan.total == before and not drafts_changed:
                return None
            return replace(
                node,
                data=replace(if_data, conditions=conditions, draft_conditions=drafts),
            )

        if node.type == NodeType.DATA_STORE:
            store_data = node.data_store_data
            fields = [
                replace(
                    store_field,
                    logic=scan.text(
                        "node", node.id, f"fields[{index}].logic", store_field.logic
                    ),
                )
                for index, store_field in enumerate(store_data.fields)
            ]
            if scan.total == before:
                return None
            return replace(node, data=replace(store_data, fields=fields))

        return None

    @staticmethod
    def _rewrite_condition(
        scan: _Scan,
        node_id: str,
        path: str,
        condition: Condition,
        counted: bool = True,
    ) -> Condition:
        return replace(
            condition,
            value1=scan.text("node", node_id, f"{path}.value1", condition.value1, counted),
            value2=scan.text("node", node_id, f"{path}.value2", condition.value2, counted),
        )
