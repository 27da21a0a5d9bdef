"""
Tool given to an agent during a memory refinement session.

The agent uses it to review its own core memory ledger: search it, merge
exact duplicates, tighten wording, remove entries and mark entries as
constitutional. Every mutation is audited with the session id.

Two guards bound a session:

- A hard cap on mutating operations (update, delete, consolidate). Failed
  operations, searches and protects do not count.
- A circuit breaker on memory mass. When the live core token count drops
  below ``refinement_threshold`` of what it was when the session started,
  every mutation of the session is reverted and the session is terminated.

Constitutional memories can never be deleted or merged, and a protect is
never reverted.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from ..domain.entities import (
    Agent,
    AgentMemory,
    AuditEntry,
    MemoryType,
    ToolDefinition,
    utcnow,
)
from ..domain.ports import IAgentStore, IAuditLog, IMemoryStore
from ..tools.base import Tool
from .context import core_token_usage

logger = logging.getLogger(__name__)

ACTIONS = ("search", "consolidate", "update", "delete", "protect", "complete")
MUTATING_ACTIONS = ("consolidate", "update", "delete")
MAX_MUTATIONS = 10


@dataclass
class _Mutation:
    """Undo record for one successful mutation."""

    operation: str
    restore: list[AgentMemory] = field(default_factory=list)
    previous_content: dict[uuid.UUID, str] = field(default_factory=dict)
    created: list[AgentMemory] = field(default_factory=list)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class RefinementTool(Tool):
    """Memory refinement actions over one agent's core ledger.

    Usage:
        tool = RefinementTool(agent, memories, audit, agents,
                              session_id=str(uuid.uuid4()), pre_session_mass=usage)
        result = await tool.execute({"action": "search", "query": "coffee"})
    """

    def __init__(
        self,
        agent: Agent,
        memory_store: IMemoryStore,
        audit_log: IAuditLog,
        agent_store: IAgentStore,
        session_id: Optional[str] = None,
        pre_session_mass: Optional[int] = None,
        max_mutations: int = MAX_MUTATIONS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.agent = agent
        self.memory_store = memory_store
        self.audit_log = audit_log
        self.agent_store = agent_store
        self.session_id = session_id or str(uuid.uuid4())
        self.pre_session_mass = pre_session_mass
        self.max_mutations = max_mutations
        self.clock = clock

        self.stats = {"consolidated": 0, "updated": 0, "deleted": 0, "protected": 0}
        self.mutation_count = 0
        self.terminated = False
        self.completed = False
        self._mutations: list[_Mutation] = []

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="refinement",
            description=(
                "Memory refinement tool. Actions: search, consolidate, update, "
                "delete, protect, complete."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "action": {
                        "type": "string",
                        "enum": list(ACTIONS),
                        "description": "search, consolidate, update, delete, protect, or complete",
                    },
                    "query": {"type": "string", "description": "Search query (for search action)"},
                    "ids": {
                        "type": "string",
                        "description": "Comma-separated memory IDs (for consolidate)",
                    },
                    "id": {
                        "type": "string",
                        "description": "Single memory ID (for update, delete, protect)",
                    },
                    "content": {
                        "type": "string",
                        "description": "New content (for consolidate, update)",
                    },
                    "summary": {
                        "type": "string",
                        "description": "Refinement summary (for complete)",
                    },
                },
                "required": ["action"],
            },
        )

    @property
    def threshold(self) -> float:
        return self.agent.refinement_threshold

    async def execute(self, arguments: dict[str, Any]) -> dict[str, Any]:
        action = str(arguments.get("action") or "")
        logger.info(f"[Refinement] Agent {self.agent.id}: {action}")

        if self.terminated:
            return self._terminated_error()
        if action not in ACTIONS:
            return {
                "type": "error",
                "error": f"Invalid action '{action}'",
                "allowed_actions": list(ACTIONS),
            }
        if action in MUTATING_ACTIONS and self.mutation_count >= self.max_mutations:
            return {
                "type": "error",
                "error": (
                    f"Hard cap reached: at most {self.max_mutations} mutating "
                    "operations per session. Call complete to finish."
                ),
            }

        params = {k: v for k, v in arguments.items() if k != "action"}
        result = await getattr(self, f"_{action}")(**params)

        if action in MUTATING_ACTIONS and result.get("type") != "error":
            self.mutation_count += 1
            if await self._below_threshold():
                await self._rollback()
                return self._terminated_error()
        return result

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _search(self, query: Optional[str] = None, **_: Any) -> dict[str, Any]:
        if not query or not str(query).strip():
            return self._param_error("search", "query")

        matches = await self.memory_store.search_core(self.agent.id, str(query))
        results = [self._ledger_entry(m) for m in matches if not m.is_discarded]
        return {"type": "search_results", "query": query, "count": len(results), "results": results}

    async def _consolidate(
        self, ids: Optional[str] = None, content: Optional[str] = None, **_: Any
    ) -> dict[str, Any]:
        if not ids or not str(ids).strip():
            return self._param_error("consolidate", "ids")
        if not content or not str(content).strip():
            return self._param_error("consolidate", "content")

        refs = [ref.strip() for ref in str(ids).split(",") if ref.strip()]
        if len(refs) < 2:
            return {"type": "error", "error": "consolidate requires at least 2 memory IDs"}

        found: dict[uuid.UUID, AgentMemory] = {}
        for ref in refs:
            memory = await self._find(ref)
            if memory is not None:
                found.setdefault(memory.id, memory)
        memories = list(found.values())
        if not memories:
            return {"type": "error", "error": "No matching memories found"}
        if len(memories) < 2:
            return {
                "type": "error",
                "error": "consolidate needs at least 2 distinct existing memories, "
                f"found only #{memories[0].id}",
            }

        constitutional = [str(m.id) for m in memories if m.constitutional]
        if constitutional:
            return {
                "type": "error",
                "error": f"Cannot consolidate constitutional memories: {', '.join(constitutional)}",
            }

        merged = await self.memory_store.create_memory(
            AgentMemory(
                agent_id=self.agent.id,
                memory_type=MemoryType.CORE,
                content=str(content).strip(),
                created_at=min(m.created_at for m in memories),
            )
        )
        now = self.clock()
        for memory in memories:
            memory.discarded_at = now
            await self.memory_store.update_memory(memory)

        self._mutations.append(_Mutation("consolidate", restore=memories, created=[merged]))
        self.stats["consolidated"] += len(memories)
        await self._audit(
            "consolidate",
            merged=[{"id": str(m.id), "content": m.content} for m in memories],
            result={"id": str(merged.id), "content": merged.content},
        )
        return {"type": "consolidated", "merged_count": len(memories), "new_content": merged.content}

    async def _update(
        self, id: Optional[str] = None, content: Optional[str] = None, **_: Any
    ) -> dict[str, Any]:
        if not id:
            return self._param_error("update", "id")
        if not content or not str(content).strip():
            return self._param_error("update", "content")

        memory = await self._find(id)
        if memory is None:
            return self._not_found(id)

        before = memory.content
        memory.content = str(content).strip()
        await self.memory_store.update_memory(memory)

        self._mutations.append(
            _Mutation("update", restore=[memory], previous_content={memory.id: before})
        )
        self.stats["updated"] += 1
        await self._audit("update", memory_id=str(memory.id), before=before, after=memory.content)
        return {"type": "updated", "id": str(memory.id), "content": memory.content}

    async def _delete(self, id: Optional[str] = None, **_: Any) -> dict[str, Any]:
        if not id:
            return self._param_error("delete", "id")

        memory = await self._find(id)
        if memory is None:
            return self._not_found(id)
        if memory.constitutional:
            return {"type": "error", "error": f"Cannot delete constitutional memory #{id}"}

        memory.discarded_at = self.clock()
        await self.memory_store.update_memory(memory)

        self._mutations.append(_Mutation("delete", restore=[memory]))
        self.stats["deleted"] += 1
        await self._audit("delete", memory_id=str(memory.id), before=memory.content, after=None)
        return {"type": "deleted", "id": str(memory.id)}

    async def _protect(self, id: Optional[str] = None, **_: Any) -> dict[str, Any]:
        if not id:
            return self._param_error("protect", "id")

        memory = await self._find(id)
        if memory is None:
            return self._not_found(id)

        memory.protect()
        await self.memory_store.update_memory(memory)

        self.stats["protected"] += 1
        await self._audit("protect", memory_id=str(memory.id))
        return {"type": "protected", "id": str(memory.id), "content": memory.content}

    async def _complete(self, summary: Optional[str] = None, **_: Any) -> dict[str, Any]:
        if not summary or not str(summary).strip():
            return self._param_error("complete", "summary")

        if await self._below_threshold():
            reason = await self._rollback()
            return {"type": "refinement_rolled_back", "reason": reason, "stats": dict(self.stats)}

        await self.audit_log.record(
            AuditEntry(
                account_id=self.agent.account_id,
                action="memory_refinement_complete",
                agent_id=self.agent.id,
                data={
                    "agent_id": str(self.agent.id),
                    "session_id": self.session_id,
                    "summary": summary,
                    "stats": dict(self.stats),
                },
            )
        )
        await self.memory_store.create_memory(
            AgentMemory(
                agent_id=self.agent.id,
                memory_type=MemoryType.JOURNAL,
                content=f"Refinement session: {summary}",
            )
        )
        self.agent.last_refinement_at = self.clock()
        await self.agent_store.update_agent(self.agent)
        self.completed = True

        return {"type": "refinement_complete", "summary": summary, "stats": dict(self.stats)}

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    async def current_mass(self) -> int:
        return core_token_usage(await self.memory_store.list_core(self.agent.id))

    async def _below_threshold(self) -> bool:
        if self.pre_session_mass is None:
            return False
        return await self.current_mass() < self.pre_session_mass * self.threshold

    async def _rollback(self) -> str:
        """Revert every mutation of the session, newest first, and terminate."""
        current = await self.current_mass()
        operations = self._describe_operations()

        for mutation in reversed(self._mutations):
            for memory in mutation.created:
                memory.discarded_at = self.clock()
                await self.memory_store.update_memory(memory)
            for memory in mutation.restore:
                if memory.id in mutation.previous_content:
                    memory.content = mutation.previous_content[memory.id]
                if mutation.operation != "update":
                    memory.discarded_at = None
                await self.memory_store.update_memory(memory)

        reason = (
            f"Core memory fell from {self.pre_session_mass} to {current} tokens, "
            f"below the {self.threshold:.0%} retention threshold"
        )
        logger.warning(f"[Refinement] Agent {self.agent.id} rolled back: {reason}")

        await self._audit(
            "rollback",
            pre_session_mass=self.pre_session_mass,
            post_session_mass=current,
            threshold=self.threshold,
            operations=operations,
            stats=dict(self.stats),
        )
        await self.memory_store.create_memory(
            AgentMemory(
                agent_id=self.agent.id,
                memory_type=MemoryType.JOURNAL,
                content=(
                    f"Refinement session rolled back. Core memory went from "
                    f"{self.pre_session_mass} to {current} tokens ({operations}), "
                    f"below the {self.threshold:.0%} retention threshold. "
                    "All changes from the session were reverted."
                ),
            )
        )

        self._mutations.clear()
        self.terminated = True
        return reason

    def _describe_operations(self) -> str:
        counts = {"consolidate": 0, "update": 0, "delete": 0}
        for mutation in self._mutations:
            counts[mutation.operation] += 1
        parts = [
            _plural(counts["delete"], "deletion"),
            _plural(counts["update"], "update"),
            _plural(counts["consolidate"], "consolidation"),
        ]
        return ", ".join(part for part in parts if not part.startswith("0 ")) or "no operations"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _find(self, ref: Any) -> Optional[AgentMemory]:
        try:
            memory_id = uuid.UUID(str(ref).strip().lstrip("#"))
        except ValueError:
            return None
        memory = await self.memory_store.get_memory(memory_id)
        if memory is None or memory.agent_id != self.agent.id:
            return None
        if not memory.is_core or memory.is_discarded:
            return None
        return memory

    async def _audit(self, operation: str, **data: Any) -> None:
        await self.audit_log.record(
            AuditEntry(
                account_id=self.agent.account_id,
                action=f"memory_refinement_{operation}",
                agent_id=self.agent.id,
                data={
                    "agent_id": str(self.agent.id),
                    "operation": operation,
                    "session_id": self.session_id,
                    **data,
                },
            )
        )

    @staticmethod
    def _ledger_entry(memory: AgentMemory) -> dict[str, Any]:
        return {
            "id": str(memory.id),
            "content": memory.content,
            "created_at": memory.created_at.strftime("%Y-%m-%d"),
            "tokens": memory.token_estimate,
            "constitutional": memory.constitutional,
        }

    @staticmethod
    def _param_error(action: str, param: str) -> dict[str, Any]:
        return {"type": "error", "error": f"{param} is required for {action}"}

    @staticmethod
    def _not_found(ref: Any) -> dict[str, Any]:
        return {"type": "error", "error": f"Memory #{ref} not found"}

    def _terminated_error(self) -> dict[str, Any]:
        return {
            "type": "error",
            "error": (
                "Refinement session terminated: core memory dropped below the "
                "retention threshold and all changes were rolled back."
            ),
        }
