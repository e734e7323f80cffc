# Langfuse integration
from typing import Dict, Any, Optional
import uuid
import structlog
from langfuse import Langfuse

from agent_runtime.domain.models.scope import Scope
from agent_runtime.infrastructure.config import LangfuseSettings

logger = structlog.get_logger(__name__)


class WorkflowTracer:
    """Traces workflow runs, node steps and tool calls to Langfuse.

    Without a Langfuse client the tracer still hands out trace ids and logs,
    but sends nothing. Tracing problems are logged and never reach the run.
    """

    def __init__(self, langfuse: Optional[Langfuse] = None):
        self.langfuse = langfuse
        self._spans: Dict[str, Any] = {}

    @classmethod
    def from_settings(cls, settings: LangfuseSettings) -> "WorkflowTracer":
        if not settings.enabled:
            logger.info("Langfuse tracing disabled")
            return cls()
        return cls(Langfuse(
            public_key=settings.public_key,
            secret_key=settings.secret_key,
            host=settings.host
        ))

    @property
    def enabled(self) -> bool:
        return self.langfuse is not None

    def start_trace(self, scope: Scope) -> str:
        """Open the root span for one run and return its trace id"""

        if not self.langfuse:
            return uuid.uuid4().hex

        try:
            span = self.langfuse.start_span(
                name="agent_workflow_execution",
                input={"trigger": scope.trigger.label, "subject": scope.subject.model_dump(mode="json") if scope.subject else None},
                metadata={"actor_type": scope.actor.type, "data_scope": scope.data_scope.enabled_categories()}
            )
            span.update_trace(
                user_id=scope.actor.id,
                session_id=scope.conversation_id or f"agent_{scope.actor.id}",
                tags=["workflow", scope.trigger.type.value]
            )
            self._spans[span.trace_id] = span
            return span.trace_id
        except Exception as e:
            logger.warning("Failed to start trace", error=str(e))
            return uuid.uuid4().hex

    def end_trace(self, trace_id: Optional[str], success: bool, duration_ms: float, action_count: int) -> None:
        span = self._spans.pop(trace_id, None) if trace_id else None
        if span is None:
            return

        try:
            span.update(
                output={"success": success, "duration_ms": duration_ms, "action_count": action_count},
                level="DEFAULT" if success else "ERROR"
            )
            span.end()
        except Exception as e:
            logger.warning("Failed to end trace", trace_id=trace_id, error=str(e))

    def trace_execution(self, trace_id: Optional[str], payload: Dict[str, Any]) -> None:
        span = self._spans.get(trace_id) if trace_id else None
        if span is None:
            return

        try:
            span.update(metadata=payload)
        except Exception as e:
            logger.warning("Failed to record execution metrics", trace_id=trace_id, error=str(e))

    def trace_error(self, trace_id: Optional[str], step: str, message: str) -> None:
        logger.error("Workflow step failed", trace_id=trace_id, step=step, error=message)

        span = self._spans.get(trace_id) if trace_id else None
        if span is None:
            return

        try:
            span.update(level="ERROR", status_message=f"{step}: {message}")
        except Exception as e:
            logger.warning("Failed to record trace error", trace_id=trace_id, error=str(e))

    def start_node(self, trace_id: Optional[str], step: str, iteration: int) -> Optional[Any]:
        parent = self._spans.get(trace_id) if trace_id else None
        if parent is None:
            return None

        try:
            return parent.start_span(name=f"node:{step}", metadata={"iteration": iteration})
        except Exception as e:
            logger.warning("Failed to start node span", step=step, error=str(e))
            return None

    def end_node(self, node_span: Optional[Any], output: Dict[str, Any], error: Optional[str] = None) -> None:
        if node_span is None:
            return

        try:
            if error:
                node_span.update(output=output, level="ERROR", status_message=error)
            else:
                node_span.update(output=output)
            node_span.end()
        except Exception as e:
            logger.warning("Failed to end node span", error=str(e))

    def trace_tool_execution(
        self,
        trace_id: Optional[str],
        tool_name: str,
        parameters: Dict[str, Any],
        success: bool,
        execution_time: float,
        error: Optional[str] = None
    ) -> None:
        parent = self._spans.get(trace_id) if trace_id else None
        if parent is None:
            return

        try:
            tool_span = parent.start_span(
                name=f"tool:{tool_name}",
                input=parameters,
                metadata={"tool_name": tool_name, "execution_time": execution_time, "success": success}
            )
            if error:
                tool_span.update(level="ERROR", status_message=error)
            tool_span.end()
        except Exception as e:
            logger.warning("Failed to trace tool execution", tool_name=tool_name, error=str(e))

    def flush(self) -> None:
        if self.langfuse:
            self.langfuse.flush()
