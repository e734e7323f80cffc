from typing import Any, Callable, Awaitable, Dict, Iterable, List, Optional, Union
import time
from datetime import datetime
import structlog
from langchain_core.language_models import BaseChatModel
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph

from agent_runtime.domain.memory.memory_manager import MemoryManager
from agent_runtime.domain.models.scope import Scope
from agent_runtime.domain.models.workflow_state import (
    ExecutionResult,
    LoopState,
    WorkflowError,
    WorkflowResult,
    WorkflowState,
    WorkflowStep,
)
from agent_runtime.domain.orchestration.config import WorkflowConfig
from agent_runtime.domain.orchestration.core.transitions import TRANSITIONS, check_transition
from agent_runtime.domain.orchestration.nodes.act import ActNode
from agent_runtime.domain.orchestration.nodes.base_node import WorkflowNode
from agent_runtime.domain.orchestration.nodes.loop_check import LoopCheckNode
from agent_runtime.domain.orchestration.nodes.observe import ObserveNode
from agent_runtime.domain.orchestration.nodes.reason import ReasonNode
from agent_runtime.domain.tool.tool_registry import ToolRegistry
from agent_runtime.domain.world.world_data_source import WorldDataSource
from agent_runtime.infrastructure.observability.langfuse_tracing import WorkflowTracer
from agent_runtime.infrastructure.observability.logging import MetricsCollector, metrics as default_metrics, workflow_logger

logger = structlog.get_logger(__name__)

NODE_STEPS = (WorkflowStep.OBSERVE, WorkflowStep.REASON, WorkflowStep.ACT, WorkflowStep.LOOP_CHECK)

ConfigInput = Union[WorkflowConfig, Dict[str, Any], None]


def _as_config(config: ConfigInput) -> WorkflowConfig:
    if config is None:
        return WorkflowConfig()
    if isinstance(config, WorkflowConfig):
        return config
    return WorkflowConfig.model_validate(config)


def route_next_step(state: WorkflowState) -> str:
    step = state["step"]
    return END if step == WorkflowStep.COMPLETE else step.value


class WorkflowOrchestrator:
    """Runs Observe > Reason > Act > Loop as a LangGraph state machine"""

    def __init__(
        self,
        nodes: Iterable[WorkflowNode],
        config: ConfigInput = None,
        tracer: Optional[WorkflowTracer] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.config = _as_config(config)
        self.tracer = tracer or WorkflowTracer()
        self.metrics = metrics or default_metrics
        self.nodes: Dict[WorkflowStep, WorkflowNode] = {node.step: node for node in nodes}

        missing = [step.value for step in NODE_STEPS if step not in self.nodes]
        if missing:
            raise ValueError(f"Missing nodes for steps: {', '.join(missing)}")

        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Compile the graph: one node per step, edges from the transition table"""

        workflow = StateGraph(WorkflowState)

        for step in NODE_STEPS:
            workflow.add_node(step.value, self._guard(self.nodes[step]))

        workflow.add_edge(START, WorkflowStep.OBSERVE.value)

        for step in NODE_STEPS:
            path_map = {
                (END if target == WorkflowStep.COMPLETE else target.value):
                (END if target == WorkflowStep.COMPLETE else target.value)
                for target in TRANSITIONS[step]
            }
            workflow.add_conditional_edges(step.value, route_next_step, path_map)

        return workflow.compile()

    def _guard(self, node: WorkflowNode) -> Callable[[WorkflowState], Awaitable[Dict[str, Any]]]:
        """Wrap a node so any failure ends the run with an error entry"""

        async def run(state: WorkflowState) -> Dict[str, Any]:
            step = node.step
            trace_id = state["metadata"].get("trace_id")
            iteration = state["loop"].iteration
            node_span = self.tracer.start_node(trace_id, step.value, iteration)
            start_time = time.perf_counter()
            error_count = len(state["errors"])

            try:
                update = dict(await node.execute(state))
                update["step"] = check_transition(step, update.get("step"))
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.error("Node failed", step=step.value, iteration=iteration, error=message)
                self.tracer.end_node(node_span, {}, message)
                return self._fail(state, step, message)

            errors = update.get("errors")
            if errors is not None and len(errors) > error_count:
                update["step"] = WorkflowStep.COMPLETE
                self.tracer.trace_error(trace_id, step.value, errors[-1].error)

            duration_ms = (time.perf_counter() - start_time) * 1000
            workflow_logger.log_workflow_transition(
                state["scope"].actor.id, step.value, update["step"].value, iteration, duration_ms
            )
            self.tracer.end_node(node_span, {"next_step": update["step"].value, "duration_ms": duration_ms})
            return update

        return run

    def _fail(self, state: WorkflowState, step: WorkflowStep, message: str) -> Dict[str, Any]:
        self.tracer.trace_error(state["metadata"].get("trace_id"), step.value, message)
        errors: List[WorkflowError] = list(state["errors"])
        errors.append(WorkflowError(step=step.value, error=message))
        return {"step": WorkflowStep.COMPLETE, "errors": errors}

    def initialize_state(self, scope: Scope, trace_id: str) -> WorkflowState:
        return {
            "scope": scope,
            "actor_identity": {},
            "actor_morale": None,
            "actor_coherence": None,
            "actor_heat": None,
            "actor_rage": None,
            "actor_community_id": None,
            "step": WorkflowStep.OBSERVE,
            "observation": None,
            "reasoning": None,
            "action": None,
            "result": None,
            "loop": LoopState(
                iteration=1,
                max_iterations=self.config.max_iterations,
                heat_cost_per_iteration=self.config.heat_cost_per_iteration,
            ),
            "start_time": datetime.utcnow(),
            "executed_actions": [],
            "errors": [],
            "metadata": {
                "config": self.config.model_dump(),
                "trace_id": trace_id,
                "tool_cache": {},
                "next_plan_step": None,
            },
        }

    async def execute(self, scope: Scope) -> ExecutionResult:
        start_time = time.perf_counter()
        trace_id = self.tracer.start_trace(scope)
        state = self.initialize_state(scope, trace_id)

        with structlog.contextvars.bound_contextvars(trace_id=trace_id, actor_id=scope.actor.id):
            workflow_logger.log_workflow_event("started", scope.actor.id, scope.trigger.label)
            logger.debug("Workflow scope", summary=scope.summary())

            try:
                async for values in self.workflow.astream(
                    state,
                    config={"recursion_limit": 4 * self.config.max_iterations + 1},
                    stream_mode="values"
                ):
                    state = values
            except GraphRecursionError as e:
                logger.error("Workflow exceeded step limit", error=str(e))
                state = {
                    **state,
                    **self._fail(state, state["step"], f"Recursion limit reached: {e}"),
                }

            result = self._build_result(state, (time.perf_counter() - start_time) * 1000)

            self.metrics.increment_counter("workflow.runs")
            self.metrics.increment_counter("workflow.iterations", result.iterations)
            self.metrics.increment_counter("workflow.actions", len(result.executed_actions))
            if not result.success:
                self.metrics.increment_counter("workflow.failures")
            self.metrics.record_latency("workflow.execute", result.duration)

            self.tracer.trace_execution(trace_id, {
                "config": self.config.model_dump(),
                "iterations": result.iterations,
                "completion_reason": result.completion_reason,
                "executed_actions": result.executed_actions,
                "errors": result.errors,
                "heat_cost": result.heat_cost,
            })
            self.tracer.end_trace(trace_id, result.success, result.duration, len(result.executed_actions))

            workflow_logger.log_workflow_event(
                "completed",
                scope.actor.id,
                scope.trigger.label,
                data={
                    "success": result.success,
                    "duration_ms": result.duration,
                    "iterations": result.iterations,
                    "actions": len(result.executed_actions),
                    "errors": result.errors,
                }
            )

        return result

    def _build_result(self, state: WorkflowState, duration_ms: float) -> ExecutionResult:
        loop: LoopState = state["loop"]
        errors: List[WorkflowError] = state["errors"]

        results: List[WorkflowResult] = [entry.result for entry in loop.history if entry.result is not None]
        # The last result is missing from history when the run ended before loop-check
        last = state.get("result")
        if last is not None and last not in results:
            results.append(last)
        heat_cost = sum(r.heat_cost for r in results) + loop.heat_cost_per_iteration * (loop.iteration - 1)

        completion_reason = state["metadata"].get("completion_reason")
        if completion_reason is None and errors:
            completion_reason = "error"

        return ExecutionResult(
            success=len(errors) == 0,
            state=dict(state),
            duration=duration_ms,
            executed_actions=list(state["executed_actions"]),
            errors=[e.error for e in errors],
            iterations=loop.iteration,
            completion_reason=completion_reason,
            heat_cost=heat_cost,
        )


def create_orchestrator(
    config: ConfigInput = None,
    *,
    world: WorldDataSource,
    model: BaseChatModel,
    tools: Optional[ToolRegistry] = None,
    memory_manager: Optional[MemoryManager] = None,
    tracer: Optional[WorkflowTracer] = None,
    metrics: Optional[MetricsCollector] = None
) -> WorkflowOrchestrator:
    """Orchestrator wired with the default Observe / Reason / Act / Loop-check nodes"""

    config = _as_config(config)
    tracer = tracer or WorkflowTracer()
    tools = tools or ToolRegistry(tracer=tracer)

    nodes = [
        ObserveNode(world),
        ReasonNode(model, memory_manager, tools, config),
        ActNode(tools, config, memory_manager),
        LoopCheckNode(config),
    ]
    return WorkflowOrchestrator(nodes, config=config, tracer=tracer, metrics=metrics)


async def execute_workflow(scope: Scope, config: ConfigInput = None, **collaborators) -> ExecutionResult:
    """Build an orchestrator and run one scope through it"""

    orchestrator = create_orchestrator(config, **collaborators)
    return await orchestrator.execute(scope)
