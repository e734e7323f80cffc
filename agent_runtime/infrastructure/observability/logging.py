import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "agent-runtime"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_workflow_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_workflow_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the active run's trace and actor ids onto every entry"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    context = structlog.contextvars.get_contextvars()
    for key in ("trace_id", "actor_id"):
        if key in context and key not in event_dict:
            event_dict[key] = context[key]

    return event_dict


class WorkflowLogger:
    """Structured events for workflow runs"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_workflow_event(
        self,
        event_type: str,
        actor_id: str,
        trigger: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.logger.info(
            "workflow_event",
            event_type=event_type,
            actor_id=actor_id,
            trigger=trigger,
            data=data or {},
            **kwargs
        )

    def log_workflow_transition(
        self,
        actor_id: str,
        from_step: str,
        to_step: str,
        iteration: int,
        duration_ms: Optional[float] = None
    ):
        self.logger.info(
            "workflow_transition",
            actor_id=actor_id,
            from_step=from_step,
            to_step=to_step,
            iteration=iteration,
            duration_ms=duration_ms
        )

    def log_tool_execution(
        self,
        tool_name: str,
        agent_id: str,
        input_data: Dict[str, Any],
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        self.logger.info(
            "tool_execution",
            tool_name=tool_name,
            agent_id=agent_id,
            input_data=input_data,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_memory_operation(
        self,
        agent_id: str,
        operation: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.logger.info(
            "memory_operation",
            agent_id=agent_id,
            operation=operation,
            details=details or {}
        )


workflow_logger = WorkflowLogger("agent_runtime")


class MetricsCollector:
    """Collect run counters and latencies"""

    def __init__(self):
        self.metrics: Dict[str, Any] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        key = f"latency.{operation}"
        if key not in self.metrics:
            self.metrics[key] = {
                "count": 0,
                "sum": 0.0,
                "min": float('inf'),
                "max": 0.0
            }

        entry = self.metrics[key]
        entry["count"] += 1
        entry["sum"] += duration_ms
        entry["min"] = min(entry["min"], duration_ms)
        entry["max"] = max(entry["max"], duration_ms)

        workflow_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.metrics[name] = self.metrics.get(name, 0) + value

        workflow_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_counter(self, name: str) -> int:
        value = self.metrics.get(name, 0)
        return value if isinstance(value, int) else 0

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary = {}
        for key, value in self.metrics.items():
            if isinstance(value, dict) and "count" in value:
                summary[key] = {
                    "count": value["count"],
                    "avg": value["sum"] / value["count"] if value["count"] > 0 else 0,
                    "min": value["min"] if value["min"] != float('inf') else 0,
                    "max": value["max"]
                }
            else:
                summary[key] = value

        return summary


# Process default; orchestrators accept their own collector
metrics = MetricsCollector()
