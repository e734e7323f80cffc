import pytest
from pydantic import ValidationError

from agent_runtime.domain.orchestration.config import WorkflowConfig
from agent_runtime.infrastructure.config import Settings


def test_workflow_config_defaults():
    config = WorkflowConfig()

    assert config.max_iterations == 3
    assert config.heat_cost_per_iteration == 5
    assert config.enable_looping is True
    assert config.enable_tool_calling is True
    assert config.tool_execution_timeout == 30000
    assert config.max_tool_calls_per_reasoning == 5
    assert config.tool_timeout_seconds == 30.0


def test_workflow_config_accepts_both_spellings():
    camel = WorkflowConfig.model_validate({"maxIterations": 5, "enableLooping": False})
    snake = WorkflowConfig(max_iterations=5, enable_looping=False)

    assert camel == snake
    assert camel.model_dump(by_alias=True)["maxIterations"] == 5


def test_workflow_config_rejects_unknown_options():
    with pytest.raises(ValidationError):
        WorkflowConfig.model_validate({"maxIterationz": 2})


@pytest.mark.parametrize("options", [
    {"maxIterations": 0},
    {"heatCostPerIteration": -1},
    {"toolExecutionTimeout": 0},
    {"maxToolCallsPerReasoning": -1},
])
def test_workflow_config_validation(options):
    with pytest.raises(ValidationError):
        WorkflowConfig.model_validate(options)


def test_workflow_config_is_frozen():
    config = WorkflowConfig()

    with pytest.raises(ValidationError):
        config.max_iterations = 10


def test_settings_defaults(monkeypatch):
    for name in ("DATABASE_URL", "LANGFUSE_PUBLIC_KEY", "LANGFUSE_SECRET_KEY", "WORKFLOW_MAX_ITERATIONS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.storage.database_url is None
    assert settings.langfuse.enabled is False
    assert settings.workflow == WorkflowConfig()
    assert settings.server.port == 8000


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/agents")
    monkeypatch.setenv("LANGFUSE_PUBLIC_KEY", "pk")
    monkeypatch.setenv("LANGFUSE_SECRET_KEY", "sk")
    monkeypatch.setenv("WORKFLOW_MAX_ITERATIONS", "5")
    monkeypatch.setenv("WORKFLOW_ENABLE_LOOPING", "false")
    monkeypatch.setenv("WORKFLOW_TOOL_EXECUTION_TIMEOUT", "1500")
    monkeypatch.setenv("SIMILARITY_THRESHOLD", "0.7")
    monkeypatch.setenv("API_PORT", "9000")

    settings = Settings.from_env()

    assert settings.storage.database_url == "postgresql://localhost/agents"
    assert settings.storage.similarity_threshold == 0.7
    assert settings.langfuse.enabled is True
    assert settings.workflow.max_iterations == 5
    assert settings.workflow.enable_looping is False
    assert settings.workflow.tool_timeout_seconds == 1.5
    assert settings.server.port == 9000


def test_blank_database_url_means_in_memory(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "   ")

    assert Settings.from_env().storage.database_url is None
