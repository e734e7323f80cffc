from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WorkflowConfig(BaseModel):
    """Options recognized by the workflow orchestrator"""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    max_iterations: int = Field(3, ge=1, description="Hard ceiling on Observe > Act cycles")
    heat_cost_per_iteration: int = Field(5, ge=0, description="Heat charged per additional iteration")
    enable_looping: bool = Field(True, description="When false, a run stops after one iteration")
    enable_tool_calling: bool = Field(True, description="Gates tool use in Reason and Act")
    tool_execution_timeout: int = Field(30000, gt=0, description="Per tool call deadline in ms")
    max_tool_calls_per_reasoning: int = Field(5, ge=0, description="Tool calls allowed in one Reason step")

    @property
    def tool_timeout_seconds(self) -> float:
        return self.tool_execution_timeout / 1000
