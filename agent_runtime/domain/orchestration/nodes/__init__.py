from .act import ActNode
from .base_node import WorkflowNode
from .loop_check import LoopCheckNode
from .observe import ObserveNode
from .reason import ReasonNode
