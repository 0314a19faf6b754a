from aiguard.ai.agents.base import BaseAgent
from aiguard.ai.agents.contract import ContractAgent, extract_json_object

__all__ = ["BaseAgent", "ContractAgent", "extract_json_object"]
