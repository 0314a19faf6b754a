from abc import ABC

from pydantic import BaseModel, ConfigDict

from aiguard.ai.client import DeepSeekClient


class BaseAgent(BaseModel, ABC):
    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)

    client: DeepSeekClient
