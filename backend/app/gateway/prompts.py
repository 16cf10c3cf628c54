"""Prompt and resource registries backing prompts/* and resources/*."""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from models.tools import PromptArgument

from .errors import InvalidParamsError

logger = logging.getLogger(__name__)


@dataclass
class Prompt:
    name: str
    description: str
    template: str
    arguments: list[PromptArgument] = field(default_factory=list)
    defaults: dict[str, str] = field(default_factory=dict)
    result_description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [a.model_dump() for a in self.arguments],
        }

    def render(self, arguments: dict[str, str]) -> dict:
        missing = [a.name for a in self.arguments if a.required and not arguments.get(a.name)]
        if missing:
            raise InvalidParamsError(
                f"Missing required prompt argument(s): {', '.join(missing)}",
                data={"prompt": self.name, "missing": missing},
            )
        values = {a.name: arguments.get(a.name) or self.defaults.get(a.name, "") for a in self.arguments}
        return {
            "description": self.result_description or self.description,
            "messages": [
                {
                    "role": "user",
                    "content": {"type": "text", "text": self.template.format(**values)},
                }
            ],
        }


class PromptRegistry:
    def __init__(self, prompts: Iterable[Prompt] = ()):
        self._prompts: dict[str, Prompt] = {p.name.lower(): p for p in prompts}

    def register(self, prompt: Prompt) -> None:
        self._prompts[prompt.name.lower()] = prompt

    def list_prompts(self) -> list[dict]:
        return [p.to_dict() for p in self._prompts.values()]

    def get(self, name: str, arguments: dict[str, str]) -> dict:
        # prompt names are matched case-insensitively
        prompt = self._prompts.get(name.lower())
        if prompt is None:
            raise InvalidParamsError(f"Unknown prompt: {name}", data={"available": self.names})
        return prompt.render(arguments)

    @property
    def names(self) -> list[str]:
        return [p.name for p in self._prompts.values()]


@dataclass
class Resource:
    uri: str
    name: str
    description: str = ""
    mime_type: str = "application/json"
    reader: Optional[Callable[[], Any]] = None

    def to_dict(self) -> dict:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


class ResourceRegistry:
    """An empty registry is valid: resources/list must answer even with nothing to offer."""

    def __init__(self, resources: Iterable[Resource] = ()):
        self._resources: dict[str, Resource] = {r.uri: r for r in resources}

    def register(self, resource: Resource) -> None:
        self._resources[resource.uri] = resource

    def list_resources(self) -> list[dict]:
        return [r.to_dict() for r in self._resources.values()]

    def read(self, uri: str) -> dict:
        resource = self._resources.get(uri)
        if resource is None or resource.reader is None:
            raise InvalidParamsError(f"Unknown resource: {uri}")
        content = resource.reader()
        text = content if isinstance(content, str) else json.dumps(content, indent=2, default=str)
        return {"contents": [{"uri": uri, "mimeType": resource.mime_type, "text": text}]}
