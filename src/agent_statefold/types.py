"""Authored and derived configuration types."""

import asyncio
import inspect
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union


ContentSource = Union[str, Callable[[], Union[str, Awaitable[str]]]]
Accessor = Callable[[], Awaitable[str]]


def as_accessor(content: ContentSource) -> Accessor:
    """
    Normalize literal or callable content into one async accessor.

    Coroutine functions are awaited directly. Plain callables run in a
    worker thread so a blocking implementation can still be timed out;
    if they hand back an awaitable it is awaited as well.
    """
    if not callable(content):
        text = "" if content is None else str(content)

        async def literal() -> str:
            return text

        return literal

    if inspect.iscoroutinefunction(content):
        async def coroutine_accessor() -> str:
            return _as_text(await content())

        return coroutine_accessor

    async def threaded_accessor() -> str:
        value = await asyncio.to_thread(content)
        if inspect.isawaitable(value):
            value = await value
        return _as_text(value)

    return threaded_accessor


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class Context:
    """
    A fragment of background knowledge a state may inject.

    ``content`` is either literal text or a zero-argument function (sync or
    async) evaluated at read time. Higher ``priority`` wins when the token
    budget is tight.
    """
    key: str
    description: str = ""
    content: ContentSource = ""
    priority: int = 0
    _accessor: Accessor = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self._accessor = as_accessor(self.content)

    @property
    def is_dynamic(self) -> bool:
        return callable(self.content)

    async def read(self) -> str:
        """Produce the current text of this context."""
        return await self._accessor()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Context":
        return cls(
            key=data["key"],
            description=data.get("description", ""),
            content=data.get("content", ""),
            priority=int(data.get("priority", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "description": self.description,
            "content": self.content,
            "priority": self.priority,
        }


@dataclass
class Tool:
    """A callable capability exposed to the model, in function-calling form."""
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Tool":
        """Accept both the flat form and ``{"type": "function", "function": {...}}``."""
        if "function" in data:
            data = data["function"]
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            parameters=dict(data.get("parameters") or {"type": "object", "properties": {}}),
        )

    def to_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


_PARAMETER_ALIASES = {
    "maxTokens": "max_tokens",
    "topP": "top_p",
    "frequencyPenalty": "frequency_penalty",
    "presencePenalty": "presence_penalty",
    "apiKey": "api_key",
}


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


@dataclass(frozen=True)
class ModelParameters:
    """Per-state model call parameters. Unset fields inherit."""
    provider: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    api_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ModelParameters":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {}
        for name, value in data.items():
            name = _PARAMETER_ALIASES.get(name, name)
            if name in known:
                values[name] = value
        return cls(**values)

    def merged_over(self, base: "ModelParameters") -> "ModelParameters":
        """Return a copy where every field set here overrides ``base``."""
        values = {}
        for f in fields(self):
            own = getattr(self, f.name)
            values[f.name] = own if _is_set(own) else getattr(base, f.name)
        return ModelParameters(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if _is_set(getattr(self, f.name))
        }


@dataclass
class GuardContext:
    """What a guard sees when asked whether a state may be entered or left."""
    user_query: str
    metadata: Dict[str, Any] = field(default_factory=dict)


ACTION_FALLBACK_STATE = "fallback_state"
ACTION_CUSTOM_RESPONSE = "custom_response"


@dataclass
class GuardResult:
    """
    Outcome of a guard evaluation.

    A denial may say what to do instead:
    - ``alternative_action="fallback_state"``: answer the turn from the leaf
      named by ``fallback_state`` (a key or a ``"a > b"`` path)
    - ``alternative_action="custom_response"``: reply with ``custom_message``
    """
    allowed: bool
    message: Optional[str] = None
    alternative_action: Optional[str] = None
    fallback_state: Optional[str] = None
    custom_message: Optional[str] = None


Guard = Callable[[GuardContext], Any]


@dataclass
class StateNode:
    """
    One node of the authored state hierarchy.

    A node with children is a branch and is never selected directly; a node
    without children (or with an empty list) is a leaf.
    """
    key: str
    description: str = ""
    prompt: Optional[str] = None
    contexts: List[str] = field(default_factory=list)
    tools: List[str] = field(default_factory=list)
    model_parameters: Optional[ModelParameters] = None
    on_enter: Optional[Guard] = None
    on_exit: Optional[Guard] = None
    children: List["StateNode"] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Convert dicts to proper config objects."""
        if isinstance(self.model_parameters, Mapping):
            self.model_parameters = ModelParameters.from_dict(self.model_parameters)
        self.contexts = list(self.contexts or [])
        self.tools = list(self.tools or [])
        self.children = [
            StateNode.from_dict(c) if isinstance(c, Mapping) else c
            for c in (self.children or [])
        ]
        self.metadata = dict(self.metadata or {})

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateNode":
        params = (
            data.get("model_parameters")
            or data.get("llm_config")
            or data.get("llmConfig")
        )
        return cls(
            key=data["key"],
            description=data.get("description", ""),
            prompt=data.get("prompt"),
            contexts=data.get("contexts") or [],
            tools=data.get("tools") or [],
            model_parameters=ModelParameters.from_dict(params) if params else None,
            on_enter=data.get("on_enter"),
            on_exit=data.get("on_exit"),
            children=data.get("children") or [],
            metadata=data.get("metadata") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form. Guards are code-only and are left out."""
        data: Dict[str, Any] = {"key": self.key, "description": self.description}
        if self.prompt:
            data["prompt"] = self.prompt
        if self.contexts:
            data["contexts"] = list(self.contexts)
        if self.tools:
            data["tools"] = list(self.tools)
        if self.model_parameters and self.model_parameters.to_dict():
            data["model_parameters"] = self.model_parameters.to_dict()
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        if self.children:
            data["children"] = [c.to_dict() for c in self.children]
        return data


@dataclass(frozen=True)
class ResolvedState:
    """A leaf state with everything inherited from its ancestors folded in."""
    key: str
    description: str
    full_prompt: str
    contexts: Tuple[Context, ...]
    tools: Tuple[Tool, ...]
    model_parameters: ModelParameters
    path: Tuple[str, ...]
    on_enter: Optional[Guard] = None
    on_exit: Optional[Guard] = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    is_leaf: bool = True

    @property
    def path_label(self) -> str:
        return " > ".join(self.path)

    @property
    def depth(self) -> int:
        return len(self.path)

    def context_keys(self) -> List[str]:
        return [c.key for c in self.contexts]

    def tool_names(self) -> List[str]:
        return [t.name for t in self.tools]

    def tool_schemas(self) -> List[Dict[str, Any]]:
        return [t.to_schema() for t in self.tools]


@dataclass(frozen=True)
class StateSummary:
    """Minimal projection of a state, handed to intent selection."""
    key: str
    description: str
    path: Tuple[str, ...]
    is_leaf: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "description": self.description,
            "path": list(self.path),
            "is_leaf": self.is_leaf,
        }
