"""Flattening of the inheritable state tree into resolved leaf states."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union
)

import structlog

from ..errors import CyclicTreeError, TreeDepthError
from ..types import (
    Context,
    Guard,
    ModelParameters,
    ResolvedState,
    StateNode,
    StateSummary,
    Tool,
)

logger = structlog.get_logger(__name__)

DEFAULT_MAX_DEPTH = 64
PROMPT_SEPARATOR = "\n\n"
PATH_SEPARATOR = ">"

T = TypeVar("T")


@dataclass(frozen=True)
class Resolution:
    """Everything the resolver derives from one configuration."""
    leaves: Tuple[ResolvedState, ...]
    flat_contexts: Mapping[str, Context]
    flat_tools: Mapping[str, Tool]
    states: Tuple[StateSummary, ...] = ()


@dataclass(frozen=True)
class _Frame:
    """Inheritance accumulated from the roots down to ``node``'s parent."""
    node: StateNode
    path: Tuple[str, ...]
    prompts: Tuple[str, ...] = ()
    context_keys: Tuple[str, ...] = ()
    tool_names: Tuple[str, ...] = ()
    parameters: ModelParameters = field(default_factory=ModelParameters)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    on_enter: Optional[Guard] = None
    on_exit: Optional[Guard] = None
    lineage: FrozenSet[int] = frozenset()


def resolve_tree(
    tree: Sequence[StateNode],
    contexts: Iterable[Context],
    tools: Iterable[Tool],
    default_model_parameters: Optional[ModelParameters] = None,
    max_depth: int = DEFAULT_MAX_DEPTH
) -> Resolution:
    """
    Resolve every leaf of ``tree``.

    Traversal is depth-first with an explicit stack. Each frame carries its
    own copy of the inherited prompts, context keys, tool names, model
    parameters and guards, so sibling branches never see each other's data.
    Leaf data is applied last: the leaf prompt closes ``full_prompt`` and
    leaf model parameters override every ancestor.

    Unknown context or tool references are dropped with a warning.

    Args:
        tree: Root state nodes
        contexts: Every authored context
        tools: Every authored tool
        default_model_parameters: Fallback for fields no node sets
        max_depth: Deepest allowed nesting (roots are depth 1)

    Returns:
        Resolution with leaves in depth-first order

    Raises:
        TreeDepthError: a branch nests deeper than ``max_depth``
        CyclicTreeError: a node is its own ancestor
    """
    flat_contexts = _index(contexts, lambda c: c.key, "context")
    flat_tools = _index(tools, lambda t: t.name, "tool")
    defaults = default_model_parameters or ModelParameters()

    leaves: List[ResolvedState] = []
    states: List[StateSummary] = []

    stack = [
        _Frame(node=root, path=(root.key,), parameters=defaults)
        for root in reversed(list(tree or []))
    ]

    while stack:
        frame = stack.pop()
        node = frame.node

        if len(frame.path) > max_depth:
            raise TreeDepthError(
                f"State tree exceeds maximum depth {max_depth} at "
                f"'{' > '.join(frame.path[:3])} > ... > {frame.path[-1]}'",
                path=frame.path,
            )
        if id(node) in frame.lineage:
            raise CyclicTreeError(
                f"State '{node.key}' is its own ancestor at '{' > '.join(frame.path)}'",
                path=frame.path,
            )

        frame = _apply(frame, node)
        states.append(StateSummary(
            key=node.key,
            description=node.description,
            path=frame.path,
            is_leaf=node.is_leaf,
        ))

        if node.is_leaf:
            leaves.append(_emit_leaf(frame, flat_contexts, flat_tools))
            continue

        lineage = frame.lineage | {id(node)}
        for child in reversed(node.children):
            stack.append(_Frame(
                node=child,
                path=frame.path + (child.key,),
                prompts=frame.prompts,
                context_keys=frame.context_keys,
                tool_names=frame.tool_names,
                parameters=frame.parameters,
                metadata=frame.metadata,
                on_enter=frame.on_enter,
                on_exit=frame.on_exit,
                lineage=lineage,
            ))

    return Resolution(
        leaves=tuple(leaves),
        flat_contexts=MappingProxyType(flat_contexts),
        flat_tools=MappingProxyType(flat_tools),
        states=tuple(states),
    )


def _apply(frame: _Frame, node: StateNode) -> _Frame:
    """Fold ``node``'s own declarations into the inherited accumulator."""
    prompts = frame.prompts + ((node.prompt,) if node.prompt else ())
    parameters = frame.parameters
    if node.model_parameters is not None:
        parameters = node.model_parameters.merged_over(parameters)
    metadata = frame.metadata
    if node.metadata:
        metadata = {**frame.metadata, **node.metadata}

    return _Frame(
        node=node,
        path=frame.path,
        prompts=prompts,
        context_keys=frame.context_keys + tuple(node.contexts),
        tool_names=frame.tool_names + tuple(node.tools),
        parameters=parameters,
        metadata=metadata,
        on_enter=node.on_enter or frame.on_enter,
        on_exit=node.on_exit or frame.on_exit,
        lineage=frame.lineage,
    )


def _emit_leaf(
    frame: _Frame,
    flat_contexts: Mapping[str, Context],
    flat_tools: Mapping[str, Tool]
) -> ResolvedState:
    label = " > ".join(frame.path)

    contexts = _lookup(frame.context_keys, flat_contexts, "context", label)
    # Stable sort keeps root-to-leaf declaration order among equal priorities
    contexts.sort(key=lambda c: c.priority, reverse=True)
    tools = _lookup(frame.tool_names, flat_tools, "tool", label)

    node = frame.node
    return ResolvedState(
        key=node.key,
        description=node.description,
        full_prompt=PROMPT_SEPARATOR.join(frame.prompts),
        contexts=tuple(contexts),
        tools=tuple(tools),
        model_parameters=frame.parameters,
        path=frame.path,
        on_enter=frame.on_enter,
        on_exit=frame.on_exit,
        metadata=MappingProxyType(dict(frame.metadata)),
    )


def _lookup(keys: Sequence[str], table: Mapping[str, T], kind: str, label: str) -> List[T]:
    found: List[T] = []
    seen = set()
    for key in keys:
        if key in seen:
            continue
        seen.add(key)
        item = table.get(key)
        if item is None:
            logger.warning(f"Unknown {kind} reference dropped", state=label, key=key)
            continue
        found.append(item)
    return found


def _index(items: Iterable[T], key_of: Callable[[T], str], kind: str) -> Dict[str, T]:
    table: Dict[str, T] = {}
    for item in items or []:
        key = key_of(item)
        if key in table:
            logger.warning(f"Duplicate {kind} definition, keeping the last one", key=key)
        table[key] = item
    return table


class StateResolver:
    """
    Resolves the state tree once and answers lookups against the result.

    Usage:
        resolver = StateResolver(states, contexts, tools, ModelParameters(
            provider="openai", model="gpt-4o-mini"
        ))
        state = resolver.get_leaf_by_key("react_help")
        candidates = resolver.get_leaf_state_tree()  # for intent selection
    """

    def __init__(
        self,
        states: Sequence[StateNode],
        contexts: Iterable[Context] = (),
        tools: Iterable[Tool] = (),
        default_model_parameters: Optional[ModelParameters] = None,
        max_depth: int = DEFAULT_MAX_DEPTH
    ):
        self.max_depth = max_depth
        self.reconfigure(states, contexts, tools, default_model_parameters)

    def reconfigure(
        self,
        states: Sequence[StateNode],
        contexts: Iterable[Context] = (),
        tools: Iterable[Tool] = (),
        default_model_parameters: Optional[ModelParameters] = None
    ) -> None:
        """Re-resolve from a new configuration, replacing every cached table."""
        resolution = resolve_tree(
            states,
            contexts,
            tools,
            default_model_parameters,
            max_depth=self.max_depth,
        )

        by_key: Dict[str, List[ResolvedState]] = {}
        for leaf in resolution.leaves:
            by_key.setdefault(leaf.key, []).append(leaf)

        self._resolution = resolution
        self._by_key = by_key
        self._by_path = {leaf.path: leaf for leaf in resolution.leaves}

        logger.info(
            "Resolved state tree",
            leaves=len(resolution.leaves),
            contexts=len(resolution.flat_contexts),
            tools=len(resolution.flat_tools),
        )

    @property
    def resolution(self) -> Resolution:
        return self._resolution

    @property
    def leaves(self) -> List[ResolvedState]:
        return list(self._resolution.leaves)

    def get_leaf_by_key(self, key: str) -> Optional[ResolvedState]:
        """First leaf with ``key`` in depth-first order, or None."""
        matches = self._by_key.get(key)
        return matches[0] if matches else None

    def get_leaves_by_key(self, key: str) -> List[ResolvedState]:
        """Every leaf sharing ``key``; they differ only by path."""
        return list(self._by_key.get(key, []))

    def get_leaf_by_path(self, path: Sequence[str]) -> Optional[ResolvedState]:
        return self._by_path.get(tuple(path))

    def find_leaf(self, ref: Union[str, Sequence[str], StateSummary]) -> Optional[ResolvedState]:
        """
        Look up a leaf by summary, path or key.

        Args:
            ref: A StateSummary, a path sequence, a path string such as
                ``"shipping > faq"``, or a bare key (first match in
                depth-first order)

        Returns:
            The leaf, or None
        """
        if isinstance(ref, StateSummary):
            return self.get_leaf_by_path(ref.path)
        if isinstance(ref, str):
            if PATH_SEPARATOR in ref:
                return self.get_leaf_by_path([part.strip() for part in ref.split(PATH_SEPARATOR)])
            return self.get_leaf_by_key(ref)
        return self.get_leaf_by_path(ref)

    def get_leaf_state_tree(self) -> List[StateSummary]:
        """Leaf candidates for the intent-selection step."""
        return [s for s in self._resolution.states if s.is_leaf]

    def get_state_tree(self) -> List[StateSummary]:
        """Every node, branches included, in depth-first order."""
        return list(self._resolution.states)

    def get_context(self, key: str) -> Optional[Context]:
        return self._resolution.flat_contexts.get(key)

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._resolution.flat_tools.get(name)

    def all_contexts(self) -> List[Context]:
        return list(self._resolution.flat_contexts.values())

    def all_tools(self) -> List[Tool]:
        return list(self._resolution.flat_tools.values())
