"""Registry mapping (category, subtype) pairs to step executors."""

import inspect
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.core import NodeCategory, NodeDefinition, StepInput
from .exceptions import (
    ConfigurationError,
    UnknownNodeCategoryError,
    UnknownNodeSubtypeError,
)
from .logging import get_logger

logger = get_logger(__name__)

StepExecutor = Callable[[StepInput], Dict[str, Any]]


class ExecutorRegistry:
    """Registry for the step executors the traversal engine dispatches to.

    Registration is validated eagerly: an unknown category, a blank subtype,
    a non-callable or a duplicate registration is rejected when it happens.
    Lookups for an unregistered pair raise the dispatch errors the engine
    records against the node.
    """

    def __init__(self):
        self._executors: Dict[Tuple[str, str], StepExecutor] = {}
        self._descriptions: Dict[Tuple[str, str], str] = {}
        self._lock = threading.RLock()

    def register(
        self,
        category: str,
        subtype: str,
        executor: StepExecutor,
        description: str = "",
        replace: bool = False,
    ) -> None:
        """Register an executor for one node subtype.

        Args:
            category: Node category the executor belongs to
            subtype: Node subtype it handles
            executor: Callable taking a StepInput and returning a result dict
            description: Optional description of the executor's purpose
            replace: Allow overriding an existing registration

        Raises:
            ConfigurationError: If the registration is invalid
        """
        category = self._normalize_category(category)
        if not subtype or not subtype.strip():
            raise ConfigurationError("Executor subtype cannot be empty", config_key=category)
        subtype = subtype.strip().lower()

        if not callable(executor):
            raise ConfigurationError(f"Executor for '{category}/{subtype}' must be callable")

        try:
            sig = inspect.signature(executor)
            if len(sig.parameters) == 0:
                raise ConfigurationError(
                    f"Executor for '{category}/{subtype}' must accept a step input argument"
                )
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Cannot inspect executor signature for '{category}/{subtype}': {e}")

        key = (category, subtype)
        with self._lock:
            if key in self._executors and not replace:
                raise ConfigurationError(f"Executor for '{category}/{subtype}' is already registered")
            self._executors[key] = executor
            self._descriptions[key] = description.strip() if description else ""

        logger.debug(f"Registered executor {category}/{subtype} -> {getattr(executor, '__name__', executor)}")

    def executor(self, category: str, subtype: str, description: str = "") -> Callable[[StepExecutor], StepExecutor]:
        """Decorator form of :meth:`register`."""
        def decorator(func: StepExecutor) -> StepExecutor:
            self.register(category, subtype, func, description or (func.__doc__ or "").strip().split("\n")[0])
            return func
        return decorator

    def unregister(self, category: str, subtype: str) -> bool:
        """Remove a registration. Returns False if it did not exist."""
        key = (category.strip().lower(), subtype.strip().lower())
        with self._lock:
            self._descriptions.pop(key, None)
            return self._executors.pop(key, None) is not None

    def resolve(self, node: NodeDefinition) -> StepExecutor:
        """Find the executor for a node.

        Raises:
            UnknownNodeCategoryError: If the node's category is not known
            UnknownNodeSubtypeError: If nothing is registered for its subtype
        """
        try:
            category = NodeCategory(node.category).value
        except ValueError:
            raise UnknownNodeCategoryError(
                f"Unknown node type: {node.category or '<empty>'}",
                node_id=node.id,
                category_name=node.category,
            )

        with self._lock:
            executor = self._executors.get((category, node.subtype))
        if executor is None:
            raise UnknownNodeSubtypeError(
                f"Unknown {category} subtype: {node.subtype or '<empty>'}",
                node_id=node.id,
                category_name=category,
                subtype=node.subtype,
            )
        return executor

    def is_registered(self, category: str, subtype: str) -> bool:
        with self._lock:
            return (category.strip().lower(), subtype.strip().lower()) in self._executors

    def list_executors(self, category: Optional[str] = None) -> Dict[str, str]:
        """List registrations as ``"category/subtype" -> description``."""
        with self._lock:
            items = sorted(self._descriptions.items())
        return {
            f"{cat}/{sub}": desc
            for (cat, sub), desc in items
            if category is None or cat == category
        }

    def subtypes(self, category: str) -> List[str]:
        with self._lock:
            return sorted(sub for cat, sub in self._executors if cat == category)

    @staticmethod
    def _normalize_category(category: str) -> str:
        try:
            return NodeCategory((category or "").strip().lower()).value
        except ValueError:
            raise ConfigurationError(f"Unknown node category '{category}'", config_key="category")


def create_default_registry(gateway=None) -> ExecutorRegistry:
    """Build a registry with every built-in executor.

    Args:
        gateway: SideEffectGateway used by action executors; the simulated
            gateway is used when omitted
    """
    from ..steps import register_builtin_executors

    registry = ExecutorRegistry()
    register_builtin_executors(registry, gateway)
    logger.info(f"Executor registry initialized with {len(registry.list_executors())} executors")
    return registry
