"""
Stage graph runner for the headless extraction pipeline.

Stages are callables wired by name; the runner orders them with Kahn's
algorithm (ties broken by insertion order) and records how long each one took.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


@dataclass
class DAGNode:
    """One pipeline stage: ``fn`` receives ``{dependency_name: output}``."""
    name:        str
    fn:          Callable[[Dict[str, Any]], Any]
    depends_on:  Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.depends_on = tuple(self.depends_on)
        if self.name in self.depends_on:
            raise ValueError(f"Stage '{self.name}' cannot depend on itself")


class SimpleDAGExecutor:
    """
    Runs stages in dependency order and collects their outputs.

    Usage::

        dag = SimpleDAGExecutor()
        dag.add(DAGNode("load",    load_fn))
        dag.add(DAGNode("reduce",  reduce_fn,  depends_on=("load",)))
        dag.add(DAGNode("extract", extract_fn, depends_on=("reduce",)))
        outputs = dag.run(progress_callback)
    """

    def __init__(self) -> None:
        self._stages: Dict[str, DAGNode] = {}
        self.timings: Dict[str, float] = {}

    def add(self, node: DAGNode) -> "SimpleDAGExecutor":
        if node.name in self._stages:
            raise ValueError(f"Stage '{node.name}' is already registered")
        self._stages[node.name] = node
        return self

    @property
    def node_names(self) -> Tuple[str, ...]:
        return tuple(self._stages)

    def execution_order(self) -> List[str]:
        """
        Stage names with every dependency before its dependants.

        Raises:
            KeyError: a stage names a dependency that was never added.
            ValueError: the dependencies form a cycle.
        """
        pending: Dict[str, int] = {}
        dependants: Dict[str, List[str]] = {name: [] for name in self._stages}
        for name, node in self._stages.items():
            for dep in node.depends_on:
                if dep not in self._stages:
                    raise KeyError(f"Stage '{name}' depends on unknown stage '{dep}'")
                dependants[dep].append(name)
            pending[name] = len(node.depends_on)

        ready = deque(name for name, count in pending.items() if count == 0)
        order: List[str] = []
        while ready:
            name = ready.popleft()
            order.append(name)
            for child in dependants[name]:
                pending[child] -= 1
                if pending[child] == 0:
                    ready.append(child)

        if len(order) != len(self._stages):
            stuck = sorted(set(self._stages) - set(order))
            raise ValueError(f"Stage dependency cycle among: {', '.join(stuck)}")
        return order

    def run(self, progress: Optional[Callable[[int, str], None]] = None) -> Dict[str, Any]:
        order = self.execution_order()
        outputs: Dict[str, Any] = {}
        self.timings = {}
        for done, name in enumerate(order):
            node = self._stages[name]
            if progress:
                progress(int(100 * done / len(order)), f"Running: {name}")
            t0 = time.perf_counter()
            outputs[name] = node.fn({dep: outputs[dep] for dep in node.depends_on})
            self.timings[name] = time.perf_counter() - t0
            print(f"[Pipeline] {name} finished in {self.timings[name]:.3f}s")
        if progress:
            progress(100, "Pipeline complete")
        return outputs


__all__ = ["DAGNode", "SimpleDAGExecutor"]
