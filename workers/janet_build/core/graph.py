"""
Build graph — dependency ordering and fail-fast execution.

Nodes are executed in a stable topological order (Kahn's algorithm, ties
broken by insertion order).  A node starts only after every dependency
reached SUCCESS.  The first failure ends the execution: running siblings
are cancelled (their subprocesses killed), nodes that never started are
marked CANCELLED, and BuildFailed names the node and the cause.  There is
no retry and no partial-success mode.

With ``jobs > 1`` every ready node is submitted to a thread pool; in a
bootstrap build that only ever parallelizes the independent test runs.
"""
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from janet_build.core.errors import BuildFailed, GraphCycleError
from janet_build.core.nodes import Node, NodeState

logger = logging.getLogger(__name__)


class Step(Node):
    """A named top-level target (``build``, ``run``, ``test``); no action."""

    kind = "step"

    def __init__(self, name: str, description: str = ""):
        super().__init__(name)
        self.description = description

    def run(self) -> None:
        pass


class BuildGraph:
    """Owns the nodes of one build invocation."""

    def __init__(self) -> None:
        self.nodes: List[Node] = []
        self.steps: Dict[str, Step] = {}
        self._index: Dict[int, int] = {}

    def add(self, node: Node, _visiting: Optional[Set[int]] = None) -> Node:
        """Register *node* and, recursively, its dependencies."""
        if id(node) in self._index:
            return node
        visiting = _visiting if _visiting is not None else set()
        if id(node) in visiting:
            # cycle; reported by order()
            return node
        visiting.add(id(node))
        for dep in node.dependencies:
            self.add(dep, visiting)
        self._index[id(node)] = len(self.nodes)
        self.nodes.append(node)
        return node

    def step(self, name: str, description: str = "") -> Step:
        if name in self.steps:
            return self.steps[name]
        s = Step(name, description)
        self.steps[name] = s
        self.add(s)
        return s

    def depend(self, node: Node, *deps: Node) -> Node:
        """``node.depend_on(*deps)`` keeping the registry in sync."""
        node.depend_on(*deps)
        for d in deps:
            self.add(d)
        return self.add(node)

    # -----------------------------------------------------------------
    # Ordering
    # -----------------------------------------------------------------

    def _resolve(self, targets: Iterable[object]) -> List[Node]:
        out: List[Node] = []
        for t in targets:
            if isinstance(t, str):
                if t not in self.steps:
                    raise KeyError(f"unknown step {t!r}")
                out.append(self.steps[t])
            elif isinstance(t, Node):
                out.append(self.add(t))
            else:
                raise TypeError(f"not a node or step name: {t!r}")
        return out

    def closure(self, targets: Iterable[object]) -> List[Node]:
        """Every node reachable from *targets*, in insertion order."""
        seen: Set[int] = set()
        stack = list(self._resolve(targets))
        while stack:
            n = stack.pop()
            if id(n) in seen:
                continue
            seen.add(id(n))
            for d in n.dependencies:
                self.add(d)
                stack.append(d)
        return [n for n in self.nodes if id(n) in seen]

    def order(self, targets: Iterable[object]) -> List[Node]:
        """Stable topological order of the closure of *targets*."""
        nodes = self.closure(targets)
        members = {id(n) for n in nodes}
        indegree = {id(n): 0 for n in nodes}
        dependents: Dict[int, List[Node]] = {id(n): [] for n in nodes}
        for n in nodes:
            for d in n.dependencies:
                if id(d) in members:
                    indegree[id(n)] += 1
                    dependents[id(d)].append(n)

        ready = [n for n in nodes if indegree[id(n)] == 0]
        ordered: List[Node] = []
        while ready:
            ready.sort(key=lambda n: self._index[id(n)])
            n = ready.pop(0)
            ordered.append(n)
            for m in dependents[id(n)]:
                indegree[id(m)] -= 1
                if indegree[id(m)] == 0:
                    ready.append(m)

        if len(ordered) != len(nodes):
            stuck = sorted(n.name for n in nodes if indegree[id(n)] > 0)
            raise GraphCycleError(f"dependency cycle among: {', '.join(stuck)}")
        return ordered

    # -----------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------

    def _attempt(self, node: Node) -> Optional[Exception]:
        """Run one node, recording state and timing. Returns the error, if any."""
        node.state = NodeState.RUNNING
        logger.debug(f"[{node.kind}] {node.name}: start")
        t0 = time.monotonic()
        try:
            node.run()
        except Exception as e:
            node.duration_ms = int((time.monotonic() - t0) * 1000)
            node.state = NodeState.FAILED
            node.error = e
            logger.debug(f"[{node.kind}] {node.name}: failed after {node.duration_ms}ms")
            return e
        node.duration_ms = int((time.monotonic() - t0) * 1000)
        node.state = NodeState.SUCCESS
        logger.debug(f"[{node.kind}] {node.name}: done in {node.duration_ms}ms")
        return None

    @staticmethod
    def _cancel_pending(nodes: Iterable[Node]) -> None:
        for n in nodes:
            if n.state == NodeState.PENDING:
                n.state = NodeState.CANCELLED

    def execute(self, targets: Sequence[object], jobs: int = 1) -> List[Node]:
        """
        Execute the closure of *targets*.

        Returns the executed nodes in start order.  Raises BuildFailed on
        the first failing node.
        """
        ordered = self.order(targets)
        logger.info(f"executing {len(ordered)} nodes (jobs={jobs})")
        if jobs <= 1:
            return self._execute_serial(ordered)
        return self._execute_parallel(ordered, jobs)

    def _execute_serial(self, ordered: List[Node]) -> List[Node]:
        for i, node in enumerate(ordered):
            err = self._attempt(node)
            if err is not None:
                self._cancel_pending(ordered[i + 1:])
                logger.error(f"node '{node.name}' failed: {err}")
                raise BuildFailed(node.name, err) from err
        return ordered

    def _execute_parallel(self, ordered: List[Node], jobs: int) -> List[Node]:
        pending = list(ordered)
        started: List[Node] = []
        running: Dict[Future, Node] = {}
        failure: Optional[Tuple[Node, Exception]] = None

        with ThreadPoolExecutor(max_workers=jobs) as pool:
            while pending or running:
                if failure is None:
                    for n in list(pending):
                        if len(running) >= jobs:
                            break
                        if all(d.state == NodeState.SUCCESS for d in n.dependencies):
                            pending.remove(n)
                            started.append(n)
                            n.state = NodeState.RUNNING
                            running[pool.submit(self._attempt, n)] = n
                if not running:
                    break
                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for fut in finished:
                    node = running.pop(fut)
                    err = fut.result()
                    if err is None:
                        continue
                    if failure is None:
                        failure = (node, err)
                        logger.error(f"node '{node.name}' failed: {err}")
                        for other in running.values():
                            other.cancel()
                    else:
                        # killed because of the first failure
                        node.state = NodeState.CANCELLED

        if failure is not None:
            self._cancel_pending(pending)
            node, err = failure
            raise BuildFailed(node.name, err) from err
        return started
