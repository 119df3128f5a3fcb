# src/atlas_reconciler/core/engine/planner.py
"""
Planejador do grafo de dependências entre bundles (DAG).

Este módulo é responsável por validar a estrutura de dependências
declarada (`dependsOn`) e produzir uma ordem topológica determinística
dos bundles, consumida pelo Scheduler.

O planner opera exclusivamente em nível estrutural, analisando:
    - nomes de bundles
    - dependências declaradas
    - formação de ciclos
    - componentes fracamente conexos

Decisões arquiteturais:
    - Utiliza ordenação topológica determinística (Kahn)
    - Empates são resolvidos pela ordem de declaração dos bundles
    - `build_graph` é estrito: qualquer erro estrutural é fatal
    - `plan_graph` isola falhas: rejeita apenas os bundles afetados,
      para que erros permaneçam locais ao bundle/componente

Invariantes:
    - Nenhum bundle aparece antes de suas dependências
    - Todos os bundles válidos aparecem exatamente uma vez
    - A mesma declaração produz sempre a mesma ordem
    - Nenhum bundle de um componente cíclico é agendado

Limites explícitos:
    - Não executa reconciliação
    - Não consulta readiness (responsabilidade do Scheduler)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..bundle.registry import BundleRegistry
from ..bundle.types import Bundle
from ..exceptions import (
    CycleDetectedError,
    DuplicateBundleError,
    ReconcileException,
    UnknownDependencyError,
)


@dataclass(frozen=True)
class DependencyGraph:
    """
    DAG de bundles já validado.

    Campos:
        - order: nomes em ordem topológica determinística
        - edges: nome → dependências (na ordem declarada)
    """

    order: Tuple[str, ...]
    edges: Mapping[str, Tuple[str, ...]]
    _dependents: Mapping[str, Tuple[str, ...]] = field(repr=False, compare=False, default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.edges

    def dependencies(self, name: str) -> Tuple[str, ...]:
        return self.edges[name]

    def dependents(self, name: str) -> Tuple[str, ...]:
        return self._dependents.get(name, ())

    def transitive_dependents(self, name: str) -> List[str]:
        """Dependentes diretos e transitivos, em ordem topológica."""
        seen: Set[str] = set()
        stack = list(self.dependents(name))
        while stack:
            n = stack.pop()
            if n in seen:
                continue
            seen.add(n)
            stack.extend(self.dependents(n))
        return [n for n in self.order if n in seen]

    def components(self) -> List[List[str]]:
        """Componentes fracamente conexos (subgrafos independentes)."""
        return _components(list(self.order), self.edges)

    def layers(self) -> List[List[str]]:
        """
        Camadas topológicas: a camada k contém os bundles cujas
        dependências estão todas nas camadas < k. Dentro da camada,
        a ordem de declaração é preservada.
        """
        depth: Dict[str, int] = {}
        for name in self.order:
            deps = self.edges[name]
            depth[name] = 1 + max((depth[d] for d in deps), default=-1)
        result: List[List[str]] = [[] for _ in range(1 + max(depth.values(), default=-1))]
        for name in self.order:
            result[depth[name]].append(name)
        return result


@dataclass(frozen=True)
class GraphPlan:
    """Grafo dos bundles válidos + bundles rejeitados com o motivo."""

    graph: DependencyGraph
    rejected: Mapping[str, ReconcileException]


def _kahn(names: Sequence[str], edges: Mapping[str, Sequence[str]]) -> List[str]:
    position = {n: i for i, n in enumerate(names)}
    incoming_count: Dict[str, int] = {n: len(edges[n]) for n in names}
    outgoing: Dict[str, Set[str]] = {n: set() for n in names}
    for n in names:
        for dep in edges[n]:
            outgoing[dep].add(n)

    ready: List[str] = [n for n in names if incoming_count[n] == 0]
    order: List[str] = []
    while ready:
        n = ready.pop(0)  # menor posição de declaração
        order.append(n)
        for child in sorted(outgoing[n], key=position.__getitem__):
            incoming_count[child] -= 1
            if incoming_count[child] == 0:
                ready.append(child)
                ready.sort(key=position.__getitem__)
    return order


def _find_cycle(nodes: Sequence[str], edges: Mapping[str, Sequence[str]]) -> List[str]:
    """Retorna um caminho cíclico `[a, b, ..., a]` entre `nodes`."""
    remaining = set(nodes)
    for start in nodes:
        path: List[str] = []
        on_path: Dict[str, int] = {}
        node: Optional[str] = start
        # cada nó restante após Kahn possui ao menos uma dependência restante
        while node is not None and node not in on_path:
            on_path[node] = len(path)
            path.append(node)
            node = next((d for d in edges[node] if d in remaining), None)
        if node is not None:
            cycle = path[on_path[node]:] + [node]
            cycle.reverse()  # sentido dependência → dependente
            return cycle
    return list(nodes)


def _components(names: Sequence[str], edges: Mapping[str, Sequence[str]]) -> List[List[str]]:
    neighbours: Dict[str, Set[str]] = {n: set() for n in names}
    for n in names:
        for d in edges[n]:
            if d in neighbours:
                neighbours[n].add(d)
                neighbours[d].add(n)
    seen: Set[str] = set()
    result: List[List[str]] = []
    for n in names:
        if n in seen:
            continue
        stack, comp = [n], set()
        while stack:
            x = stack.pop()
            if x in comp:
                continue
            comp.add(x)
            stack.extend(neighbours[x] - comp)
        seen |= comp
        result.append([m for m in names if m in comp])
    return result


def _graph(names: Sequence[str], edges: Mapping[str, Sequence[str]], order: Sequence[str]) -> DependencyGraph:
    position = {n: i for i, n in enumerate(names)}
    dependents: Dict[str, List[str]] = {n: [] for n in names}
    for n in names:
        for d in edges[n]:
            dependents[d].append(n)
    return DependencyGraph(
        order=tuple(order),
        edges={n: tuple(edges[n]) for n in names},
        _dependents={n: tuple(sorted(v, key=position.__getitem__)) for n, v in dependents.items()},
    )


def build_graph(bundles: Iterable[Bundle]) -> DependencyGraph:
    """
    Valida e produz o DAG de bundles com ordem topológica determinística.

    Sempre que múltiplos bundles estiverem prontos, a escolha segue a
    ordem de declaração, tornando a ordem de agendamento reprodutível.

    Args:
        bundles (Iterable[Bundle]): Bundles na ordem de declaração.

    Returns:
        DependencyGraph: Grafo validado.

    Raises:
        DuplicateBundleError: Se dois bundles tiverem o mesmo nome.
        UnknownDependencyError: Se um bundle declarar dependência inexistente.
        CycleDetectedError: Se houver ciclo (`details["cycle"]` traz o caminho).
    """
    registry = BundleRegistry.of(bundles)
    names = registry.names()

    edges: Dict[str, Tuple[str, ...]] = {}
    for b in registry.list():
        for dep in b.depends_on:
            if dep not in registry:
                raise UnknownDependencyError(
                    f"Bundle '{b.name}' depends on unknown bundle '{dep}'",
                    details={"bundle": b.name, "dependency": dep},
                )
        edges[b.name] = tuple(b.depends_on)

    order = _kahn(names, edges)
    if len(order) != len(names):
        placed = set(order)
        cycle = _find_cycle([n for n in names if n not in placed], edges)
        raise CycleDetectedError(
            "Cycle detected in bundle dependency graph: " + " -> ".join(cycle),
            details={"cycle": cycle},
        )

    return _graph(names, edges, order)


def plan_graph(bundles: Iterable[Bundle]) -> GraphPlan:
    """
    Planeja o grafo isolando falhas estruturais por bundle/componente.

    Política:
        - Nome duplicado: a primeira declaração vence; as demais são rejeitadas
        - Dependência inexistente: o bundle é rejeitado (dependentes ficam
          bloqueados pelo gate de readiness, nunca aplicam)
        - Ciclo: todo o componente fracamente conexo que contém o ciclo é
          rejeitado e nunca agendado

    Returns:
        GraphPlan: grafo dos bundles restantes + mapa de rejeições.
    """
    rejected: Dict[str, ReconcileException] = {}
    registry = BundleRegistry()
    for b in bundles:
        if b.name in registry:
            rejected.setdefault(
                b.name,
                DuplicateBundleError(f"Duplicate bundle name: {b.name}", details={"bundle": b.name}),
            )
            continue
        registry.add(b)

    names = registry.names()
    edges: Dict[str, Tuple[str, ...]] = {}
    for b in registry.list():
        unknown = [d for d in b.depends_on if d not in registry]
        if unknown:
            rejected[b.name] = UnknownDependencyError(
                f"Bundle '{b.name}' depends on unknown bundle '{unknown[0]}'",
                details={"bundle": b.name, "dependency": unknown[0]},
            )
        edges[b.name] = tuple(d for d in b.depends_on if d in registry)

    order = _kahn(names, edges)
    if len(order) != len(names):
        placed = set(order)
        leftover = [n for n in names if n not in placed]
        for component in _components(names, edges):
            stuck = [n for n in component if n in leftover]
            if not stuck:
                continue
            cycle = _find_cycle(stuck, edges)
            for n in component:
                rejected[n] = CycleDetectedError(
                    "Cycle detected in bundle dependency graph: " + " -> ".join(cycle),
                    details={"cycle": cycle, "bundle": n},
                )

    kept = [n for n in names if not isinstance(rejected.get(n), CycleDetectedError)]
    kept_edges = {n: edges[n] for n in kept}
    order = _kahn(kept, kept_edges)
    return GraphPlan(graph=_graph(kept, kept_edges, order), rejected=rejected)

