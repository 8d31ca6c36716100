"""Path finder — resolves join paths between collections from the schema registry.

Direct relationships are preferred; otherwise the relationship graph is
walked depth-first and the first complete chain is returned. The first
chain found is not guaranteed to be the shortest one.
"""

import logging

from hoprag.application.services.schema_registry import SchemaRegistry
from hoprag.domain.entities.retrieval import HoppingPath, RetrievalStep, StepAction
from hoprag.domain.entities.schema import CollectionSchema, Relationship

logger = logging.getLogger(__name__)


class PathFinder:
    """Finds one-hop paths and multi-hop chains between collections."""

    def __init__(self, registry: SchemaRegistry):
        self._registry = registry

    def find_path(self, source: str, target: str) -> HoppingPath | None:
        """Return the direct join from ``source`` to ``target``, if one is declared.

        Relationships declared on ``source`` win; otherwise one declared on
        ``target`` pointing back is used with its cardinality inverted.
        """
        if source == target:
            return None
        source_schema = self._registry.get_schema(source)
        target_schema = self._registry.get_schema(target)
        if source_schema is None or target_schema is None:
            return None

        for rel in source_schema.relationships:
            if rel.target == target:
                return _forward(source_schema, target_schema, rel)

        for rel in target_schema.relationships:
            if rel.target == source:
                return _reverse(source_schema, target_schema, rel)

        return None

    def find_chain(self, source: str, target: str) -> list[HoppingPath]:
        """Return a chain of hops from ``source`` to ``target``, or ``[]``.

        A direct path yields a single-element chain. Otherwise an iterative
        depth-first search explores declared targets before referencing
        collections, never revisiting a collection.
        """
        direct = self.find_path(source, target)
        if direct is not None:
            return [direct]
        if source == target or source not in self._registry or target not in self._registry:
            return []

        visited: set[str] = {source}
        # Each frame: (collection, chain so far, remaining neighbours to try)
        stack: list[tuple[str, list[HoppingPath], list[str]]] = [
            (source, [], self._neighbours(source))
        ]

        while stack:
            current, chain, pending = stack[-1]
            if not pending:
                stack.pop()
                continue

            nxt = pending.pop(0)
            if nxt in visited:
                continue
            hop = self.find_path(current, nxt)
            if hop is None:
                continue

            extended = chain + [hop]
            if nxt == target:
                logger.debug(
                    "Chain %s → %s found: %s",
                    source, target, " → ".join([source] + [h.to for h in extended]),
                )
                return extended

            visited.add(nxt)
            stack.append((nxt, extended, self._neighbours(nxt)))

        logger.debug("No chain between %s and %s", source, target)
        return []

    def build_hop_steps(
        self,
        collection: str,
        targets: list[str],
        *,
        source_step: str | None = None,
    ) -> list[RetrievalStep]:
        """Build one ``hop`` step from ``collection`` to each directly reachable target.

        Targets without a direct path are skipped. When ``source_step`` is
        given every hop depends on it, so its documents feed the joins.
        """
        steps: list[RetrievalStep] = []
        for target in targets:
            path = self.find_path(collection, target)
            if path is None:
                logger.debug("Skipping hop %s → %s: no direct path", collection, target)
                continue
            steps.append(
                RetrievalStep(
                    step_id=f"hop_{len(steps)}",
                    action=StepAction.HOP,
                    collection=target,
                    hopping_path=path,
                    dependencies=[source_step] if source_step else [],
                    produces_output_for=f"{target}_ids",
                )
            )
        return steps

    def _neighbours(self, collection: str) -> list[str]:
        neighbours = self._registry.get_related_collections(collection)
        for name in self._registry.referencing_collections(collection):
            if name not in neighbours:
                neighbours.append(name)
        return neighbours


def _forward(source: CollectionSchema, target: CollectionSchema, rel: Relationship) -> HoppingPath:
    # source.field = target.(via or id)
    return HoppingPath(
        source=source.name,
        to=target.name,
        via=rel.via or target.id_field,
        cardinality=rel.cardinality,
        source_field=rel.field,
    )


def _reverse(source: CollectionSchema, target: CollectionSchema, rel: Relationship) -> HoppingPath:
    # Declared on target: target.field = source.(via or id)
    return HoppingPath(
        source=source.name,
        to=target.name,
        via=rel.field,
        cardinality=rel.cardinality.inverse,
        source_field=rel.via or source.id_field,
    )
