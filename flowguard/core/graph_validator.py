"""Whole-workflow validation.

Checks node naming, connection targets and indices, output cardinality,
self-references, loop wiring and cycles (via NetworkX), then delegates
per-node configuration and expression checks and aggregates everything into a
single :class:`ValidationReport`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import networkx as nx

from flowguard.core.catalog import (
    NodeTypeRepository,
    SchemaCache,
    denormalize_node_type,
    schema_cache,
    suggest_node_types,
)
from flowguard.core.config_validator import NodeConfigValidator
from flowguard.core.expression_format import ExpressionFormatValidator
from flowguard.core.expressions import ExpressionContext, ExpressionValidator
from flowguard.core.models import (
    ConnectionTarget,
    IssueCategory,
    IssueSeverity,
    NodeTypeSchema,
    ValidationIssue,
    ValidationReport,
    WorkflowDocument,
    WorkflowNode,
)
from flowguard.core.profiles import ProfilePolicy, ValidationProfile
from flowguard.core.settings import ValidatorSettings

logger = logging.getLogger(__name__)

MAIN = "main"

ON_ERROR_VALUES = ("continueRegularOutput", "continueErrorOutput", "stopWorkflow")

# Attributes that belong on the node, not inside its parameters
NODE_LEVEL_PROPERTIES = frozenset(
    {
        "onError",
        "continueOnFail",
        "retryOnFail",
        "maxTries",
        "waitBetweenTries",
        "alwaysOutputData",
        "executeOnce",
        "disabled",
        "notesInFlow",
        "typeVersion",
    }
)

# Node types that talk to external systems and benefit from error handling
ERROR_PRONE_TYPES = frozenset(
    {"httpRequest", "postgres", "mySql", "microsoftSql", "slack", "emailSend", "github"}
)

NON_EXECUTING_TYPES = frozenset({"nodes-base.stickyNote"})

MAX_TRIES_WARNING = 10
MAX_WAIT_BETWEEN_TRIES_MS = 300_000

MAX_CYCLES_TO_CHECK = 100
MAX_NODES_FOR_FULL_CYCLE_CHECK = 50


def looks_like_trigger(node_type: str) -> bool:
    """Fallback trigger detection for types missing from the catalog."""
    lowered = node_type.lower()
    return any(marker in lowered for marker in ("trigger", "webhook")) or lowered.endswith(".start")


@dataclass
class _ValidationRun:
    """Mutable state of a single validate() call."""

    document: WorkflowDocument
    policy: ProfilePolicy
    report: ValidationReport
    issues: list[ValidationIssue] = field(default_factory=list)
    schemas: dict[int, NodeTypeSchema | None] = field(default_factory=dict)
    nodes_by_name: dict[str, WorkflowNode] = field(default_factory=dict)
    names_by_id: dict[str, str] = field(default_factory=dict)
    graph: nx.MultiDiGraph = field(default_factory=nx.MultiDiGraph)

    def schema(self, node: WorkflowNode) -> NodeTypeSchema | None:
        return self.schemas.get(id(node))

    def add(
        self,
        severity: IssueSeverity,
        category: IssueCategory,
        code: str,
        message: str,
        node: WorkflowNode | None = None,
        path: str | None = None,
        fix: str | None = None,
        suggested_value: Any = None,
    ) -> None:
        self.issues.append(
            ValidationIssue(
                severity=severity,
                category=category,
                code=code,
                message=message,
                node_name=node.name if node else None,
                node_id=node.id if node else None,
                path=path,
                fix=fix,
                suggested_value=suggested_value,
            )
        )

    def error(self, category: IssueCategory, code: str, message: str, **kwargs: Any) -> None:
        self.add(IssueSeverity.ERROR, category, code, message, **kwargs)

    def warn(self, category: IssueCategory, code: str, message: str, **kwargs: Any) -> None:
        self.add(IssueSeverity.WARNING, category, code, message, **kwargs)


class WorkflowGraphValidator:
    """Validate a workflow document as a whole.

    Args:
        repository: Source of node-type schemas.
        settings: Thresholds and the default profile.
        cache: Schema cache; defaults to the process-wide cache.
    """

    def __init__(
        self,
        repository: NodeTypeRepository,
        settings: ValidatorSettings | None = None,
        config_validator: NodeConfigValidator | None = None,
        expression_validator: ExpressionValidator | None = None,
        format_validator: ExpressionFormatValidator | None = None,
        cache: SchemaCache | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or ValidatorSettings()
        depth = self.settings.max_expression_depth
        self.config_validator = config_validator or NodeConfigValidator()
        self.expression_validator = expression_validator or ExpressionValidator(max_depth=depth)
        self.format_validator = format_validator or ExpressionFormatValidator(max_depth=depth)
        self.cache = cache or schema_cache

    def validate(
        self, document: WorkflowDocument, profile: ValidationProfile | str | None = None
    ) -> ValidationReport:
        policy = ProfilePolicy.for_profile(profile or self.settings.default_profile)
        run = _ValidationRun(
            document=document,
            policy=policy,
            report=ValidationReport(profile=policy.profile.value),
        )
        run.report.statistics.total_nodes = len(document.nodes)

        if not document.nodes:
            run.warn(IssueCategory.STRUCTURE, "empty_workflow", "Workflow has no nodes")
            return self._finish(run)

        self._resolve_schemas(run)
        self._check_structure(run)
        self._check_nodes(run)
        self._check_connections(run)
        self._check_graph_shape(run)
        self._check_expressions(run)
        return self._finish(run)

    def _finish(self, run: _ValidationRun) -> ValidationReport:
        for issue in run.issues:
            reported = run.policy.apply(issue)
            if reported is not None:
                run.report.add(reported)
        run.report.valid = not run.report.errors
        logger.debug(
            f"Validated workflow '{run.document.name}' ({run.policy.profile.value}): "
            f"{len(run.report.errors)} error(s), {len(run.report.warnings)} warning(s)"
        )
        return run.report

    # -------------------------------------------------------------------------
    # Structure
    # -------------------------------------------------------------------------

    def _resolve_schemas(self, run: _ValidationRun) -> None:
        for node in run.document.nodes:
            run.nodes_by_name.setdefault(node.name, node)
            run.names_by_id.setdefault(node.id, node.name)
            run.graph.add_node(node.name)
            run.schemas[id(node)] = self.cache.get(self.repository, node.type)

    def _is_trigger(self, run: _ValidationRun, node: WorkflowNode) -> bool:
        schema = run.schema(node)
        if schema is not None:
            return schema.is_trigger
        return looks_like_trigger(node.type)

    def _executing_nodes(self, run: _ValidationRun) -> list[WorkflowNode]:
        return [
            n
            for n in run.document.nodes
            if not n.disabled and (run.schema(n) is None or run.schema(n).node_type not in NON_EXECUTING_TYPES)
        ]

    def _check_structure(self, run: _ValidationRun) -> None:
        seen_names: set[str] = set()
        seen_ids: set[str] = set()
        for node in run.document.nodes:
            if node.name in seen_names:
                run.error(
                    IssueCategory.STRUCTURE,
                    "duplicate_name",
                    f'Duplicate node name: "{node.name}"',
                    node=node,
                    fix="Node names must be unique; rename one of the nodes",
                )
            seen_names.add(node.name)
            if node.id in seen_ids:
                run.error(
                    IssueCategory.STRUCTURE,
                    "duplicate_id",
                    f'Duplicate node ID: "{node.id}"',
                    node=node,
                )
            seen_ids.add(node.id)

        stats = run.report.statistics
        stats.enabled_nodes = sum(1 for n in run.document.nodes if not n.disabled)
        executing = self._executing_nodes(run)
        stats.trigger_nodes = sum(1 for n in executing if self._is_trigger(run, n))

        if len(executing) > 1 and not any(run.document.connections.values()):
            run.error(
                IssueCategory.CONNECTION,
                "no_connections",
                "Multi-node workflow has no connections",
                fix="Connect the nodes so data flows from the trigger onwards",
            )
        if executing and stats.trigger_nodes == 0:
            run.warn(
                IssueCategory.STRUCTURE,
                "no_trigger",
                "Workflow has no trigger nodes; it can only be executed manually",
            )

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def _check_nodes(self, run: _ValidationRun) -> None:
        policy = run.policy
        for node in run.document.nodes:
            if node.disabled:
                continue

            if node.type.startswith(("nodes-base.", "nodes-langchain.")):
                full = denormalize_node_type(node.type)
                run.error(
                    IssueCategory.NODE_TYPE,
                    "invalid_type_prefix",
                    f'Invalid node type "{node.type}"; use the full package name "{full}"',
                    node=node,
                    suggested_value=full,
                )
                continue

            schema = run.schema(node)
            if schema is None:
                candidates = suggest_node_types(self.repository, node.type)
                run.error(
                    IssueCategory.NODE_TYPE,
                    "unknown_node_type",
                    f'Unknown node type: "{node.type}"',
                    node=node,
                    fix=f"Did you mean: {', '.join(candidates)}?" if candidates else None,
                    suggested_value=candidates[0] if candidates else None,
                )
                continue

            self._check_type_version(run, node, schema)
            if policy.run_rules:
                self._check_node_settings(run, node)

            config = self.config_validator.validate(
                schema.node_type,
                node.parameters,
                schema.properties,
                profile=policy.profile,
                type_version=node.type_version,
                node_name=node.name,
            )
            for issue in config.errors + config.warnings:
                run.issues.append(issue.model_copy(update={"node_id": node.id}))
            run.report.suggestions.extend(f"{node.name}: {s}" for s in config.suggestions)
            if policy.include_guidance:
                run.report.notes.extend(f"{node.name}: {step}" for step in config.next_steps)
                if config.examples:
                    example = json.dumps(config.examples[0], sort_keys=True)
                    run.report.notes.append(f"{node.name}: example configuration {example}")

            if (
                policy.run_rules
                and schema.short_name in ERROR_PRONE_TYPES
                and node.on_error is None
                and not node.continue_on_fail
                and not node.retry_on_fail
            ):
                run.report.suggestions.append(
                    f'{node.name}: add error handling (onError or retryOnFail) for external calls'
                )

    def _check_type_version(
        self, run: _ValidationRun, node: WorkflowNode, schema: NodeTypeSchema
    ) -> None:
        if not schema.is_versioned:
            return
        version = node.type_version
        latest = schema.latest_version
        if version is None:
            run.error(
                IssueCategory.NODE_TYPE,
                "missing_type_version",
                f"Missing required property 'typeVersion'; {node.type} is versioned (latest {latest})",
                node=node,
                path="typeVersion",
                suggested_value=latest,
            )
        elif version < 1:
            run.error(
                IssueCategory.NODE_TYPE,
                "invalid_type_version",
                f"Invalid typeVersion {version}; must be 1 or higher",
                node=node,
                path="typeVersion",
                suggested_value=latest,
            )
        elif version > latest:
            run.error(
                IssueCategory.NODE_TYPE,
                "invalid_type_version",
                f"typeVersion {version} exceeds the latest supported version {latest}",
                node=node,
                path="typeVersion",
                suggested_value=latest,
            )
        elif version < latest:
            run.warn(
                IssueCategory.STYLE,
                "outdated_type_version",
                f"Outdated typeVersion {version}; latest is {latest}",
                node=node,
                path="typeVersion",
                suggested_value=latest,
            )

    def _check_node_settings(self, run: _ValidationRun, node: WorkflowNode) -> None:
        for key in node.parameters:
            if key in NODE_LEVEL_PROPERTIES:
                run.error(
                    IssueCategory.RULE,
                    "misplaced_property",
                    f"Node-level property '{key}' is inside parameters; move it to the node itself",
                    node=node,
                    path=f"parameters.{key}",
                )

        if node.on_error is not None and node.on_error not in ON_ERROR_VALUES:
            run.error(
                IssueCategory.RULE,
                "invalid_value",
                f"Invalid onError value '{node.on_error}'",
                node=node,
                path="onError",
                fix=f"Must be one of: {', '.join(ON_ERROR_VALUES)}",
            )

        if node.continue_on_fail is not None:
            if node.on_error is not None:
                run.error(
                    IssueCategory.RULE,
                    "incompatible",
                    "continueOnFail and onError are both set; use onError only",
                    node=node,
                    path="continueOnFail",
                )
            else:
                run.warn(
                    IssueCategory.STYLE,
                    "deprecated",
                    "continueOnFail is deprecated; use onError instead",
                    node=node,
                    path="continueOnFail",
                    suggested_value="continueRegularOutput" if node.continue_on_fail else "stopWorkflow",
                )

        if node.retry_on_fail:
            if node.max_tries is not None:
                if node.max_tries < 1:
                    run.error(
                        IssueCategory.RULE,
                        "invalid_value",
                        f"maxTries must be at least 1, got {node.max_tries}",
                        node=node,
                        path="maxTries",
                    )
                elif node.max_tries > MAX_TRIES_WARNING:
                    run.warn(
                        IssueCategory.STYLE,
                        "inefficient",
                        f"maxTries of {node.max_tries} is high; retries may delay failure detection",
                        node=node,
                        path="maxTries",
                    )
            if node.wait_between_tries is not None:
                if node.wait_between_tries < 0:
                    run.error(
                        IssueCategory.RULE,
                        "invalid_value",
                        "waitBetweenTries must not be negative",
                        node=node,
                        path="waitBetweenTries",
                    )
                elif node.wait_between_tries > MAX_WAIT_BETWEEN_TRIES_MS:
                    run.warn(
                        IssueCategory.STYLE,
                        "inefficient",
                        f"waitBetweenTries of {node.wait_between_tries}ms exceeds 5 minutes",
                        node=node,
                        path="waitBetweenTries",
                    )
        elif node.max_tries is not None or node.wait_between_tries is not None:
            run.warn(
                IssueCategory.STYLE,
                "best_practice",
                "maxTries/waitBetweenTries have no effect unless retryOnFail is enabled",
                node=node,
                path="retryOnFail",
            )

        for cred_type, reference in (node.credentials or {}).items():
            if not isinstance(reference, dict):
                run.error(
                    IssueCategory.RULE,
                    "invalid_type",
                    f"Credential '{cred_type}' must be an object with id and name",
                    node=node,
                    path=f"credentials.{cred_type}",
                )
            elif not reference.get("id"):
                run.warn(
                    IssueCategory.RULE,
                    "missing_credential_id",
                    f"Credential '{cred_type}' has no id",
                    node=node,
                    path=f"credentials.{cred_type}",
                )

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def _check_connections(self, run: _ValidationRun) -> None:
        stats = run.report.statistics
        for source_name, outputs in run.document.connections.items():
            source = run.nodes_by_name.get(source_name)
            if source is None:
                stats.invalid_connections += max(1, _count_targets(outputs))
                if source_name in run.names_by_id:
                    real_name = run.names_by_id[source_name]
                    run.error(
                        IssueCategory.CONNECTION,
                        "connection_uses_id",
                        f'Connection uses node ID "{source_name}" instead of node name "{real_name}"',
                        path=f"connections.{source_name}",
                        suggested_value=real_name,
                    )
                else:
                    run.error(
                        IssueCategory.CONNECTION,
                        "unknown_source",
                        f'Connection from non-existent node: "{source_name}"',
                        path=f"connections.{source_name}",
                    )
                continue

            schema = run.schema(source)
            for output_type, slots in outputs.items():
                for output_index, targets in enumerate(slots):
                    if not targets:
                        continue
                    index_ok = self._check_output_index(
                        run, source, schema, output_type, output_index
                    )
                    for target in targets:
                        target_ok = self._check_target(
                            run, source, schema, output_type, output_index, target
                        )
                        if index_ok and target_ok:
                            stats.valid_connections += 1
                            run.graph.add_edge(
                                source.name, target.node, type=output_type, index=output_index
                            )
                        else:
                            stats.invalid_connections += 1

            self._check_error_output(run, source, schema, outputs)

    def _check_output_index(
        self,
        run: _ValidationRun,
        source: WorkflowNode,
        schema: NodeTypeSchema | None,
        output_type: str,
        output_index: int,
    ) -> bool:
        if output_type != MAIN or schema is None or schema.dynamic_outputs:
            return True
        declared = len(schema.outputs) + (1 if source.on_error == "continueErrorOutput" else 0)
        if output_index < declared:
            return True
        ports = ", ".join(f"{i}={name}" for i, name in enumerate(schema.outputs)) or "none"
        run.error(
            IssueCategory.CONNECTION,
            "invalid_output_index",
            f'Output index {output_index} of "{source.name}" exceeds the {declared} output(s) '
            f"declared by {source.type} ({ports})",
            node=source,
            path=f"connections.{source.name}.{output_type}[{output_index}]",
        )
        return False

    def _check_target(
        self,
        run: _ValidationRun,
        source: WorkflowNode,
        schema: NodeTypeSchema | None,
        output_type: str,
        output_index: int,
        target: ConnectionTarget,
    ) -> bool:
        path = f"connections.{source.name}.{output_type}[{output_index}]"
        name = target.node
        if name not in run.nodes_by_name:
            if name in run.names_by_id:
                real_name = run.names_by_id[name]
                run.error(
                    IssueCategory.CONNECTION,
                    "connection_uses_id",
                    f'Connection target uses node ID "{name}" instead of node name "{real_name}" '
                    f'(from "{source.name}")',
                    node=source,
                    path=path,
                    suggested_value=real_name,
                )
            else:
                run.error(
                    IssueCategory.CONNECTION,
                    "unknown_target",
                    f'Connection to non-existent node: "{name}" from "{source.name}"',
                    node=source,
                    path=path,
                )
            return False

        if target.index < 0:
            run.error(
                IssueCategory.CONNECTION,
                "invalid_connection_index",
                f'Invalid connection index {target.index} from "{source.name}" to "{name}": '
                "must be non-negative",
                node=source,
                path=path,
                suggested_value=0,
            )
            return False

        if run.nodes_by_name[name].disabled:
            run.warn(
                IssueCategory.CONNECTION,
                "disabled_target",
                f'Connection to disabled node: "{name}" from "{source.name}"',
                node=source,
                path=path,
            )

        if name == source.name and not (schema and schema.is_loop_capable):
            run.warn(
                IssueCategory.CONNECTION,
                "self_reference",
                f'Node "{name}" has a self-referencing connection; only loop-capable node types '
                "may connect to themselves",
                node=source,
                path=path,
            )
        return True

    def _check_error_output(
        self,
        run: _ValidationRun,
        source: WorkflowNode,
        schema: NodeTypeSchema | None,
        outputs: dict[str, list[list[ConnectionTarget] | None]],
    ) -> None:
        if source.on_error != "continueErrorOutput" or schema is None or schema.dynamic_outputs:
            return
        slots = outputs.get(MAIN, [])
        error_index = len(schema.outputs)
        if len(slots) <= error_index or not slots[error_index]:
            run.warn(
                IssueCategory.RULE,
                "error_output_unconnected",
                f'"{source.name}" uses onError continueErrorOutput but its error output '
                f"(index {error_index}) is not connected",
                node=source,
                path="onError",
            )

    # -------------------------------------------------------------------------
    # Graph shape
    # -------------------------------------------------------------------------

    def _check_graph_shape(self, run: _ValidationRun) -> None:
        executing = self._executing_nodes(run)
        if len(executing) > 1:
            for node in executing:
                if run.graph.degree(node.name) == 0:
                    run.warn(
                        IssueCategory.CONNECTION,
                        "orphaned_node",
                        f'Node "{node.name}" is not connected to any other nodes',
                        node=node,
                    )

        main = nx.DiGraph()
        main.add_nodes_from(run.graph.nodes)
        main.add_edges_from(
            (u, v) for u, v, data in run.graph.edges(data=True) if data["type"] == MAIN
        )
        main.remove_edges_from(list(nx.selfloop_edges(main)))

        self._check_cycles(run, main)
        self._check_loop_nodes(run, main)

        if nx.is_directed_acyclic_graph(main):
            chain = nx.dag_longest_path(main)
            if len(chain) > self.settings.long_chain_threshold:
                run.warn(
                    IssueCategory.STYLE,
                    "long_chain",
                    f"Workflow has a chain of {len(chain)} nodes; consider splitting it into "
                    "sub-workflows",
                )

    def _loop_capable_names(self, run: _ValidationRun) -> set[str]:
        return {
            name
            for name, node in run.nodes_by_name.items()
            if run.schema(node) is not None and run.schema(node).is_loop_capable
        }

    def _check_cycles(self, run: _ValidationRun, graph: nx.DiGraph) -> None:
        """Report cycles that do not pass through a loop-capable node."""
        loop_nodes = self._loop_capable_names(run)
        try:
            if graph.number_of_nodes() > MAX_NODES_FOR_FULL_CYCLE_CHECK:
                # Large graphs: only inspect the first cycle found
                try:
                    cycle = nx.find_cycle(graph)
                    members = [edge[0] for edge in cycle]
                    if not set(members) & loop_nodes:
                        run.error(
                            IssueCategory.CONNECTION,
                            "cycle",
                            f"Cycle detected without a loop node: {' -> '.join(members)}... "
                            "(graph too large for full cycle analysis)",
                        )
                except nx.NetworkXNoCycle:
                    pass
            else:
                for cycle_count, cycle in enumerate(nx.simple_cycles(graph), start=1):
                    if cycle_count > MAX_CYCLES_TO_CHECK:
                        run.error(
                            IssueCategory.CONNECTION,
                            "too_many_cycles",
                            f"Too many cycles to validate (>{MAX_CYCLES_TO_CHECK}). "
                            "Simplify the workflow structure.",
                        )
                        break
                    if not set(cycle) & loop_nodes:
                        path = " -> ".join(cycle + [cycle[0]])
                        run.error(
                            IssueCategory.CONNECTION,
                            "cycle",
                            f"Cycle without a loop node: {path}",
                            fix="Route repeated processing through a loop node such as Split in Batches",
                        )
        except nx.NetworkXError as e:
            run.warn(IssueCategory.ANOMALY, "cycle_check_failed", f"Could not perform cycle detection: {e}")

    def _reaches(self, graph: nx.DiGraph, start: str, goal: str) -> bool:
        if start not in graph:
            return False
        reachable = nx.single_source_shortest_path_length(
            graph, start, cutoff=self.settings.loop_back_max_depth
        )
        return goal in reachable

    def _check_loop_nodes(self, run: _ValidationRun, graph: nx.DiGraph) -> None:
        """Check wiring of loop nodes that declare ``done`` and ``loop`` outputs."""
        for node in run.document.nodes:
            schema = run.schema(node)
            if node.disabled or schema is None or not schema.is_loop_capable:
                continue
            if not {"done", "loop"} <= set(schema.outputs):
                continue
            done_index = schema.outputs.index("done")
            loop_index = schema.outputs.index("loop")
            slots = run.document.connections.get(node.name, {}).get(MAIN, [])

            for target in _slot_targets(slots, loop_index):
                if target == node.name or target not in run.nodes_by_name:
                    continue
                if not self._reaches(graph, target, node.name):
                    run.warn(
                        IssueCategory.CONNECTION,
                        "loop_not_closed",
                        f'The "loop" output of "{node.name}" goes to "{target}", which '
                        f'doesn\'t connect back to "{node.name}"',
                        node=node,
                        fix="Connect the last node of the loop body back to the loop node",
                    )

            for target in _slot_targets(slots, done_index):
                if target == node.name or target not in run.nodes_by_name:
                    continue
                if self._reaches(graph, target, node.name):
                    run.error(
                        IssueCategory.CONNECTION,
                        "loop_outputs_reversed",
                        f'Loop node "{node.name}" outputs appear reversed: "{target}" is on the '
                        f'"done" output (index {done_index}) but connects back to the loop node; '
                        f'loop bodies belong on the "loop" output (index {loop_index})',
                        node=node,
                    )

    # -------------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------------

    def _check_expressions(self, run: _ValidationRun) -> None:
        names = frozenset(run.nodes_by_name)
        with_input = {v for _, v in run.graph.in_edges()}
        stats = run.report.statistics

        for node in self._executing_nodes(run):
            context = ExpressionContext(
                available_nodes=names,
                current_node_name=node.name,
                has_input_data=node.name in with_input,
            )
            result = self.expression_validator.validate_parameters(node.parameters, context)
            stats.expressions_validated += result.expression_count
            for message in result.errors:
                run.error(
                    IssueCategory.EXPRESSION,
                    "expression_error",
                    message,
                    node=node,
                    path=message.partition(": ")[0],
                )
            for message in result.warnings:
                category = (
                    IssueCategory.ANOMALY
                    if "depth" in message or "Circular reference" in message
                    else IssueCategory.EXPRESSION
                )
                run.warn(category, "expression_warning", message, node=node, path=message.partition(": ")[0])

            schema = run.schema(node)
            declared = _declared_locators(schema) if schema else set()
            # Anomalies of this second walk duplicate the ones reported above
            formatted = self.format_validator.validate_node_parameters(
                node.parameters, node.type, declared
            )
            for issue in formatted.issues:
                run.add(
                    issue.severity,
                    IssueCategory.EXPRESSION_FORMAT,
                    issue.issue_type.value,
                    f"{issue.field_path}: {issue.explanation}",
                    node=node,
                    path=issue.field_path,
                    fix=issue.explanation,
                    suggested_value=issue.corrected_value,
                )


def _count_targets(outputs: dict[str, list[list[ConnectionTarget] | None]]) -> int:
    return sum(len(slot) for slots in outputs.values() for slot in slots if slot)


def _slot_targets(slots: list[list[ConnectionTarget] | None], index: int) -> list[str]:
    if index >= len(slots) or not slots[index]:
        return []
    return [t.node for t in slots[index]]


def _declared_locators(schema: NodeTypeSchema) -> set[str]:
    return {
        entry["name"]
        for entry in schema.properties
        if isinstance(entry, dict) and entry.get("type") == "resourceLocator" and entry.get("name")
    }
