"""
Plan Analyzer

Walks the physical plan of every SQL execution and classifies its nodes.

The plan tree is first flattened into a graph the way the Spark UI draws it:
- nodes get ids in preorder
- WholeStageCodegen wrappers become clusters around the nodes they fuse
- InputAdapter wrappers are skipped
- a ReusedExchange (or a query stage over an already seen exchange) becomes an
  edge to the original exchange node instead of a copy

Every node is then run through PLAN_NODE_RULES. Rules are independent, so a
node may carry more than one label.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import re

from pydantic import BaseModel, Field

from spark_event_profiler.config import ProfilerConfig
from spark_event_profiler.entities import (
    DiagnosticFlag,
    PlanNodeAccumRecord,
    SQLPlanMetricRecord,
    UnsupportedPlanNode,
)
from spark_event_profiler.models import SparkPlanInfo, SQLPlanMetric
from spark_event_profiler.store import EntityStore

logger = logging.getLogger(__name__)

DATASET_OP = 'dataset-op'
POTENTIAL_ISSUE = 'potential-issue'
UNSUPPORTED_NODE = 'unsupported-node'


# ============================================================================
# PLAN GRAPH
# ============================================================================

class PlanGraphNode(BaseModel):
    id: int
    name: str
    desc: str = ''
    metrics: List[SQLPlanMetric] = Field(default_factory=list)


class PlanGraphCluster(PlanGraphNode):
    """A WholeStageCodegen stage and the operators it fuses."""
    nodes: List[PlanGraphNode] = Field(default_factory=list)


class SparkPlanGraph(BaseModel):
    nodes: List[PlanGraphNode] = Field(default_factory=list)
    # (child id, parent id)
    edges: List[Tuple[int, int]] = Field(default_factory=list)

    @property
    def all_nodes(self) -> List[PlanGraphNode]:
        """Top-level nodes plus the contents of every cluster, cluster after its members."""
        result = []
        for node in self.nodes:
            if isinstance(node, PlanGraphCluster):
                result.extend(node.nodes)
            result.append(node)
        return result

    @classmethod
    def build(cls, plan: SparkPlanInfo) -> 'SparkPlanGraph':
        graph = cls()
        _GraphBuilder(graph).visit(plan, parent=None, cluster=None)
        return graph


class _GraphBuilder:

    def __init__(self, graph: SparkPlanGraph):
        self.graph = graph
        self.next_id = 0
        self.exchanges: Dict[str, PlanGraphNode] = {}

    def _new_id(self) -> int:
        node_id = self.next_id
        self.next_id += 1
        return node_id

    def _link(self, node: PlanGraphNode, parent: Optional[PlanGraphNode]):
        if parent is not None:
            self.graph.edges.append((node.id, parent.id))

    def visit(self, plan: SparkPlanInfo, parent: Optional[PlanGraphNode],
              cluster: Optional[PlanGraphCluster]):
        name = plan.nodeName
        first_child = plan.children[0] if plan.children else None

        if name.startswith('WholeStageCodegen') and first_child is not None:
            codegen = PlanGraphCluster(id=self._new_id(), name=name,
                                       desc=plan.simpleString, metrics=plan.metrics)
            self.graph.nodes.append(codegen)
            self.visit(first_child, parent, codegen)
            return

        if name == 'InputAdapter' and first_child is not None:
            self.visit(first_child, parent, None)
            return

        if name in ('BroadcastQueryStage', 'ShuffleQueryStage') and first_child is not None:
            reused = self.exchanges.get(_plan_key(first_child))
            if reused is not None:
                self._link(reused, parent)
            else:
                self.visit(first_child, parent, None)
            return

        if name == 'ReusedExchange' and first_child is not None:
            reused = self.exchanges.get(_plan_key(first_child))
            if reused is not None:
                self._link(reused, parent)
                return

        node = PlanGraphNode(id=self._new_id(), name=name,
                             desc=plan.simpleString, metrics=plan.metrics)
        if cluster is None:
            self.graph.nodes.append(node)
        else:
            cluster.nodes.append(node)
        if 'Exchange' in name:
            self.exchanges[_plan_key(plan)] = node
        self._link(node, parent)

        for child in plan.children:
            self.visit(child, node, cluster)


def _plan_key(plan: SparkPlanInfo) -> str:
    return plan.model_dump_json()


# ============================================================================
# NODE CLASSIFICATION RULES
# ============================================================================

LAMBDA_PATTERN = re.compile(r'\$Lambda\$')


def is_dataset_plan(desc: str) -> bool:
    """Node descriptions of typed Dataset operations mention a lambda or an apply method."""
    return bool(LAMBDA_PATTERN.search(desc)) or desc.endswith('.apply')


def find_potential_issues(desc: str) -> Optional[str]:
    if 'UDF' in desc:
        return 'UDF'
    return None


# Ordered (label, predicate) pairs. A predicate returns a truthy reason when the
# node matches. Bump PLAN_NODE_RULES_VERSION whenever the list changes.
PLAN_NODE_RULES_VERSION = 1
PLAN_NODE_RULES: List[Tuple[str, Callable[[PlanGraphNode], Any]]] = [
    (DATASET_OP, lambda node: is_dataset_plan(node.desc)),
    (POTENTIAL_ISSUE, lambda node: find_potential_issues(node.desc)),
]


def classify_node(node: PlanGraphNode) -> List[Tuple[str, str]]:
    """All (label, reason) pairs whose rule matches the node."""
    labels = []
    for label, predicate in PLAN_NODE_RULES:
        result = predicate(node)
        if result:
            labels.append((label, result if isinstance(result, str) else ''))
    return labels


# ============================================================================
# ANALYZER
# ============================================================================

class PlanAnalyzer:
    """Classifies plan nodes and derives plan metric records for every SQL execution."""

    def __init__(self, store: EntityStore, config: Optional[ProfilerConfig] = None):
        self.store = store
        self.config = config or ProfilerConfig()

    def analyze(self) -> EntityStore:
        """
        Build the plan graph of every SQL execution and derive its flags.

        Returns:
            The same store with plan graphs, diagnostic flags, plan metrics and
            per-SQL qualification fields populated
        """
        dataset_sqls = set()
        problems: Dict[int, List[str]] = {}

        for sql_id, plan in self.store.sql_plans.items():
            graph = SparkPlanGraph.build(plan)
            self.store.plan_graphs[sql_id] = graph

            for node in graph.all_nodes:
                for label, reason in classify_node(node):
                    self.store.diagnostic_flags.append(
                        DiagnosticFlag(sql_id=sql_id, node_id=node.id, kind=label, reason=reason))
                    if label == DATASET_OP:
                        dataset_sqls.add(sql_id)
                        if self.store.accelerated_mode:
                            self._record_unsupported(sql_id, node)
                    elif label == POTENTIAL_ISSUE:
                        issues = problems.setdefault(sql_id, [])
                        if reason not in issues:
                            issues.append(reason)

                self._record_metrics(sql_id, node)

        self._merge_adaptive_metrics()
        self._apply_sql_fields(dataset_sqls, problems)

        logger.info(
            f"Analyzed {len(self.store.plan_graphs)} plans of application {self.store.app_index}: "
            f"{len(dataset_sqls)} with Dataset operations, {len(problems)} with potential problems"
        )
        return self.store

    def _record_unsupported(self, sql_id: int, node: PlanGraphNode):
        self.store.unsupported_plan_nodes.append(UnsupportedPlanNode(
            sql_id=sql_id, node_id=node.id, node_name=node.name, node_desc=node.desc))
        self.store.diagnostic_flags.append(DiagnosticFlag(
            sql_id=sql_id, node_id=node.id, kind=UNSUPPORTED_NODE, reason=node.name))

    def _record_metrics(self, sql_id: int, node: PlanGraphNode):
        for metric in node.metrics:
            self.store.sql_plan_metrics.append(SQLPlanMetricRecord(
                sql_id=sql_id,
                name=metric.name,
                accumulator_id=metric.accumulatorId,
                metric_type=metric.metricType,
            ))
            self.store.plan_node_accums.append(PlanNodeAccumRecord(
                sql_id=sql_id,
                node_id=node.id,
                node_name=node.name,
                node_desc=node.desc,
                accumulator_id=metric.accumulatorId,
            ))

    def _merge_adaptive_metrics(self):
        adaptive = self.store.sql_plan_metrics_adaptive
        if not adaptive:
            return
        logger.info(f"Merging {len(adaptive)} adaptive SQL metrics for {self.store.app_id}")

        merged = []
        seen = set()
        for record in self.store.sql_plan_metrics + adaptive:
            key = (record.sql_id, record.name, record.accumulator_id, record.metric_type)
            if key not in seen:
                seen.add(key)
                merged.append(record)
        self.store.sql_plan_metrics = merged

    def _apply_sql_fields(self, dataset_sqls, problems: Dict[int, List[str]]):
        for sql_id, sql in self.store.sql_executions.items():
            sql.has_dataset_op = sql_id in dataset_sqls
            issues = problems.get(sql_id)
            sql.potential_problems = ','.join(issues) if issues else None
            if sql.has_dataset_op or sql.duration is None:
                sql.sql_qual_duration = 0
            else:
                sql.sql_qual_duration = max(sql.duration, 0)


def analyze_plans(store: EntityStore, config: Optional[ProfilerConfig] = None) -> EntityStore:
    return PlanAnalyzer(store, config).analyze()
