"""
Plan graph export

Renders the plan graph of a SQL execution as Graphviz DOT text. Every node
shows its name and the largest value reached by each of its metrics;
WholeStageCodegen clusters become DOT subgraphs.
"""

from pathlib import Path
from typing import Dict, List, Tuple
import logging

from spark_event_profiler.plan_analyzer import PlanGraphCluster, PlanGraphNode, SparkPlanGraph
from spark_event_profiler.store import EntityStore

logger = logging.getLogger(__name__)


def _escape(text: str) -> str:
    return text.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')


def _node_label(node: PlanGraphNode, sql_id: int, max_values: Dict[Tuple[int, int], int]) -> str:
    lines = [node.name]
    for metric in node.metrics:
        value = max_values.get((sql_id, metric.accumulatorId))
        if value is not None:
            lines.append(f"{metric.name}: {value}")
    return _escape('\n'.join(lines))


def generate_dot(graph: SparkPlanGraph, sql_id: int, app_id: str,
                 max_values: Dict[Tuple[int, int], int]) -> str:
    """
    DOT text of one plan graph.

    Args:
        graph: plan graph built by the plan analyzer
        sql_id: SQL execution the graph belongs to
        app_id: application id, used in the graph title
        max_values: (sql id, accumulator id) -> largest accumulator value

    Returns:
        The DOT document
    """
    lines = [
        'digraph G {',
        f'  label="{_escape(app_id)} query {sql_id}";',
        '  labelloc=t;',
        '  node [shape=box, fontsize=10];',
    ]

    for node in graph.nodes:
        if isinstance(node, PlanGraphCluster):
            lines.append(f'  subgraph cluster_{node.id} {{')
            lines.append(f'    label="{_node_label(node, sql_id, max_values)}";')
            lines.append('    style=dashed;')
            for member in node.nodes:
                lines.append(f'    node_{member.id} [label="{_node_label(member, sql_id, max_values)}"];')
            lines.append('  }')
        else:
            lines.append(f'  node_{node.id} [label="{_node_label(node, sql_id, max_values)}"];')

    for child_id, parent_id in graph.edges:
        lines.append(f'  node_{child_id} -> node_{parent_id};')

    lines.append('}')
    return '\n'.join(lines) + '\n'


def write_dot_graphs(store: EntityStore, output_dir: str,
                     max_values: Dict[Tuple[int, int], int]) -> List[str]:
    """Write one <appId>-query-<sqlId>.dot file per analyzed plan."""
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    paths = []
    for sql_id in sorted(store.plan_graphs):
        path = Path(output_dir) / f"{store.app_id}-query-{sql_id}.dot"
        with open(path, 'w') as f:
            f.write(generate_dot(store.plan_graphs[sql_id], sql_id, store.app_id, max_values))
        paths.append(str(path))

    logger.info(f"Generated {len(paths)} DOT graphs for {store.app_id} in {output_dir}")
    return paths
