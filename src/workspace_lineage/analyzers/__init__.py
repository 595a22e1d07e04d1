"""Query objects over one lineage graph snapshot."""

from .base_analyzer import BaseAnalyzer, UNLIMITED
from .column_lineage import ColumnLineageTracker, TransformationChain
from .flow_analyzer import FlowAnalyzer, FlowResult, FullFlowResult
from .impact_analyzer import ImpactAnalyzer, ImpactReport, ImpactTarget

__all__ = [
    'BaseAnalyzer',
    'UNLIMITED',
    'ColumnLineageTracker',
    'TransformationChain',
    'FlowAnalyzer',
    'FlowResult',
    'FullFlowResult',
    'ImpactAnalyzer',
    'ImpactReport',
    'ImpactTarget'
]
