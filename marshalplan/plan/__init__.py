from .plan_builder import MarshallingPlanBuilder
from .plan_types import BufferStrategy, MarshallingPlan
from .report import render_json_report, render_text_report

__all__ = [
    'BufferStrategy',
    'MarshallingPlan',
    'MarshallingPlanBuilder',
    'render_json_report',
    'render_text_report',
]
