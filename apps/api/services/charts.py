"""ECharts option builders for tabular record sets.

Every builder takes the decoded (and optionally cleaned) records plus an
optional title and returns a plain, JSON-serialisable option document.
Column order follows the first record; column 0 is the label/category axis.
"""
from __future__ import annotations

import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

Record = Mapping[str, Any]
Records = Sequence[Record]
ChartOptionBuilder = Callable[[Records, Optional[str]], Dict[str, Any]]

_NUMERIC_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class EmptyRecordSetError(ValueError):
    """Raised when a chart is requested for an empty record set."""


def coerce_numeric(cell: Any) -> float:
    """Best-effort float conversion; anything unusable becomes 0.0."""
    if cell is None or isinstance(cell, bool):
        return 0.0
    if isinstance(cell, (int, float)):
        value = float(cell)
    elif isinstance(cell, str):
        m = _NUMERIC_PREFIX.match(cell.lstrip())
        if not m:
            return 0.0
        try:
            value = float(m.group(0))
        except ValueError:  # pragma: no cover - regex guarantees a float literal
            return 0.0
    else:
        try:
            value = float(cell)
        except (TypeError, ValueError):
            return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


def _columns(records: Records) -> List[str]:
    return list(records[0].keys()) if records else []


def _zoom() -> List[Dict[str, Any]]:
    return [
        {"type": "inside", "start": 0, "end": 100},
        {"type": "slider", "start": 0, "end": 100},
    ]


def _animation() -> Dict[str, Any]:
    return {"animation": True, "animationDuration": 1000, "animationEasing": "cubicOut"}


def _grid() -> Dict[str, Any]:
    return {"left": "3%", "right": "4%", "bottom": "3%", "containLabel": True}


def _category_labels(records: Records, column: Optional[str]) -> List[Any]:
    labels: List[Any] = []
    for idx, row in enumerate(records):
        value = row.get(column) if column is not None else None
        labels.append(f"Data{idx + 1}" if value is None or value == "" else value)
    return labels


def _axis_option(
    records: Records,
    title: Optional[str],
    *,
    kind: str,
    default_title: str,
    series_extra: Dict[str, Any],
    pointer: str,
    x_axis_extra: Dict[str, Any],
) -> Dict[str, Any]:
    columns = _columns(records)
    label_col = columns[0] if columns else None
    value_cols = columns[1:]
    series = [
        {"name": col, "type": kind, "data": [row.get(col) for row in records], **series_extra}
        for col in value_cols
    ]
    return {
        "title": {"text": title or default_title},
        "tooltip": {"trigger": "axis", "axisPointer": {"type": pointer}},
        "legend": {"data": list(value_cols), "selectedMode": True},
        "grid": _grid(),
        "xAxis": {"type": "category", "data": _category_labels(records, label_col), **x_axis_extra},
        "yAxis": {"type": "value"},
        "dataZoom": _zoom(),
        "series": series,
        **_animation(),
    }


def build_line_option(records: Records, title: Optional[str] = None) -> Dict[str, Any]:
    return _axis_option(
        records,
        title,
        kind="line",
        default_title="Interactive Line Chart",
        series_extra={"smooth": True, "symbol": "circle", "symbolSize": 6},
        pointer="cross",
        x_axis_extra={"boundaryGap": False},
    )


def build_bar_option(records: Records, title: Optional[str] = None) -> Dict[str, Any]:
    return _axis_option(
        records,
        title,
        kind="bar",
        default_title="Interactive Bar Chart",
        series_extra={"itemStyle": {"borderRadius": [4, 4, 0, 0]}},
        pointer="shadow",
        x_axis_extra={"axisLabel": {"rotate": 45}},
    )


def build_pie_option(records: Records, title: Optional[str] = None) -> Dict[str, Any]:
    # The label column is rendered as a ring too; consumers rely on one ring per column.
    columns = _columns(records)
    label_col = columns[0] if columns else None
    series = [
        {
            "name": col,
            "type": "pie",
            "radius": ["40%", "70%"],
            "center": ["50%", "50%"],
            "data": [{"name": row.get(label_col), "value": row.get(col)} for row in records],
            "emphasis": {
                "itemStyle": {"shadowBlur": 10, "shadowOffsetX": 0, "shadowColor": "rgba(0, 0, 0, 0.5)"}
            },
        }
        for col in columns
    ]
    return {
        "title": {"text": title or "Interactive Pie Chart"},
        "tooltip": {"trigger": "item", "formatter": "{a} <br/>{b}: {c} ({d}%)"},
        "legend": {"orient": "vertical", "left": "left", "selectedMode": True},
        "series": series,
        **_animation(),
    }


def build_scatter_option(records: Records, title: Optional[str] = None) -> Dict[str, Any]:
    columns = _columns(records)
    if len(columns) < 2:
        return build_bar_option(records, title)
    x_col, y_col = columns[0], columns[1]
    return {
        "title": {"text": title or "Interactive Scatter Chart"},
        "tooltip": {"trigger": "item", "formatter": f"{{a}}<br/>{x_col}, {y_col}: {{c}}"},
        "grid": _grid(),
        "xAxis": {"type": "value", "name": x_col, "nameLocation": "middle", "nameGap": 30},
        "yAxis": {"type": "value", "name": y_col, "nameLocation": "middle", "nameGap": 30},
        "dataZoom": _zoom(),
        "series": [
            {
                "name": "Points",
                "type": "scatter",
                "data": [[row.get(x_col), row.get(y_col)] for row in records],
                "symbolSize": 8,
                "itemStyle": {"opacity": 0.8},
            }
        ],
        **_animation(),
    }


def build_radar_option(records: Records, title: Optional[str] = None) -> Dict[str, Any]:
    columns = _columns(records)
    label_col = columns[0] if columns else None
    value_cols = columns[1:]
    indicators = [
        {"name": col, "max": max((coerce_numeric(row.get(col)) for row in records), default=0.0)}
        for col in value_cols
    ]
    return {
        "title": {"text": title or "Radar Chart"},
        "tooltip": {"trigger": "item"},
        "legend": {"data": [row.get(label_col) for row in records]},
        "radar": {"indicator": indicators},
        "series": [
            {
                "name": "Data",
                "type": "radar",
                "data": [
                    {"name": row.get(label_col), "value": [coerce_numeric(row.get(col)) for col in value_cols]}
                    for row in records
                ],
            }
        ],
    }


def build_heatmap_option(records: Records, title: Optional[str] = None) -> Dict[str, Any]:
    columns = _columns(records)
    label_col = columns[0] if columns else None
    value_cols = columns[1:]
    cells: List[List[Any]] = []
    for i, row in enumerate(records):
        for j, col in enumerate(value_cols):
            cells.append([j, i, coerce_numeric(row.get(col))])
    return {
        "title": {"text": title or "Heatmap"},
        "tooltip": {"position": "top"},
        "xAxis": {"type": "category", "data": list(value_cols)},
        "yAxis": {"type": "category", "data": [row.get(label_col) for row in records]},
        "visualMap": {
            "min": 0,
            "max": max((cell[2] for cell in cells), default=0.0),
            "calculable": True,
            "orient": "horizontal",
            "left": "center",
            "bottom": "15%",
        },
        "series": [
            {
                "name": "Data",
                "type": "heatmap",
                "data": cells,
                "label": {"show": True},
                "emphasis": {"itemStyle": {"shadowBlur": 10, "shadowColor": "rgba(0, 0, 0, 0.5)"}},
            }
        ],
    }


def build_funnel_option(records: Records, title: Optional[str] = None) -> Dict[str, Any]:
    columns = _columns(records)
    label_col = columns[0] if columns else None
    value_col = columns[1] if len(columns) > 1 else None
    stages = [
        {"name": row.get(label_col), "value": coerce_numeric(row.get(value_col) if value_col else None)}
        for row in records
    ]
    stages.sort(key=lambda item: item["value"], reverse=True)
    return {
        "title": {"text": title or "Funnel Chart"},
        "tooltip": {"trigger": "item"},
        "series": [
            {
                "name": "Data",
                "type": "funnel",
                "left": "10%",
                "top": 60,
                "width": "80%",
                "height": "80%",
                "min": 0,
                "max": stages[0]["value"] if stages else 0.0,
                "minSize": "0%",
                "maxSize": "100%",
                "sort": "descending",
                "gap": 2,
                "label": {"show": True, "position": "inside"},
                "labelLine": {"length": 10, "lineStyle": {"width": 1, "type": "solid"}},
                "itemStyle": {"borderColor": "#fff", "borderWidth": 1},
                "emphasis": {"label": {"fontSize": 20}},
                "data": stages,
            }
        ],
    }


def build_gauge_option(records: Records, title: Optional[str] = None) -> Dict[str, Any]:
    columns = _columns(records)
    label_col = columns[0] if columns else None
    value_col = columns[1] if len(columns) > 1 else None
    first = records[0] if records else {}
    value = coerce_numeric(first.get(value_col)) if value_col else 0.0
    scale_max = max((coerce_numeric(row.get(value_col)) for row in records), default=0.0) if value_col else 0.0
    percent = (value / scale_max) * 100 if scale_max > 0 else 0.0
    label = first.get(label_col) if label_col else None
    return {
        "title": {"text": title or "Gauge"},
        "tooltip": {"formatter": "{a} <br/>{b} : {c}%"},
        "series": [
            {
                "name": value_col or "Metric",
                "type": "gauge",
                "detail": {"formatter": "{value}%"},
                "data": [{"value": percent, "name": label or "Current"}],
                "axisLabel": {"formatter": "{value}%"},
                "max": 100,
            }
        ],
    }


_BUILDERS: Dict[str, ChartOptionBuilder] = {}
DEFAULT_CHART_TYPE = "bar"


def register_builder(chart_type: str, builder: ChartOptionBuilder) -> None:
    _BUILDERS[chart_type.strip().lower()] = builder


register_builder("line", build_line_option)
register_builder("bar", build_bar_option)
register_builder("pie", build_pie_option)
register_builder("scatter", build_scatter_option)
register_builder("radar", build_radar_option)
register_builder("heatmap", build_heatmap_option)
register_builder("funnel", build_funnel_option)
register_builder("gauge", build_gauge_option)


def supported_chart_types() -> List[str]:
    return list(_BUILDERS)


def resolve_builder(chart_type: Optional[str]) -> ChartOptionBuilder:
    """Return the builder for ``chart_type``; unknown tags map to the bar builder."""
    key = (chart_type or "").strip().lower()
    return _BUILDERS.get(key, _BUILDERS[DEFAULT_CHART_TYPE])


def build_chart_option(records: Records, chart_type: Optional[str], title: Optional[str] = None) -> Dict[str, Any]:
    if not records:
        raise EmptyRecordSetError("record set is empty")
    if not isinstance(records[0], Mapping):
        raise EmptyRecordSetError("records must be objects keyed by column name")
    return resolve_builder(chart_type)(records, title)


__all__ = [
    "ChartOptionBuilder",
    "EmptyRecordSetError",
    "build_bar_option",
    "build_chart_option",
    "build_funnel_option",
    "build_gauge_option",
    "build_heatmap_option",
    "build_line_option",
    "build_pie_option",
    "build_radar_option",
    "build_scatter_option",
    "coerce_numeric",
    "register_builder",
    "resolve_builder",
    "supported_chart_types",
]
