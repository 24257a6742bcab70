import json

import pytest

from apps.api.services import charts


SALES = [
    {"month": "Jan", "sales": 120, "cost": 80},
    {"month": "Feb", "sales": 150, "cost": 95},
    {"month": "Mar", "sales": 90, "cost": 70},
]

BUILDERS = [
    charts.build_line_option,
    charts.build_bar_option,
    charts.build_pie_option,
    charts.build_scatter_option,
    charts.build_radar_option,
    charts.build_heatmap_option,
    charts.build_funnel_option,
    charts.build_gauge_option,
]


@pytest.mark.parametrize("builder", BUILDERS)
def test_every_builder_returns_json_document_with_series(builder):
    option = builder(SALES, None)
    assert isinstance(option["series"], list) and option["series"]
    assert option["title"]["text"]
    json.dumps(option)


@pytest.mark.parametrize("builder", BUILDERS)
def test_builders_are_idempotent_and_do_not_mutate_input(builder):
    snapshot = json.dumps(SALES)
    first = builder(SALES, "Sales")
    second = builder(SALES, "Sales")
    assert first == second
    assert json.dumps(SALES) == snapshot


@pytest.mark.parametrize("builder", [charts.build_line_option, charts.build_bar_option])
def test_axis_charts_have_one_series_per_value_column(builder):
    option = builder(SALES, None)
    assert [s["name"] for s in option["series"]] == ["sales", "cost"]
    assert all(len(s["data"]) == len(SALES) for s in option["series"])
    assert option["series"][0]["data"] == [120, 150, 90]
    assert option["xAxis"]["data"] == ["Jan", "Feb", "Mar"]
    assert option["legend"]["data"] == ["sales", "cost"]
    assert option["dataZoom"][0] == {"type": "inside", "start": 0, "end": 100}
    assert option["dataZoom"][1]["type"] == "slider"
    assert option["animationDuration"] == 1000
    assert option["animationEasing"] == "cubicOut"


def test_line_and_bar_specific_styling():
    line = charts.build_line_option(SALES)
    bar = charts.build_bar_option(SALES)
    assert line["series"][0]["smooth"] is True
    assert line["series"][0]["symbol"] == "circle"
    assert line["xAxis"]["boundaryGap"] is False
    assert bar["xAxis"]["axisLabel"]["rotate"] == 45
    assert bar["tooltip"]["axisPointer"]["type"] == "shadow"
    assert line["tooltip"]["axisPointer"]["type"] == "cross"


def test_empty_category_cells_get_synthesized_labels():
    rows = [{"name": None, "v": 1}, {"name": "", "v": 2}, {"name": "c", "v": "n/a"}]
    option = charts.build_bar_option(rows)
    assert option["xAxis"]["data"] == ["Data1", "Data2", "c"]
    # raw values pass through untouched
    assert option["series"][0]["data"] == [1, 2, "n/a"]


def test_default_and_custom_titles():
    assert charts.build_line_option(SALES)["title"]["text"] == "Interactive Line Chart"
    assert charts.build_bar_option(SALES, "")["title"]["text"] == "Interactive Bar Chart"
    assert charts.build_gauge_option(SALES, "Quota")["title"]["text"] == "Quota"


def test_pie_renders_every_column_including_label_column():
    option = charts.build_pie_option(SALES)
    assert [s["name"] for s in option["series"]] == ["month", "sales", "cost"]
    assert option["series"][1]["data"][0] == {"name": "Jan", "value": 120}
    assert option["series"][0]["data"][0] == {"name": "Jan", "value": "Jan"}
    assert option["series"][0]["radius"] == ["40%", "70%"]


def test_scatter_uses_first_two_columns_as_points():
    option = charts.build_scatter_option(SALES)
    series = option["series"][0]
    assert series["data"] == [["Jan", 120], ["Feb", 150], ["Mar", 90]]
    assert series["itemStyle"]["opacity"] == 0.8
    assert option["xAxis"]["name"] == "month"
    assert option["yAxis"]["name"] == "sales"


def test_scatter_with_single_column_matches_bar_output():
    rows = [{"only": 1}, {"only": 2}]
    assert charts.build_scatter_option(rows, "t") == charts.build_bar_option(rows, "t")


def test_radar_indicator_max_per_column():
    rows = [{"label": "x", "a": 1, "b": 2}, {"label": "y", "a": 5, "b": 8}]
    option = charts.build_radar_option(rows)
    indicators = {ind["name"]: ind["max"] for ind in option["radar"]["indicator"]}
    assert indicators == {"a": 5.0, "b": 8.0}
    assert option["series"][0]["data"][1] == {"name": "y", "value": [5.0, 8.0]}
    assert option["legend"]["data"] == ["x", "y"]


def test_radar_coerces_bad_cells_to_zero():
    rows = [{"label": "x", "a": "oops"}, {"label": "y", "a": None}]
    option = charts.build_radar_option(rows)
    assert option["radar"]["indicator"][0]["max"] == 0.0
    assert option["series"][0]["data"][0]["value"] == [0.0]


def test_heatmap_emits_one_triple_per_cell():
    option = charts.build_heatmap_option(SALES)
    cells = option["series"][0]["data"]
    assert len(cells) == len(SALES) * (3 - 1)
    assert cells[0] == [0, 0, 120.0]
    assert cells[-1] == [1, 2, 70.0]
    assert option["xAxis"]["data"] == ["sales", "cost"]
    assert option["yAxis"]["data"] == ["Jan", "Feb", "Mar"]
    assert option["visualMap"]["max"] == 150.0


def test_heatmap_single_column_has_zero_scale():
    option = charts.build_heatmap_option([{"only": "a"}, {"only": "b"}])
    assert option["series"][0]["data"] == []
    assert option["visualMap"]["max"] == 0.0


def test_funnel_sorts_descending():
    rows = [{"stage": "a", "n": 10}, {"stage": "b", "n": 50}, {"stage": "c", "n": 20}]
    series = charts.build_funnel_option(rows)["series"][0]
    assert [item["value"] for item in series["data"]] == [50.0, 20.0, 10.0]
    assert [item["name"] for item in series["data"]] == ["b", "c", "a"]
    assert series["max"] == 50.0
    assert series["sort"] == "descending"


def test_funnel_missing_value_column_defaults_to_zero():
    series = charts.build_funnel_option([{"stage": "a"}])["series"][0]
    assert series["data"] == [{"name": "a", "value": 0.0}]
    assert series["max"] == 0.0


def test_gauge_normalizes_first_value_against_column_max():
    rows = [{"k": "now", "v": 20}, {"k": "b", "v": 40}, {"k": "c", "v": 80}]
    series = charts.build_gauge_option(rows)["series"][0]
    assert series["data"][0]["value"] == pytest.approx(25.0)
    assert series["data"][0]["name"] == "now"
    assert series["name"] == "v"
    assert series["max"] == 100


def test_gauge_zero_max_is_guarded():
    rows = [{"k": "a", "v": 0}, {"k": "b", "v": "x"}]
    series = charts.build_gauge_option(rows)["series"][0]
    assert series["data"][0]["value"] == 0.0


def test_gauge_single_column_uses_defaults():
    series = charts.build_gauge_option([{"k": ""}])["series"][0]
    assert series["name"] == "Metric"
    assert series["data"][0] == {"value": 0.0, "name": "Current"}
