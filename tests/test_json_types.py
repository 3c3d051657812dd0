from datetime import date, datetime, timezone
from decimal import Decimal

from clipinsight.jobs.states import PipelineStage
from clipinsight.utils.json_types import convert_json_types


def test_plain_values_pass_through():
    metrics = {"tokens_used": 10, "cost_usd": 0.5, "model": "gpt", "cached": False, "note": None}
    assert convert_json_types(metrics) == metrics


def test_dates_and_decimals():
    converted = convert_json_types({
        "finished": datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        "day": date(2024, 5, 1),
        "cost_usd": Decimal("0.125"),
    })
    assert converted == {"finished": "2024-05-01T12:30:00+00:00", "day": "2024-05-01", "cost_usd": 0.125}


def test_nested_containers_and_enums():
    converted = convert_json_types({"stages": (PipelineStage.ASR, PipelineStage.QA), "sizes": {3}, 7: [Decimal("1")]})
    assert converted == {"stages": ["ASR", "QA"], "sizes": [3], "7": [1.0]}


def test_non_finite_floats_become_null():
    assert convert_json_types([float("nan"), float("inf"), 1.5]) == [None, None, 1.5]


def test_unknown_objects_are_stringified():
    class Handle:
        def __str__(self):
            return "handle-1"

    assert convert_json_types({"h": Handle()}) == {"h": "handle-1"}
